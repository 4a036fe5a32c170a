"""
Payload fingerprints for idempotent event ingestion.

Two deliveries of the same event are compared by ``hash_payload``. The
digest ignores key order and Decimal scale, so ``{"a": "10.00"}`` sent as
``Decimal("10.00")`` and as ``Decimal("10")`` fingerprint alike.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID


def _encode(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Cannot fingerprint {type(value).__name__}")


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(_canonical(payload).encode()).hexdigest()


def to_jsonable(value: Any) -> Any:
    """Decimals, dates and UUIDs turned into strings, ready for a JSON column."""
    return json.loads(_canonical(value))
