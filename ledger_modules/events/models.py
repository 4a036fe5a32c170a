"""
ledger_modules.events.models
============================

Responsibility:
    Value objects of the event ingestor: the inbound envelope, the plan a
    posting rule produces, and the result handed back to callers.

Invariants enforced:
    - ``InboundEvent.event_id`` and ``event_type`` are non-empty.
    - All DTOs are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.db.types import to_decimal
from ledger_kernel.domain.dtos import EntryMetadata, LineSpec
from ledger_kernel.exceptions import ValidationError

_ENVELOPE_KEYS = {
    "eventId": "event_id",
    "event_id": "event_id",
    "eventType": "event_type",
    "event_type": "event_type",
    "occurredAt": "occurred_at",
    "occurred_at": "occurred_at",
}


class IngestionStatus(str, Enum):
    POSTED = "POSTED"
    SKIPPED = "SKIPPED"
    DUPLICATE = "DUPLICATE"


@dataclass(frozen=True)
class InboundEvent:
    """
    Envelope of an external business event.

    ``payload`` holds the domain fields exactly as the producer sent them
    (camelCase keys such as ``orderId`` and ``grandTotal``).
    """

    event_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime | None = None

    def __post_init__(self) -> None:
        if not (self.event_id or "").strip():
            raise ValidationError("eventId is required", field="eventId")
        if not (self.event_type or "").strip():
            raise ValidationError("eventType is required", field="eventType")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InboundEvent:
        """Build from a flat JSON message (envelope and domain fields mixed)."""
        envelope: dict[str, Any] = {}
        payload: dict[str, Any] = {}
        for key, value in data.items():
            if key in _ENVELOPE_KEYS:
                envelope[_ENVELOPE_KEYS[key]] = value
            else:
                payload[key] = value

        occurred_at = envelope.get("occurred_at")
        if isinstance(occurred_at, str):
            occurred_at = parse_datetime(occurred_at, "occurredAt")

        return cls(
            event_id=str(envelope.get("event_id") or ""),
            event_type=str(envelope.get("event_type") or ""),
            payload=payload,
            occurred_at=occurred_at,
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def require(self, key: str) -> Any:
        value = self.payload.get(key)
        if value is None or value == "":
            raise ValidationError(f"{self.event_type}.{key} is required", field=key)
        return value

    def amount(self, key: str, default: Decimal | None = None) -> Decimal:
        """Decimal value of a monetary field; missing -> ``default`` or error."""
        value = self.payload.get(key)
        if value is None:
            if default is not None:
                return default
            raise ValidationError(f"{self.event_type}.{key} is required", field=key)
        try:
            return to_decimal(value)
        except ValueError as exc:
            raise ValidationError(f"{self.event_type}.{key}: {exc}", field=key) from exc

    def date_field(self, key: str) -> date:
        value = self.require(key)
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return parse_datetime(str(value), key).date()


def parse_datetime(value: str, field_name: str) -> datetime:
    """ISO-8601 date or timestamp; a trailing ``Z`` is accepted."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(
            f"{field_name} is not an ISO-8601 date: {value!r}", field=field_name
        ) from exc


@dataclass(frozen=True)
class PostingPlan:
    """Balanced line set plus header a rule wants posted."""

    lines: tuple[LineSpec, ...]
    metadata: EntryMetadata
    actor: str = "system"


@dataclass(frozen=True)
class IngestionResult:
    event_id: str
    status: IngestionStatus
    journal_entry_id: UUID | None = None
    message: str | None = None

    @property
    def is_posted(self) -> bool:
        return self.status == IngestionStatus.POSTED


@dataclass(frozen=True)
class ProcessedEventInfo:
    """Snapshot of an idempotency record."""

    event_id: str
    event_type: str
    outcome: str
    attempts: int
    error_message: str | None
    journal_entry_id: UUID | None
    processed_at: datetime
