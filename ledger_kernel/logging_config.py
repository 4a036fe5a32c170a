"""
JSON-lines logging for the ledger.

Every logger handed out by ``get_logger`` lives under the ``ledger``
namespace. Records are rendered by ``StructuredFormatter`` as one JSON
object per line carrying:

    ts, level, logger, message      always
    correlation_id .. entry_id      when bound through LogContext
    anything passed via ``extra=``  as top-level keys
    exc_*                           when logged with exc_info

LedgerError subclasses expose their public attributes (fiscal_year,
status, matched_count, ...) as ``exc_<name>`` keys so a failed posting
can be queried without parsing the message text.
"""

from __future__ import annotations

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Mapping
from uuid import UUID

ROOT_LOGGER_NAME = "ledger"

CONTEXT_FIELDS = ("correlation_id", "event_id", "actor_id", "entry_id")

_bound: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default={})


class LogContext:
    """
    Request-scoped identifiers attached to every ledger log line.

    Values live in a single ContextVar, so each thread and asyncio task
    sees its own copy.
    """

    @staticmethod
    def _merge(fields: Mapping[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(_bound.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Bind fields for the rest of the current context. None leaves a field as is."""
        _bound.set(cls._merge(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def clear() -> None:
        _bound.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type[LogContext]]:
        """Bind fields inside a ``with`` block; the previous values come back on exit."""
        token = _bound.set(cls._merge(fields))
        try:
            yield cls
        finally:
            _bound.reset(token)


# Attributes every LogRecord carries; whatever is left over came from ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(LogContext.get_all())
        line.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in line
        )

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Return ``ledger.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``ledger`` logger.

    Only the first call has an effect until ``reset_logging`` runs. Ledger
    records do not propagate to the root logger, so an application's own
    handlers never see them twice.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())

        ledger_logger = logging.getLogger(ROOT_LOGGER_NAME)
        ledger_logger.setLevel(level)
        ledger_logger.propagate = False
        ledger_logger.addHandler(_handler)


def reset_logging() -> None:
    """Detach the handler ``configure_logging`` attached. Used by the test suite."""
    global _handler
    with _setup_lock:
        ledger_logger = logging.getLogger(ROOT_LOGGER_NAME)
        if _handler is not None:
            ledger_logger.removeHandler(_handler)
        _handler = None
        ledger_logger.setLevel(logging.WARNING)
