"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import (
    DIMENSION_KEYS,
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    JournalLine,
    LineSide,
)
from ledger_kernel.models.outbox import JOURNAL_ENTRY_POSTED, OutboxEvent
from ledger_kernel.models.processed_event import ProcessedEvent, ProcessingOutcome
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "FiscalPeriod",
    "PeriodStatus",
    "DIMENSION_KEYS",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalEntryType",
    "JournalLine",
    "LineSide",
    "JOURNAL_ENTRY_POSTED",
    "OutboxEvent",
    "ProcessedEvent",
    "ProcessingOutcome",
    "SequenceCounter",
]

from ledger_kernel.db.immutability import register_immutability_listeners  # noqa: E402

register_immutability_listeners()
