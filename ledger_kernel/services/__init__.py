"""Kernel services. All of them flush only; callers own the transaction."""

from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_service import JournalService, validate_line_set
from ledger_kernel.services.period_service import PeriodService, fiscal_period_for
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountService",
    "JournalService",
    "PeriodService",
    "SequenceService",
    "fiscal_period_for",
    "validate_line_set",
]
