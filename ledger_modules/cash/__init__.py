"""
ledger_modules.cash
===================

Responsibility:
    Bank reconciliation -- bank accounts linked to ledger cash accounts,
    statement import with fingerprint de-duplication, and matching of bank
    transactions to posted journal lines.

Architecture:
    Module layer.  May import from ledger_kernel and ledger_config.  Reads
    ledger lines through JournalService; never writes journal rows.

Failure modes:
    - Re-imported rows are skipped (``duplicates_skipped``), not errors.
    - Deleting a statement with Matched rows -> HasMatchedTransactionsError.
"""

from ledger_modules.cash.helpers import (
    StatementLine,
    StatementTotals,
    compute_fingerprint,
    parse_statement_csv,
    validate_statement_totals,
)
from ledger_modules.cash.models import (
    AutoMatchResult,
    BankAccountInfo,
    BankStatementInfo,
    BankTransactionInfo,
    StatementImportResult,
)
from ledger_modules.cash.orm import BankAccountStatus, MatchStatus, StatementStatus
from ledger_modules.cash.service import BankReconciliationService

__all__ = [
    "AutoMatchResult",
    "BankAccountInfo",
    "BankAccountStatus",
    "BankReconciliationService",
    "BankStatementInfo",
    "BankTransactionInfo",
    "MatchStatus",
    "StatementImportResult",
    "StatementLine",
    "StatementStatus",
    "StatementTotals",
    "compute_fingerprint",
    "parse_statement_csv",
    "validate_statement_totals",
]
