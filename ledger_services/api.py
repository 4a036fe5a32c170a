"""
ledger_services.api -- result-mapping facade for the HTTP surface.

Responsibility:
    One method per externally visible operation.  Each call either
    commits and returns ``ApiResult(success=True, data=...)`` or rolls
    back and returns ``ApiResult(success=False, error={"code", "message"})``.

Status mapping:
    NotFoundError                                   -> 404
    EventConflictError, DuplicateEventError,
    DuplicateTransactionError,
    PeriodAlreadyCalculatedError                    -> 409
    any other LedgerError                           -> 400
    anything else                                   -> 500 (generic message;
                                                       details only in logs)

Usage::

    api = LedgerApi(session)
    result = api.handle_event({"eventId": "evt-1", "eventType": "OrderCompleted", ...})
    if not result.success:
        return result.status, result.to_dict()
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryMetadata, LineSpec
from ledger_kernel.exceptions import (
    DuplicateEventError,
    DuplicateTransactionError,
    EventConflictError,
    LedgerError,
    NotFoundError,
    PeriodAlreadyCalculatedError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services import AccountService, JournalService, PeriodService
from ledger_modules.assets import DepreciationService
from ledger_modules.cash import BankReconciliationService, StatementLine, parse_statement_csv
from ledger_modules.events import EventIngestionService

logger = get_logger("services.api")

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"

_CONFLICT_ERRORS = (
    EventConflictError,
    DuplicateEventError,
    DuplicateTransactionError,
    PeriodAlreadyCalculatedError,
)


def status_for_error(exc: LedgerError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, _CONFLICT_ERRORS):
        return 409
    return 400


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return f"{value:f}"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass(frozen=True)
class ApiResult:
    success: bool
    data: Any = None
    error: dict[str, str] | None = None
    status: int = 200

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready body: ``{success, data}`` or ``{success, error}``."""
        if self.success:
            return {"success": True, "data": _plain(self.data)}
        return {"success": False, "error": dict(self.error or {})}


class LedgerApi:
    """
    Facade used by the HTTP layer.

    Kernel services only flush, so the facade commits for them; module
    services commit on their own and the facade's commit is then a no-op.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        clock = clock or SystemClock()
        config = config or get_active_config()
        self.accounts = AccountService(session, clock)
        self.periods = PeriodService(session, clock)
        self.journal = JournalService(session, clock)
        self.events = EventIngestionService(session, config=config, clock=clock)
        self.bank = BankReconciliationService(session, config=config, clock=clock)
        self.depreciation = DepreciationService(session, config=config, clock=clock)

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> ApiResult:
        try:
            data = fn(*args, **kwargs)
            self._session.commit()
        except LedgerError as exc:
            self._session.rollback()
            status = status_for_error(exc)
            logger.warning(
                "api_request_rejected",
                extra={"operation": operation, "error_code": exc.code, "status": status},
            )
            return ApiResult(
                success=False,
                error={"code": exc.code, "message": str(exc)},
                status=status,
            )
        except Exception:
            self._session.rollback()
            logger.exception("api_request_failed", extra={"operation": operation})
            return ApiResult(
                success=False,
                error={"code": "INTERNAL_ERROR", "message": INTERNAL_ERROR_MESSAGE},
                status=500,
            )
        return ApiResult(success=True, data=data)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def create_account(self, code: str, name: str, account_type: str, **kwargs: Any) -> ApiResult:
        return self._call("create_account", self.accounts.create_account, code, name, account_type, **kwargs)

    def get_account(self, code: str) -> ApiResult:
        def load():
            info = self.accounts.get_by_code(code)
            if info is None:
                raise NotFoundError("Account", code)
            return info

        return self._call("get_account", load)

    def list_accounts(self, active_only: bool = False) -> ApiResult:
        return self._call("list_accounts", self.accounts.list_accounts, active_only)

    def get_account_balance(self, account_id: UUID, as_of: date | None = None) -> ApiResult:
        return self._call("get_account_balance", self.accounts.get_balance, account_id, as_of)

    def deactivate_account(self, account_id: UUID, actor: str) -> ApiResult:
        return self._call("deactivate_account", self.accounts.deactivate_account, account_id, actor)

    def delete_account(self, account_id: UUID) -> ApiResult:
        return self._call("delete_account", self.accounts.delete_account, account_id)

    # -------------------------------------------------------------------------
    # Fiscal periods
    # -------------------------------------------------------------------------

    def create_period(self, fiscal_year: int, fiscal_month: int, actor: str) -> ApiResult:
        return self._call("create_period", self.periods.create_period, fiscal_year, fiscal_month, actor)

    def close_period(self, fiscal_year: int, fiscal_month: int, closed_by: str) -> ApiResult:
        return self._call("close_period", self.periods.close_period, fiscal_year, fiscal_month, closed_by)

    def reopen_period(self, fiscal_year: int, fiscal_month: int, reason: str, reopened_by: str) -> ApiResult:
        return self._call(
            "reopen_period", self.periods.reopen_period, fiscal_year, fiscal_month, reason, reopened_by
        )

    def lock_period(self, fiscal_year: int, fiscal_month: int, locked_by: str) -> ApiResult:
        return self._call("lock_period", self.periods.lock_period, fiscal_year, fiscal_month, locked_by)

    def list_periods(self, fiscal_year: int | None = None) -> ApiResult:
        return self._call("list_periods", self.periods.list_periods, fiscal_year)

    # -------------------------------------------------------------------------
    # Journal entries
    # -------------------------------------------------------------------------

    def create_entry(self, lines: Sequence[LineSpec], metadata: EntryMetadata, actor: str) -> ApiResult:
        return self._call("create_entry", self.journal.create, lines, metadata, actor)

    def get_entry(self, entry_id: UUID) -> ApiResult:
        return self._call("get_entry", self.journal.get_entry, entry_id)

    def post_entry(self, entry_id: UUID, posted_by: str) -> ApiResult:
        return self._call("post_entry", self.journal.post, entry_id, posted_by)

    def void_entry(self, entry_id: UUID, reason: str, voided_by: str) -> ApiResult:
        return self._call("void_entry", self.journal.void, entry_id, reason, voided_by)

    def reverse_entry(self, entry_id: UUID, reversal_date: date, actor: str) -> ApiResult:
        return self._call("reverse_entry", self.journal.create_reversal, entry_id, reversal_date, actor)

    def delete_draft(self, entry_id: UUID) -> ApiResult:
        return self._call("delete_draft", self.journal.delete_draft, entry_id)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def handle_event(self, payload: dict[str, Any]) -> ApiResult:
        return self._call("handle_event", self.events.handle, payload)

    def list_failed_events(self, limit: int = 100) -> ApiResult:
        return self._call("list_failed_events", self.events.list_failed_events, limit)

    # -------------------------------------------------------------------------
    # Bank reconciliation
    # -------------------------------------------------------------------------

    def register_bank_account(self, account_id: UUID, bank_name: str, account_number: str,
                              account_name: str, **kwargs: Any) -> ApiResult:
        return self._call(
            "register_bank_account",
            self.bank.register_bank_account,
            account_id, bank_name, account_number, account_name, **kwargs,
        )

    def import_statement(
        self,
        bank_account_id: UUID,
        statement_date: date,
        period_start: date,
        period_end: date,
        opening_balance: Decimal,
        closing_balance: Decimal,
        transactions: Sequence[StatementLine | dict[str, Any]],
        actor: str,
    ) -> ApiResult:
        return self._call(
            "import_statement",
            self.bank.import_statement,
            bank_account_id, statement_date, period_start, period_end,
            opening_balance, closing_balance, transactions, actor,
        )

    def import_statement_csv(
        self,
        bank_account_id: UUID,
        statement_date: date,
        period_start: date,
        period_end: date,
        opening_balance: Decimal,
        closing_balance: Decimal,
        csv_text: str,
        actor: str,
    ) -> ApiResult:
        def run():
            return self.bank.import_statement(
                bank_account_id, statement_date, period_start, period_end,
                opening_balance, closing_balance, parse_statement_csv(csv_text), actor,
            )

        return self._call("import_statement_csv", run)

    def validate_statement(self, statement_id: UUID) -> ApiResult:
        return self._call("validate_statement", self.bank.validate_totals, statement_id)

    def delete_statement(self, statement_id: UUID) -> ApiResult:
        return self._call("delete_statement", self.bank.delete_statement, statement_id)

    def match_transaction(self, transaction_id: UUID, journal_line_id: UUID, matched_by: str) -> ApiResult:
        return self._call(
            "match_transaction", self.bank.match_transaction, transaction_id, journal_line_id, matched_by
        )

    def auto_match(self, statement_id: UUID, matched_by: str = "system") -> ApiResult:
        return self._call("auto_match", self.bank.auto_match, statement_id, matched_by=matched_by)

    def complete_reconciliation(self, statement_id: UUID, reconciled_by: str) -> ApiResult:
        return self._call(
            "complete_reconciliation", self.bank.complete_reconciliation, statement_id, reconciled_by
        )

    # -------------------------------------------------------------------------
    # Depreciation
    # -------------------------------------------------------------------------

    def preview_depreciation(self, fiscal_year: int, fiscal_month: int) -> ApiResult:
        return self._call("preview_depreciation", self.depreciation.preview, fiscal_year, fiscal_month)

    def calculate_depreciation(self, fiscal_year: int, fiscal_month: int, calculated_by: str) -> ApiResult:
        return self._call(
            "calculate_depreciation", self.depreciation.calculate, fiscal_year, fiscal_month, calculated_by
        )

    def post_depreciation(self, run_id: UUID, posted_by: str) -> ApiResult:
        return self._call("post_depreciation", self.depreciation.post, run_id, posted_by)

    def reverse_depreciation(self, run_id: UUID, reason: str, reversed_by: str) -> ApiResult:
        return self._call("reverse_depreciation", self.depreciation.reverse, run_id, reason, reversed_by)
