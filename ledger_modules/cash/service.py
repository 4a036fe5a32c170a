"""
ledger_modules.cash.service
===========================

Responsibility:
    Bank reconciliation: bank account registry, statement import with
    fingerprint de-duplication, statement total checks, manual and
    automatic matching of bank transactions to posted ledger lines, and
    completion of a reconciliation.

Architecture:
    Module layer.  Reads ledger lines through the kernel JournalService;
    never writes journal rows.  Owns the transaction boundary (commit on
    success, rollback on failure).

Invariants enforced:
    - A transaction fingerprint is stored at most once
      (``uq_cash_bank_transactions_fingerprint``); re-imports skip it.
    - Fingerprints are checked with one set-membership query per chunk,
      never one query per row.
    - Statement counters are recomputed from the stored rows.
    - A statement with Matched transactions cannot be deleted.
    - A ledger line is matched to at most one bank transaction.

Failure modes:
    - NotFoundError, ValidationError, InvalidTransitionError,
      HasMatchedTransactionsError, DuplicateTransactionError (concurrent
      import of the same rows).

Usage::

    service = BankReconciliationService(session, clock=clock)
    result = service.import_statement(
        bank_account_id, date(2024, 1, 31), date(2024, 1, 1), date(2024, 1, 31),
        opening_balance=Decimal("1000"), closing_balance=Decimal("1500"),
        transactions=parse_statement_csv(csv_text), actor="treasury",
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.db.types import enum_value, to_decimal
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    DuplicateTransactionError,
    HasMatchedTransactionsError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.services.journal_service import JournalService
from ledger_modules.cash.helpers import (
    BankLine,
    MatchCandidate,
    MatchTolerance,
    StatementLine,
    StatementTotals,
    compute_fingerprint,
    is_compatible,
    match_greedy,
    summarize,
    validate_statement_totals,
)
from ledger_modules.cash.models import (
    AutoMatchResult,
    BankAccountInfo,
    BankStatementInfo,
    BankTransactionInfo,
    StatementImportResult,
)
from ledger_modules.cash.orm import (
    BankAccountModel,
    BankAccountStatus,
    BankStatementModel,
    BankTransactionModel,
    BankTransactionType,
    MatchStatus,
    StatementStatus,
)

logger = get_logger("modules.cash.service")

# Bound parameters per IN (...) clause.
_IN_CHUNK = 500


def _chunks(items: Sequence[Any], size: int = _IN_CHUNK):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _to_statement_line(item: StatementLine | dict[str, Any]) -> StatementLine:
    if isinstance(item, StatementLine):
        return item
    raw_date = item.get("transaction_date", item.get("date"))
    if isinstance(raw_date, str):
        try:
            raw_date = date.fromisoformat(raw_date)
        except ValueError as exc:
            raise ValidationError(f"Invalid transaction date {raw_date!r}", field="date") from exc
    if not isinstance(raw_date, date):
        raise ValidationError("Transaction date is required", field="date")
    return StatementLine(
        transaction_date=raw_date,
        amount=item.get("amount"),
        description=item.get("description") or "",
        reference=item.get("reference"),
    )


class BankReconciliationService:
    """
    Orchestrates statement import and reconciliation.

    Contract:
        Each public mutating method either commits and returns a frozen
        DTO, or rolls back and raises.

    Non-goals:
        - Does NOT post adjusting journal entries for bank fees or interest.
        - Does NOT fetch statements from banks.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._journal = JournalService(session, self._clock)

    # =========================================================================
    # Loading
    # =========================================================================

    def _bank_account(self, bank_account_id: UUID, for_update: bool = False) -> BankAccountModel:
        stmt = select(BankAccountModel).where(BankAccountModel.id == bank_account_id)
        if for_update:
            stmt = stmt.with_for_update()
        account = self._session.execute(stmt).scalar_one_or_none()
        if account is None:
            raise NotFoundError("BankAccount", str(bank_account_id))
        return account

    def _statement(self, statement_id: UUID, for_update: bool = False) -> BankStatementModel:
        stmt = select(BankStatementModel).where(BankStatementModel.id == statement_id)
        if for_update:
            stmt = stmt.with_for_update()
        statement = self._session.execute(stmt).scalar_one_or_none()
        if statement is None:
            raise NotFoundError("BankStatement", str(statement_id))
        return statement

    def _transaction(self, transaction_id: UUID) -> BankTransactionModel:
        txn = self._session.execute(
            select(BankTransactionModel)
            .where(BankTransactionModel.id == transaction_id)
            .with_for_update()
        ).scalar_one_or_none()
        if txn is None:
            raise NotFoundError("BankTransaction", str(transaction_id))
        return txn

    # =========================================================================
    # Bank accounts
    # =========================================================================

    def register_bank_account(
        self,
        account_id: UUID,
        bank_name: str,
        account_number: str,
        account_name: str,
        account_type: str = "checking",
        currency: str = "IDR",
        actor: str = "system",
    ) -> BankAccountInfo:
        """
        Register a bank account against an asset account of the ledger.

        Raises:
            NotFoundError: Ledger account does not exist.
            ValidationError: Blank fields, non-asset ledger account,
                duplicate account number, or ledger account already linked.
        """
        try:
            ledger_account = self._journal.accounts.require_account(account_id)
            if enum_value(ledger_account.account_type) != AccountType.ASSET.value:
                raise ValidationError(
                    f"Bank account must link to an asset account, "
                    f"{ledger_account.code} is {enum_value(ledger_account.account_type)}",
                    field="account_id",
                )
            account_number = (account_number or "").strip()
            if not account_number:
                raise ValidationError("Account number is required", field="account_number")
            if not (bank_name or "").strip():
                raise ValidationError("Bank name is required", field="bank_name")

            existing = self._session.execute(
                select(BankAccountModel).where(
                    (BankAccountModel.account_number == account_number)
                    | (BankAccountModel.account_id == account_id)
                )
            ).scalars().first()
            if existing is not None:
                if existing.account_number == account_number:
                    raise ValidationError(
                        f"Bank account number {account_number} already exists",
                        field="account_number",
                    )
                raise ValidationError(
                    f"Ledger account {ledger_account.code} is already linked to a bank account",
                    field="account_id",
                )

            model = BankAccountModel(
                account_id=account_id,
                bank_name=bank_name.strip(),
                account_number=account_number,
                account_name=(account_name or bank_name).strip(),
                account_type=account_type,
                currency=currency.upper(),
                status=BankAccountStatus.ACTIVE,
                created_by=actor,
            )
            self._session.add(model)
            self._session.flush()
            info = BankAccountInfo.from_model(model)
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ValidationError(
                f"Bank account number {account_number} already exists",
                field="account_number",
            ) from exc
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "bank_account_registered",
            extra={
                "bank_account_id": str(info.id),
                "account_number": info.account_number,
                "ledger_account": ledger_account.code,
            },
        )
        return info

    def get_bank_account(self, bank_account_id: UUID) -> BankAccountInfo:
        return BankAccountInfo.from_model(self._bank_account(bank_account_id))

    def list_bank_accounts(self, status: BankAccountStatus | None = None) -> list[BankAccountInfo]:
        stmt = select(BankAccountModel).order_by(BankAccountModel.account_number)
        if status is not None:
            stmt = stmt.where(BankAccountModel.status == status.value)
        return [BankAccountInfo.from_model(m) for m in self._session.execute(stmt).scalars()]

    def _transition_bank_account(
        self,
        bank_account_id: UUID,
        allowed_from: tuple[BankAccountStatus, ...],
        to_status: BankAccountStatus,
        operation: str,
        event_name: str,
        actor: str,
    ) -> BankAccountInfo:
        try:
            account = self._bank_account(bank_account_id, for_update=True)
            current = enum_value(account.status)
            if current not in {s.value for s in allowed_from}:
                raise InvalidTransitionError("BankAccount", str(account.id), current, operation)
            account.status = to_status
            account.updated_by = actor
            self._session.flush()
            info = BankAccountInfo.from_model(account)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            event_name,
            extra={"bank_account_id": str(bank_account_id), "status": to_status.value},
        )
        return info

    def deactivate_bank_account(self, bank_account_id: UUID, actor: str = "system") -> BankAccountInfo:
        return self._transition_bank_account(
            bank_account_id, (BankAccountStatus.ACTIVE,), BankAccountStatus.INACTIVE,
            "deactivate", "bank_account_deactivated", actor,
        )

    def reactivate_bank_account(self, bank_account_id: UUID, actor: str = "system") -> BankAccountInfo:
        return self._transition_bank_account(
            bank_account_id, (BankAccountStatus.INACTIVE,), BankAccountStatus.ACTIVE,
            "reactivate", "bank_account_reactivated", actor,
        )

    def close_bank_account(self, bank_account_id: UUID, actor: str = "system") -> BankAccountInfo:
        """Closed is terminal."""
        return self._transition_bank_account(
            bank_account_id,
            (BankAccountStatus.ACTIVE, BankAccountStatus.INACTIVE),
            BankAccountStatus.CLOSED,
            "close",
            "bank_account_closed",
            actor,
        )

    # =========================================================================
    # Statements
    # =========================================================================

    def _existing_fingerprints(self, fingerprints: Sequence[str]) -> set[str]:
        found: set[str] = set()
        for chunk in _chunks(list(fingerprints)):
            found.update(
                self._session.execute(
                    select(BankTransactionModel.fingerprint).where(
                        BankTransactionModel.fingerprint.in_(chunk)
                    )
                ).scalars()
            )
        return found

    def import_statement(
        self,
        bank_account_id: UUID,
        statement_date: date,
        period_start: date,
        period_end: date,
        opening_balance: Decimal,
        closing_balance: Decimal,
        transactions: Sequence[StatementLine | dict[str, Any]],
        actor: str = "system",
    ) -> StatementImportResult:
        """
        Import a statement and its transactions.

        Preconditions:
            - The bank account exists and is Active.
            - ``period_start < period_end``.

        Postconditions:
            - Rows whose fingerprint is already stored (or repeated within
              the batch) are skipped and counted in ``duplicates_skipped``.
            - Statement counters reflect the stored rows.

        Raises:
            NotFoundError, ValidationError, DuplicateTransactionError.
        """
        try:
            account = self._bank_account(bank_account_id)
            if not account.is_active:
                raise ValidationError(
                    f"Bank account {account.account_number} is {enum_value(account.status)}",
                    field="bank_account_id",
                )
            if period_start >= period_end:
                raise ValidationError(
                    "Statement period start must be before period end", field="period_start"
                )
            opening = to_decimal(opening_balance)
            closing = to_decimal(closing_balance)
            lines = [_to_statement_line(item) for item in transactions]

            keyed: dict[str, StatementLine] = {}
            for line in lines:
                fingerprint = compute_fingerprint(
                    account.id, line.transaction_date, line.amount,
                    line.description, line.reference,
                )
                keyed.setdefault(fingerprint, line)

            existing = self._existing_fingerprints(list(keyed))
            new_rows = {fp: line for fp, line in keyed.items() if fp not in existing}
            duplicates = len(lines) - len(new_rows)

            statement = BankStatementModel(
                bank_account_id=account.id,
                statement_date=statement_date,
                period_start=period_start,
                period_end=period_end,
                opening_balance=opening,
                closing_balance=closing,
                status=StatementStatus.IMPORTED,
                created_by=actor,
            )
            statement.transactions = [
                BankTransactionModel(
                    bank_account_id=account.id,
                    transaction_date=line.transaction_date,
                    amount=line.amount,
                    transaction_type=(
                        BankTransactionType.CREDIT if line.amount >= 0 else BankTransactionType.DEBIT
                    ),
                    description=line.description,
                    reference=line.reference,
                    fingerprint=fp,
                    match_status=MatchStatus.UNMATCHED,
                    created_by=actor,
                )
                for fp, line in new_rows.items()
            ]
            self._session.add(statement)
            try:
                self._session.flush()
            except IntegrityError as exc:
                self._session.rollback()
                raced = self._existing_fingerprints(list(new_rows))
                if not raced:
                    raise
                raise DuplicateTransactionError(sorted(raced)[0]) from exc

            self._recompute_totals(statement)
            result = StatementImportResult(
                statement_id=statement.id,
                bank_account_id=account.id,
                statement_date=statement_date,
                transactions_imported=len(new_rows),
                duplicates_skipped=duplicates,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "statement_imported",
            extra={
                "statement_id": str(result.statement_id),
                "bank_account_id": str(bank_account_id),
                "transactions_imported": result.transactions_imported,
                "duplicates_skipped": result.duplicates_skipped,
            },
        )
        return result

    def _recompute_totals(self, statement: BankStatementModel) -> None:
        amounts = self._session.execute(
            select(BankTransactionModel.amount).where(
                BankTransactionModel.bank_statement_id == statement.id
            )
        ).scalars()
        debits, credits, count = summarize(to_decimal(a) for a in amounts)
        statement.total_debits = debits
        statement.total_credits = credits
        statement.transaction_count = count
        self._session.flush()

    def get_statement(self, statement_id: UUID) -> BankStatementInfo:
        return BankStatementInfo.from_model(self._statement(statement_id))

    def list_statements(self, bank_account_id: UUID) -> list[BankStatementInfo]:
        stmt = (
            select(BankStatementModel)
            .where(BankStatementModel.bank_account_id == bank_account_id)
            .order_by(BankStatementModel.period_start)
        )
        return [BankStatementInfo.from_model(m) for m in self._session.execute(stmt).scalars()]

    def list_transactions(
        self,
        statement_id: UUID,
        match_status: MatchStatus | None = None,
    ) -> list[BankTransactionInfo]:
        stmt = (
            select(BankTransactionModel)
            .where(BankTransactionModel.bank_statement_id == statement_id)
            .order_by(BankTransactionModel.transaction_date, BankTransactionModel.id)
        )
        if match_status is not None:
            stmt = stmt.where(BankTransactionModel.match_status == match_status.value)
        return [BankTransactionInfo.from_model(t) for t in self._session.execute(stmt).scalars()]

    def validate_totals(self, statement_id: UUID) -> StatementTotals:
        """Sanity check only; an invalid statement stays importable."""
        statement = self._statement(statement_id)
        totals = validate_statement_totals(
            statement.opening_balance,
            statement.closing_balance,
            statement.total_debits,
            statement.total_credits,
        )
        if not totals.is_valid:
            logger.warning(
                "statement_totals_mismatch",
                extra={
                    "statement_id": str(statement_id),
                    "calculated_closing": str(totals.calculated_closing),
                    "difference": str(totals.difference),
                },
            )
        return totals

    def _count(self, statement_id: UUID, status: MatchStatus) -> int:
        return self._session.execute(
            select(func.count(BankTransactionModel.id)).where(
                BankTransactionModel.bank_statement_id == statement_id,
                BankTransactionModel.match_status == status.value,
            )
        ).scalar_one()

    def delete_statement(self, statement_id: UUID) -> None:
        """
        Delete a statement and its transactions.

        Raises:
            HasMatchedTransactionsError: At least one transaction is Matched.
        """
        try:
            statement = self._statement(statement_id, for_update=True)
            matched = self._count(statement_id, MatchStatus.MATCHED)
            if matched:
                raise HasMatchedTransactionsError(str(statement_id), matched)
            self._session.delete(statement)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("statement_deleted", extra={"statement_id": str(statement_id)})

    # =========================================================================
    # Matching
    # =========================================================================

    def _require_open_statement(self, txn: BankTransactionModel, operation: str) -> None:
        statement = self._statement(txn.bank_statement_id)
        if enum_value(statement.status) == StatementStatus.RECONCILED.value:
            raise InvalidTransitionError(
                "BankStatement", str(statement.id), StatementStatus.RECONCILED.value, operation
            )

    def _matched_line_ids(self, journal_line_ids: Sequence[UUID]) -> set[UUID]:
        found: set[UUID] = set()
        for chunk in _chunks(list(journal_line_ids)):
            found.update(
                self._session.execute(
                    select(BankTransactionModel.matched_journal_line_id).where(
                        BankTransactionModel.matched_journal_line_id.in_(chunk)
                    )
                ).scalars()
            )
        return found

    def match_transaction(
        self,
        transaction_id: UUID,
        journal_line_id: UUID,
        matched_by: str,
    ) -> BankTransactionInfo:
        """
        Manually pair an Unmatched transaction with a posted ledger line on
        the bank's GL account.

        Raises:
            InvalidTransitionError: Transaction is not Unmatched.
            NotFoundError: Transaction or journal line missing.
            ValidationError: Line not posted, on another account, or
                already matched.
        """
        try:
            txn = self._transaction(transaction_id)
            current = enum_value(txn.match_status)
            if current != MatchStatus.UNMATCHED.value:
                raise InvalidTransitionError("BankTransaction", str(txn.id), current, "match")
            self._require_open_statement(txn, "match")

            account = self._bank_account(txn.bank_account_id)
            line = self._journal.get_line(journal_line_id)
            if line.entry_status != "posted":
                raise ValidationError(
                    f"Journal entry {line.entry_number} is {line.entry_status}",
                    field="journal_line_id",
                )
            if line.account_id != account.account_id:
                raise ValidationError(
                    "Journal line is not on the bank account's ledger account",
                    field="journal_line_id",
                )
            if self._matched_line_ids([journal_line_id]):
                raise ValidationError(
                    "Journal line is already matched", field="journal_line_id"
                )

            self._apply_match(txn, journal_line_id, matched_by)
            info = BankTransactionInfo.from_model(txn)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "bank_transaction_matched",
            extra={
                "transaction_id": str(transaction_id),
                "journal_line_id": str(journal_line_id),
                "actor_id": matched_by,
            },
        )
        return info

    def _apply_match(self, txn: BankTransactionModel, journal_line_id: UUID, matched_by: str) -> None:
        txn.match_status = MatchStatus.MATCHED
        txn.matched_journal_line_id = journal_line_id
        txn.matched_at = self._clock.now()
        txn.matched_by = matched_by
        txn.updated_by = matched_by
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise ValidationError(
                "Journal line is already matched", field="journal_line_id"
            ) from exc

    def unmatch_transaction(self, transaction_id: UUID, actor: str) -> BankTransactionInfo:
        try:
            txn = self._transaction(transaction_id)
            current = enum_value(txn.match_status)
            if current != MatchStatus.MATCHED.value:
                raise InvalidTransitionError("BankTransaction", str(txn.id), current, "unmatch")
            self._require_open_statement(txn, "unmatch")
            txn.match_status = MatchStatus.UNMATCHED
            txn.matched_journal_line_id = None
            txn.matched_at = None
            txn.matched_by = None
            txn.updated_by = actor
            self._session.flush()
            info = BankTransactionInfo.from_model(txn)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "bank_transaction_unmatched",
            extra={"transaction_id": str(transaction_id), "actor_id": actor},
        )
        return info

    def exclude_transaction(self, transaction_id: UUID, reason: str, actor: str) -> BankTransactionInfo:
        """Unmatched -> Ignored (e.g. a bank-side correction pair)."""
        try:
            reason = (reason or "").strip()
            if not reason:
                raise ValidationError("Exclusion reason is required", field="reason")
            txn = self._transaction(transaction_id)
            current = enum_value(txn.match_status)
            if current != MatchStatus.UNMATCHED.value:
                raise InvalidTransitionError("BankTransaction", str(txn.id), current, "exclude")
            self._require_open_statement(txn, "exclude")
            txn.match_status = MatchStatus.IGNORED
            txn.exclusion_reason = reason
            txn.updated_by = actor
            self._session.flush()
            info = BankTransactionInfo.from_model(txn)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "bank_transaction_excluded",
            extra={"transaction_id": str(transaction_id), "reason": reason, "actor_id": actor},
        )
        return info

    def include_transaction(self, transaction_id: UUID, actor: str) -> BankTransactionInfo:
        """Ignored -> Unmatched."""
        try:
            txn = self._transaction(transaction_id)
            current = enum_value(txn.match_status)
            if current != MatchStatus.IGNORED.value:
                raise InvalidTransitionError("BankTransaction", str(txn.id), current, "include")
            self._require_open_statement(txn, "include")
            txn.match_status = MatchStatus.UNMATCHED
            txn.exclusion_reason = None
            txn.updated_by = actor
            self._session.flush()
            info = BankTransactionInfo.from_model(txn)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "bank_transaction_included",
            extra={"transaction_id": str(transaction_id), "actor_id": actor},
        )
        return info

    def auto_match(
        self,
        statement_id: UUID,
        amount_tolerance: Decimal | None = None,
        date_tolerance_days: int | None = None,
        matched_by: str = "system",
    ) -> AutoMatchResult:
        """
        Match every Unmatched transaction of a statement to an unmatched
        posted line on the bank's GL account.

        Tolerances default to the ``reconciliation`` configuration
        (amount 0, three days).
        """
        settings = self._config.reconciliation
        tolerance = MatchTolerance(
            amount_tolerance=to_decimal(
                settings.amount_tolerance if amount_tolerance is None else amount_tolerance
            ),
            date_tolerance_days=(
                settings.date_tolerance_days if date_tolerance_days is None else date_tolerance_days
            ),
        )
        try:
            statement = self._statement(statement_id, for_update=True)
            if enum_value(statement.status) == StatementStatus.RECONCILED.value:
                raise InvalidTransitionError(
                    "BankStatement", str(statement.id), StatementStatus.RECONCILED.value, "auto_match"
                )
            account = self._bank_account(statement.bank_account_id)

            open_txns = [
                t for t in statement.transactions
                if enum_value(t.match_status) == MatchStatus.UNMATCHED.value
            ]
            skipped = len(statement.transactions) - len(open_txns)

            pairs: dict[UUID, UUID] = {}
            if open_txns:
                window = timedelta(days=tolerance.date_tolerance_days)
                first = min(t.transaction_date for t in open_txns) - window
                last = max(t.transaction_date for t in open_txns) + window
                posted = self._journal.posted_lines_for_account(account.account_id, first, last)
                taken = self._matched_line_ids([line.line_id for line in posted])
                candidates = [
                    MatchCandidate(
                        journal_line_id=line.line_id,
                        entry_date=line.entry_date,
                        side=line.side,
                        amount=line.amount,
                    )
                    for line in posted
                    if line.line_id not in taken
                ]
                bank_lines = [
                    BankLine(t.id, t.transaction_date, to_decimal(t.amount)) for t in open_txns
                ]
                pairs = match_greedy(bank_lines, candidates, tolerance)

                by_id = {t.id: t for t in open_txns}
                for transaction_id, line_id in pairs.items():
                    self._apply_match(by_id[transaction_id], line_id, matched_by)

            result = AutoMatchResult(
                matched=len(pairs),
                unmatched=len(open_txns) - len(pairs),
                skipped=skipped,
                matches=tuple(sorted(pairs.items(), key=lambda p: str(p[0]))),
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "statement_auto_matched",
            extra={
                "statement_id": str(statement_id),
                "matched": result.matched,
                "unmatched": result.unmatched,
                "skipped": result.skipped,
            },
        )
        return result

    def suggest_matches(self, transaction_id: UUID) -> list[UUID]:
        """Compatible unmatched ledger lines for one transaction, best first."""
        txn = self._session.get(BankTransactionModel, transaction_id)
        if txn is None:
            raise NotFoundError("BankTransaction", str(transaction_id))
        account = self._bank_account(txn.bank_account_id)
        settings = self._config.reconciliation
        tolerance = MatchTolerance(
            amount_tolerance=to_decimal(settings.amount_tolerance),
            date_tolerance_days=settings.date_tolerance_days,
        )
        window = timedelta(days=tolerance.date_tolerance_days)
        bank_line = BankLine(txn.id, txn.transaction_date, to_decimal(txn.amount))
        posted = self._journal.posted_lines_for_account(
            account.account_id, txn.transaction_date - window, txn.transaction_date + window
        )
        taken = self._matched_line_ids([line.line_id for line in posted])
        candidates = [
            MatchCandidate(line.line_id, line.entry_date, line.side, line.amount)
            for line in posted
            if line.line_id not in taken
        ]
        compatible = [c for c in candidates if is_compatible(bank_line, c, tolerance)]
        compatible.sort(
            key=lambda c: (
                abs((bank_line.transaction_date - c.entry_date).days),
                abs(abs(bank_line.amount) - c.amount),
                str(c.journal_line_id),
            )
        )
        return [c.journal_line_id for c in compatible]

    # =========================================================================
    # Completion
    # =========================================================================

    def complete_reconciliation(self, statement_id: UUID, reconciled_by: str) -> BankStatementInfo:
        """
        Mark a statement reconciled.

        Preconditions:
            - Statement totals validate.
            - No transaction is still Unmatched.

        Postconditions:
            - The bank account's last reconciled date and balance are the
              statement's period end and closing balance.
        """
        try:
            statement = self._statement(statement_id, for_update=True)
            if enum_value(statement.status) == StatementStatus.RECONCILED.value:
                raise InvalidTransitionError(
                    "BankStatement", str(statement.id), StatementStatus.RECONCILED.value, "reconcile"
                )
            totals = validate_statement_totals(
                statement.opening_balance,
                statement.closing_balance,
                statement.total_debits,
                statement.total_credits,
            )
            if not totals.is_valid:
                raise ValidationError(
                    f"Statement totals do not reconcile (difference {totals.difference})",
                    field="closing_balance",
                )
            unmatched = self._count(statement_id, MatchStatus.UNMATCHED)
            if unmatched:
                raise ValidationError(
                    f"{unmatched} transaction(s) are still unmatched", field="transactions"
                )

            now = self._clock.now()
            statement.status = StatementStatus.RECONCILED
            statement.reconciled_at = now
            statement.reconciled_by = reconciled_by
            statement.updated_by = reconciled_by

            account = self._bank_account(statement.bank_account_id, for_update=True)
            account.last_reconciled_date = statement.period_end
            account.last_reconciled_balance = statement.closing_balance
            account.updated_by = reconciled_by
            self._session.flush()

            info = BankStatementInfo.from_model(statement)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "statement_reconciled",
            extra={
                "statement_id": str(statement_id),
                "closing_balance": str(info.closing_balance),
                "actor_id": reconciled_by,
            },
        )
        return info
