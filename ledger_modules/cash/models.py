"""
ledger_modules.cash.models
==========================

Responsibility:
    Frozen value objects returned by ``BankReconciliationService``.  No
    business logic; structure only.

Invariants enforced:
    - All monetary fields use ``Decimal``.
    - All DTOs are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import enum_value
from ledger_modules.cash.orm import (
    BankAccountModel,
    BankStatementModel,
    BankTransactionModel,
)


@dataclass(frozen=True)
class BankAccountInfo:
    id: UUID
    account_id: UUID
    bank_name: str
    account_number: str
    account_name: str
    account_type: str
    currency: str
    status: str
    last_reconciled_date: date | None = None
    last_reconciled_balance: Decimal | None = None

    @classmethod
    def from_model(cls, model: BankAccountModel) -> BankAccountInfo:
        return cls(
            id=model.id,
            account_id=model.account_id,
            bank_name=model.bank_name,
            account_number=model.account_number,
            account_name=model.account_name,
            account_type=model.account_type,
            currency=model.currency,
            status=enum_value(model.status),
            last_reconciled_date=model.last_reconciled_date,
            last_reconciled_balance=model.last_reconciled_balance,
        )


@dataclass(frozen=True)
class BankStatementInfo:
    id: UUID
    bank_account_id: UUID
    statement_date: date
    period_start: date
    period_end: date
    opening_balance: Decimal
    closing_balance: Decimal
    total_debits: Decimal
    total_credits: Decimal
    transaction_count: int
    status: str
    reconciled_at: datetime | None = None
    reconciled_by: str | None = None

    @classmethod
    def from_model(cls, model: BankStatementModel) -> BankStatementInfo:
        return cls(
            id=model.id,
            bank_account_id=model.bank_account_id,
            statement_date=model.statement_date,
            period_start=model.period_start,
            period_end=model.period_end,
            opening_balance=model.opening_balance,
            closing_balance=model.closing_balance,
            total_debits=model.total_debits,
            total_credits=model.total_credits,
            transaction_count=model.transaction_count,
            status=enum_value(model.status),
            reconciled_at=model.reconciled_at,
            reconciled_by=model.reconciled_by,
        )


@dataclass(frozen=True)
class BankTransactionInfo:
    id: UUID
    bank_statement_id: UUID
    transaction_date: date
    amount: Decimal
    transaction_type: str
    description: str
    reference: str | None
    fingerprint: str
    match_status: str
    matched_journal_line_id: UUID | None = None
    matched_by: str | None = None
    exclusion_reason: str | None = None

    @classmethod
    def from_model(cls, model: BankTransactionModel) -> BankTransactionInfo:
        return cls(
            id=model.id,
            bank_statement_id=model.bank_statement_id,
            transaction_date=model.transaction_date,
            amount=model.amount,
            transaction_type=enum_value(model.transaction_type),
            description=model.description,
            reference=model.reference,
            fingerprint=model.fingerprint,
            match_status=enum_value(model.match_status),
            matched_journal_line_id=model.matched_journal_line_id,
            matched_by=model.matched_by,
            exclusion_reason=model.exclusion_reason,
        )


@dataclass(frozen=True)
class StatementImportResult:
    statement_id: UUID
    bank_account_id: UUID
    statement_date: date
    transactions_imported: int
    duplicates_skipped: int


@dataclass(frozen=True)
class AutoMatchResult:
    """
    ``matched``: pairs made by this run.  ``unmatched``: still open
    afterwards.  ``skipped``: already matched or ignored beforehand.
    """

    matched: int
    unmatched: int
    skipped: int
    matches: tuple[tuple[UUID, UUID], ...] = field(default_factory=tuple)
