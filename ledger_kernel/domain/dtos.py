"""
DTOs -- immutable data transfer objects for the ledger kernel.

Responsibility:
    Inputs to the journal engine (LineSpec, EntryMetadata) and the frozen
    snapshots services hand back to callers (JournalEntryInfo,
    FiscalPeriodInfo, AccountInfo, AccountBalance).  Callers never receive
    live ORM entities, so nothing outside a service can mutate ledger rows
    behind its back.

Failure modes:
    - ValidationError from LineSpec when neither or both of account_id /
      account_code are given, or the amount is not positive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ledger_kernel.db.types import enum_value, to_decimal
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.models.journal import JournalEntryType, LineSide

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.fiscal_period import FiscalPeriod as FiscalPeriodModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel


@dataclass(frozen=True)
class LineSpec:
    """
    Specification for one journal line.

    Exactly one of account_id / account_code identifies the account; codes
    are resolved through the account directory at creation time.
    """

    side: LineSide
    amount: Decimal
    account_id: UUID | None = None
    account_code: str | None = None
    memo: str | None = None
    dimensions: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if (self.account_id is None) == (self.account_code is None):
            raise ValidationError(
                "Line must reference exactly one of account_id or account_code",
                field="account",
            )
        try:
            amount = to_decimal(self.amount)
        except ValueError as exc:
            raise ValidationError(str(exc), field="amount") from exc
        if amount <= 0:
            raise ValidationError(
                f"Line amount must be positive, got {amount}", field="amount"
            )
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "side", LineSide(self.side))

    @property
    def account_ref(self) -> str:
        return str(self.account_id) if self.account_id is not None else self.account_code

    @classmethod
    def debit(cls, account: UUID | str, amount, **kwargs) -> LineSpec:
        return cls(side=LineSide.DEBIT, amount=amount, **_account_kwargs(account), **kwargs)

    @classmethod
    def credit(cls, account: UUID | str, amount, **kwargs) -> LineSpec:
        return cls(side=LineSide.CREDIT, amount=amount, **_account_kwargs(account), **kwargs)

    def mirrored(self) -> LineSpec:
        """Same line on the opposite side."""
        return LineSpec(
            side=self.side.opposite(),
            amount=self.amount,
            account_id=self.account_id,
            account_code=self.account_code,
            memo=self.memo,
            dimensions=self.dimensions,
        )


def _account_kwargs(account: UUID | str) -> dict[str, Any]:
    if isinstance(account, UUID):
        return {"account_id": account}
    return {"account_code": account}


@dataclass(frozen=True)
class EntryMetadata:
    """Header fields of a journal entry."""

    entry_date: date
    description: str
    entry_type: JournalEntryType = JournalEntryType.MANUAL
    reference: str | None = None
    notes: str | None = None
    source_service: str | None = None
    source_reference_id: str | None = None
    reversal_of_id: UUID | None = None


@dataclass(frozen=True)
class JournalLineInfo:
    id: UUID
    account_id: UUID
    account_code: str
    side: LineSide
    amount: Decimal
    memo: str | None
    dimensions: dict[str, Any] | None
    line_seq: int


@dataclass(frozen=True)
class JournalEntryInfo:
    """Frozen snapshot of a journal entry and its lines."""

    id: UUID
    entry_number: str
    entry_date: date
    fiscal_year: int
    fiscal_month: int
    description: str
    entry_type: str
    status: str
    reference: str | None
    source_service: str | None
    source_reference_id: str | None
    reversal_of_id: UUID | None
    created_by: str
    posted_by: str | None
    posted_at: datetime | None
    voided_by: str | None
    voided_at: datetime | None
    void_reason: str | None
    lines: tuple[JournalLineInfo, ...] = field(default_factory=tuple)

    @property
    def total_debits(self) -> Decimal:
        return sum((l.amount for l in self.lines if l.side == LineSide.DEBIT), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((l.amount for l in self.lines if l.side == LineSide.CREDIT), Decimal("0"))

    @classmethod
    def from_model(cls, entry: JournalEntryModel) -> JournalEntryInfo:
        return cls(
            id=entry.id,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            fiscal_year=entry.fiscal_year,
            fiscal_month=entry.fiscal_month,
            description=entry.description,
            entry_type=enum_value(entry.entry_type),
            status=enum_value(entry.status),
            reference=entry.reference,
            source_service=entry.source_service,
            source_reference_id=entry.source_reference_id,
            reversal_of_id=entry.reversal_of_id,
            created_by=entry.created_by,
            posted_by=entry.posted_by,
            posted_at=entry.posted_at,
            voided_by=entry.voided_by,
            voided_at=entry.voided_at,
            void_reason=entry.void_reason,
            lines=tuple(
                JournalLineInfo(
                    id=line.id,
                    account_id=line.account_id,
                    account_code=line.account.code,
                    side=LineSide(enum_value(line.side)),
                    amount=line.amount,
                    memo=line.line_memo,
                    dimensions=dict(line.dimensions) if line.dimensions else None,
                    line_seq=line.line_seq,
                )
                for line in sorted(entry.lines, key=lambda l: l.line_seq)
            ),
        )


@dataclass(frozen=True)
class FiscalPeriodInfo:
    id: UUID
    fiscal_year: int
    fiscal_month: int
    status: str
    closed_at: datetime | None = None
    closed_by: str | None = None
    reopened_at: datetime | None = None
    reopened_by: str | None = None
    reopen_reason: str | None = None

    @property
    def period_code(self) -> str:
        return f"{self.fiscal_year}-{self.fiscal_month:02d}"

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    @classmethod
    def from_model(cls, period: FiscalPeriodModel) -> FiscalPeriodInfo:
        return cls(
            id=period.id,
            fiscal_year=period.fiscal_year,
            fiscal_month=period.fiscal_month,
            status=enum_value(period.status),
            closed_at=period.closed_at,
            closed_by=period.closed_by,
            reopened_at=period.reopened_at,
            reopened_by=period.reopened_by,
            reopen_reason=period.reopen_reason,
        )


@dataclass(frozen=True)
class AccountInfo:
    id: UUID
    code: str
    name: str
    account_type: str
    normal_balance: str
    is_detail_account: bool
    is_system_account: bool
    is_active: bool
    parent_id: UUID | None = None

    @classmethod
    def from_model(cls, account: AccountModel) -> AccountInfo:
        return cls(
            id=account.id,
            code=account.code,
            name=account.name,
            account_type=enum_value(account.account_type),
            normal_balance=enum_value(account.normal_balance),
            is_detail_account=account.is_detail_account,
            is_system_account=account.is_system_account,
            is_active=account.is_active,
            parent_id=account.parent_id,
        )


@dataclass(frozen=True)
class AccountBalance:
    """Posted-only totals for one account."""

    account_id: UUID
    account_code: str
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal
    as_of: date | None = None


@dataclass(frozen=True)
class PostedLineInfo:
    """A journal line with the header fields reconciliation needs."""

    line_id: UUID
    entry_id: UUID
    entry_number: str
    entry_date: date
    entry_status: str
    account_id: UUID
    side: LineSide
    amount: Decimal
    memo: str | None = None
