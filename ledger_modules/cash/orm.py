"""
Bank Reconciliation ORM Models (``ledger_modules.cash.orm``).

Responsibility
--------------
SQLAlchemy persistence models for bank reconciliation -- bank accounts
linked 1:1 to ledger accounts, imported statements, and statement
transactions with their match state.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
MUST NOT be imported by kernel services.

Invariants enforced
-------------------
* ``account_number`` and the linked ledger ``account_id`` are unique.
* ``fingerprint`` is unique: the same bank transaction is stored once no
  matter how often its statement is imported.
* ``matched_journal_line_id`` is unique: a ledger line backs at most one
  bank transaction, even when two statements are matched concurrently.
* Statement totals are recomputed from stored transactions, never
  incremented.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import enum_value


class BankAccountStatus(str, Enum):
    """Active <-> Inactive; Closed is terminal."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    CLOSED = "closed"


class BankTransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class MatchStatus(str, Enum):
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    IGNORED = "ignored"


class StatementStatus(str, Enum):
    IMPORTED = "imported"
    RECONCILED = "reconciled"


# ---------------------------------------------------------------------------
# BankAccountModel
# ---------------------------------------------------------------------------

class BankAccountModel(TrackedBase):
    """
    A bank account, linked to exactly one ledger (cash) account.

    Table: ``cash_bank_accounts``
    """

    __tablename__ = "cash_bank_accounts"

    account_id: Mapped[UUID] = mapped_column(ForeignKey("accounts.id"))
    bank_name: Mapped[str] = mapped_column(String(200))
    account_number: Mapped[str] = mapped_column(String(50))
    account_name: Mapped[str] = mapped_column(String(200))
    account_type: Mapped[str] = mapped_column(String(20), default="checking")
    currency: Mapped[str] = mapped_column(String(3), default="IDR")
    status: Mapped[BankAccountStatus] = mapped_column(
        String(20), default=BankAccountStatus.ACTIVE,
    )
    last_reconciled_date: Mapped[date | None] = mapped_column(nullable=True)
    last_reconciled_balance: Mapped[Decimal | None] = mapped_column(nullable=True)

    statements: Mapped[list["BankStatementModel"]] = relationship(
        back_populates="bank_account", cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("account_number", name="uq_cash_bank_accounts_number"),
        UniqueConstraint("account_id", name="uq_cash_bank_accounts_account_id"),
        Index("idx_cash_bank_accounts_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return enum_value(self.status) == BankAccountStatus.ACTIVE.value

    def __repr__(self) -> str:
        return (
            f"<BankAccountModel(id={self.id!r}, number={self.account_number!r}, "
            f"status={enum_value(self.status)!r})>"
        )


# ---------------------------------------------------------------------------
# BankStatementModel
# ---------------------------------------------------------------------------

class BankStatementModel(TrackedBase):
    """
    One imported bank statement with its summary counters.

    Table: ``cash_bank_statements``
    """

    __tablename__ = "cash_bank_statements"

    bank_account_id: Mapped[UUID] = mapped_column(ForeignKey("cash_bank_accounts.id"))
    statement_date: Mapped[date]
    period_start: Mapped[date]
    period_end: Mapped[date]
    opening_balance: Mapped[Decimal]
    closing_balance: Mapped[Decimal]
    total_debits: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_credits: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    transaction_count: Mapped[int] = mapped_column(default=0)
    status: Mapped[StatementStatus] = mapped_column(
        String(20), default=StatementStatus.IMPORTED,
    )
    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    reconciled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bank_account: Mapped["BankAccountModel"] = relationship(back_populates="statements")
    transactions: Mapped[list["BankTransactionModel"]] = relationship(
        back_populates="statement",
        cascade="all, delete-orphan",
        order_by="BankTransactionModel.transaction_date",
    )

    __table_args__ = (
        Index("idx_cash_bank_statements_account", "bank_account_id"),
        Index("idx_cash_bank_statements_period", "period_start", "period_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<BankStatementModel(id={self.id!r}, "
            f"period={self.period_start}..{self.period_end})>"
        )


# ---------------------------------------------------------------------------
# BankTransactionModel
# ---------------------------------------------------------------------------

class BankTransactionModel(TrackedBase):
    """
    A single statement line.  ``amount`` is signed: >= 0 credit, < 0 debit.

    Table: ``cash_bank_transactions``
    """

    __tablename__ = "cash_bank_transactions"

    bank_statement_id: Mapped[UUID] = mapped_column(ForeignKey("cash_bank_statements.id"))
    bank_account_id: Mapped[UUID] = mapped_column(ForeignKey("cash_bank_accounts.id"))
    transaction_date: Mapped[date]
    amount: Mapped[Decimal]
    transaction_type: Mapped[BankTransactionType] = mapped_column(String(10))
    description: Mapped[str] = mapped_column(String(500))
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    fingerprint: Mapped[str] = mapped_column(String(64))
    match_status: Mapped[MatchStatus] = mapped_column(
        String(20), default=MatchStatus.UNMATCHED,
    )
    matched_journal_line_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_lines.id"), nullable=True,
    )
    matched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    matched_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    exclusion_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    statement: Mapped["BankStatementModel"] = relationship(back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("fingerprint", name="uq_cash_bank_transactions_fingerprint"),
        Index("idx_cash_bank_transactions_statement", "bank_statement_id"),
        Index("idx_cash_bank_transactions_match", "bank_account_id", "match_status"),
        UniqueConstraint("matched_journal_line_id", name="uq_cash_bank_transactions_line"),
    )

    def __repr__(self) -> str:
        return (
            f"<BankTransactionModel(id={self.id!r}, date={self.transaction_date}, "
            f"amount={self.amount}, status={enum_value(self.match_status)!r})>"
        )
