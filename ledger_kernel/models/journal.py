"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines, the
    authoritative financial record.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - entry_number is unique (uq_journal_entry_number) and assigned from a
      store-level sequence counter at creation.
    - sum(debit lines) == sum(credit lines) within BALANCE_TOLERANCE, checked
      by JournalService at creation and again before posting.
    - Posted and voided entries, and their lines, are immutable apart from
      the void transition itself (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate entry_number.
    - ImmutabilityViolationError on UPDATE/DELETE of a posted entry or line.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import enum_value

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntryStatus(str, Enum):
    """Draft -> Posted -> Voided.  Drafts may also be deleted."""

    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class JournalEntryType(str, Enum):
    MANUAL = "manual"
    SYSTEM = "system"
    ADJUSTMENT = "adjustment"
    CLOSING = "closing"


class LineSide(str, Enum):
    """Debit or credit side of a journal line."""

    DEBIT = "debit"
    CREDIT = "credit"

    def opposite(self) -> "LineSide":
        return LineSide.CREDIT if self is LineSide.DEBIT else LineSide.DEBIT


# Reporting tags a line may carry.  They never affect the balance.
DIMENSION_KEYS = frozenset({
    "customer_id",
    "sales_person_id",
    "warehouse_id",
    "sales_channel",
    "vendor_id",
    "product_id",
})


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        fiscal_year/fiscal_month are derived from entry_date at creation.
        source_service + source_reference_id trace the entry back to the
        producing event, depreciation run, or reversal.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_journal_entry_number"),
        Index("idx_journal_period", "fiscal_year", "fiscal_month"),
        Index("idx_journal_status", "status"),
        Index("idx_journal_source", "source_service", "source_reference_id"),
    )

    entry_number: Mapped[str] = mapped_column(String(30), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    fiscal_month: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    entry_type: Mapped[JournalEntryType] = mapped_column(
        String(20),
        default=JournalEntryType.MANUAL,
        nullable=False,
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(20),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    source_service: Mapped[str | None] = mapped_column(String(100), nullable=True)

    source_reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    reversal_of: Mapped["JournalEntry | None"] = relationship(
        remote_side="JournalEntry.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} status={enum_value(self.status)}>"

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_voided(self) -> bool:
        return self.status == JournalEntryStatus.VOIDED

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (line.amount for line in self.lines if line.side == LineSide.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (line.amount for line in self.lines if line.side == LineSide.CREDIT),
            Decimal("0"),
        )


class JournalLine(TrackedBase):
    """
    Individual debit or credit line within a journal entry.

    amount is always positive; side carries the direction.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    side: Mapped[LineSide] = mapped_column(String(10), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    dimensions: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    line_memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="journal_lines")

    def __repr__(self) -> str:
        return f"<JournalLine {enum_value(self.side)} {self.amount}>"

    @property
    def is_debit(self) -> bool:
        return self.side == LineSide.DEBIT

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        if self.is_debit:
            return self.amount
        return -self.amount
