"""
Module: ledger_kernel.models.fiscal_period
Responsibility: ORM persistence for the fiscal period lifecycle, which
    controls which (year, month) windows accept postings.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (fiscal_year, fiscal_month) is unique (uq_fiscal_period).
    - Only OPEN periods accept postings (PeriodService.require_open).
    - Transitions: OPEN -> CLOSED -> LOCKED, CLOSED -> OPEN (reopen with a
      reason).  LOCKED is terminal.
"""

import calendar
from datetime import date, datetime
from enum import Enum

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import enum_value


class PeriodStatus(str, Enum):
    """Lifecycle status of a fiscal period."""

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class FiscalPeriod(TrackedBase):
    """
    Monthly fiscal period.

    Guarantees:
        - closed_* fields are populated while CLOSED/LOCKED and cleared on
          reopen.
        - reopened_* fields keep the most recent reopen for audit.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("fiscal_year", "fiscal_month", name="uq_fiscal_period"),
        Index("idx_period_status", "status"),
    )

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    fiscal_month: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reopen_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.period_code}: {enum_value(self.status)}>"

    @property
    def period_code(self) -> str:
        return f"{self.fiscal_year}-{self.fiscal_month:02d}"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def start_date(self) -> date:
        return date(self.fiscal_year, self.fiscal_month, 1)

    @property
    def end_date(self) -> date:
        return period_end_date(self.fiscal_year, self.fiscal_month)


def period_end_date(fiscal_year: int, fiscal_month: int) -> date:
    """Last calendar day of a fiscal month."""
    return date(fiscal_year, fiscal_month, calendar.monthrange(fiscal_year, fiscal_month)[1])
