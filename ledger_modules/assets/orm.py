"""
Fixed Assets ORM Models (``ledger_modules.assets.orm``).

Responsibility
--------------
SQLAlchemy persistence models for fixed assets and depreciation --
asset categories, assets, monthly depreciation runs and their per-asset
schedule lines.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
MUST NOT be imported by kernel services.

Invariants enforced
-------------------
* At most one non-reversed depreciation run per fiscal period
  (``uq_assets_depreciation_runs_active_period``, a partial unique index).
* Schedule lines are written at calculation time and never edited.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import enum_value


class DepreciationMethod(str, Enum):
    STRAIGHT_LINE = "straight_line"
    DECLINING_BALANCE = "declining_balance"
    SUM_OF_YEARS_DIGITS = "sum_of_years_digits"


class AssetStatus(str, Enum):
    ACTIVE = "active"
    FULLY_DEPRECIATED = "fully_depreciated"
    DISPOSED = "disposed"


class DepreciationRunStatus(str, Enum):
    """Calculated -> Posted -> Reversed."""

    CALCULATED = "calculated"
    POSTED = "posted"
    REVERSED = "reversed"


# ---------------------------------------------------------------------------
# AssetCategoryModel
# ---------------------------------------------------------------------------

class AssetCategoryModel(TrackedBase):
    """
    Depreciation defaults and GL accounts shared by a group of assets.

    Table: ``assets_categories``
    """

    __tablename__ = "assets_categories"

    code: Mapped[str] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(200))
    depreciation_method: Mapped[DepreciationMethod] = mapped_column(String(30))
    useful_life_months: Mapped[int]
    salvage_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    asset_account_code: Mapped[str] = mapped_column(String(50))
    accumulated_depreciation_account_code: Mapped[str] = mapped_column(String(50))
    depreciation_expense_account_code: Mapped[str] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(default=True)

    assets: Mapped[list["FixedAssetModel"]] = relationship(back_populates="category")

    __table_args__ = (
        UniqueConstraint("code", name="uq_assets_categories_code"),
    )

    def __repr__(self) -> str:
        return f"<AssetCategoryModel(id={self.id!r}, code={self.code!r})>"


# ---------------------------------------------------------------------------
# FixedAssetModel
# ---------------------------------------------------------------------------

class FixedAssetModel(TrackedBase):
    """
    A depreciable fixed asset.  ``book_value`` is cost minus accumulated
    depreciation and never drops below ``salvage_value``.

    Table: ``assets_fixed_assets``
    """

    __tablename__ = "assets_fixed_assets"

    asset_number: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(200))
    category_id: Mapped[UUID] = mapped_column(ForeignKey("assets_categories.id"))
    acquisition_date: Mapped[date]
    acquisition_cost: Mapped[Decimal]
    salvage_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    useful_life_months: Mapped[int]
    depreciation_method: Mapped[DepreciationMethod] = mapped_column(String(30))
    depreciation_start_date: Mapped[date]
    accumulated_depreciation: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    book_value: Mapped[Decimal]
    status: Mapped[AssetStatus] = mapped_column(String(30), default=AssetStatus.ACTIVE)
    last_depreciation_date: Mapped[date | None] = mapped_column(nullable=True)

    category: Mapped["AssetCategoryModel"] = relationship(back_populates="assets")

    __table_args__ = (
        UniqueConstraint("asset_number", name="uq_assets_fixed_assets_number"),
        Index("idx_assets_fixed_assets_category", "category_id"),
        Index("idx_assets_fixed_assets_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<FixedAssetModel(id={self.id!r}, asset_number={self.asset_number!r}, "
            f"status={enum_value(self.status)!r})>"
        )


# ---------------------------------------------------------------------------
# DepreciationRunModel
# ---------------------------------------------------------------------------

class DepreciationRunModel(TrackedBase):
    """
    Depreciation of all eligible assets for one fiscal period.

    Table: ``assets_depreciation_runs``
    """

    __tablename__ = "assets_depreciation_runs"

    fiscal_year: Mapped[int]
    fiscal_month: Mapped[int]
    status: Mapped[DepreciationRunStatus] = mapped_column(
        String(20), default=DepreciationRunStatus.CALCULATED,
    )
    total_depreciation: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    asset_count: Mapped[int] = mapped_column(default=0)
    skipped_count: Mapped[int] = mapped_column(default=0)
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True,
    )
    reversal_journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True,
    )
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    calculated_by: Mapped[str] = mapped_column(String(100))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["DepreciationScheduleLineModel"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="DepreciationScheduleLineModel.asset_number",
    )

    __table_args__ = (
        Index(
            "uq_assets_depreciation_runs_active_period",
            "fiscal_year",
            "fiscal_month",
            unique=True,
            postgresql_where=text("status <> 'reversed'"),
            sqlite_where=text("status <> 'reversed'"),
        ),
        Index("idx_assets_depreciation_runs_status", "status"),
    )

    @property
    def period_code(self) -> str:
        return f"{self.fiscal_year}-{self.fiscal_month:02d}"

    def __repr__(self) -> str:
        return (
            f"<DepreciationRunModel(id={self.id!r}, period={self.period_code}, "
            f"status={enum_value(self.status)!r})>"
        )


# ---------------------------------------------------------------------------
# DepreciationScheduleLineModel
# ---------------------------------------------------------------------------

class DepreciationScheduleLineModel(TrackedBase):
    """
    One asset's depreciation within a run.

    Table: ``assets_depreciation_schedule_lines``
    """

    __tablename__ = "assets_depreciation_schedule_lines"

    run_id: Mapped[UUID] = mapped_column(ForeignKey("assets_depreciation_runs.id"))
    asset_id: Mapped[UUID] = mapped_column(ForeignKey("assets_fixed_assets.id"))
    asset_number: Mapped[str] = mapped_column(String(100))
    depreciation_method: Mapped[DepreciationMethod] = mapped_column(String(30))
    opening_book_value: Mapped[Decimal]
    depreciation_amount: Mapped[Decimal]
    closing_book_value: Mapped[Decimal]
    accumulated_after: Mapped[Decimal]
    expense_account_code: Mapped[str] = mapped_column(String(50))
    accumulated_account_code: Mapped[str] = mapped_column(String(50))

    run: Mapped["DepreciationRunModel"] = relationship(back_populates="lines")

    __table_args__ = (
        UniqueConstraint("run_id", "asset_id", name="uq_assets_schedule_lines_run_asset"),
        Index("idx_assets_schedule_lines_asset", "asset_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DepreciationScheduleLineModel(run_id={self.run_id!r}, "
            f"asset={self.asset_number!r}, amount={self.depreciation_amount})>"
        )
