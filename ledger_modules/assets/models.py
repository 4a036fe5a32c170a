"""
ledger_modules.assets.models
============================

Frozen value objects returned by ``DepreciationService``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import enum_value
from ledger_modules.assets.orm import (
    AssetCategoryModel,
    DepreciationRunModel,
    DepreciationScheduleLineModel,
    FixedAssetModel,
)


@dataclass(frozen=True)
class AssetCategoryInfo:
    id: UUID
    code: str
    name: str
    depreciation_method: str
    useful_life_months: int
    salvage_percent: Decimal
    asset_account_code: str
    accumulated_depreciation_account_code: str
    depreciation_expense_account_code: str
    is_active: bool

    @classmethod
    def from_model(cls, model: AssetCategoryModel) -> AssetCategoryInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            depreciation_method=enum_value(model.depreciation_method),
            useful_life_months=model.useful_life_months,
            salvage_percent=model.salvage_percent,
            asset_account_code=model.asset_account_code,
            accumulated_depreciation_account_code=model.accumulated_depreciation_account_code,
            depreciation_expense_account_code=model.depreciation_expense_account_code,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class FixedAssetInfo:
    id: UUID
    asset_number: str
    name: str
    category_id: UUID
    acquisition_date: date
    acquisition_cost: Decimal
    salvage_value: Decimal
    useful_life_months: int
    depreciation_method: str
    depreciation_start_date: date
    accumulated_depreciation: Decimal
    book_value: Decimal
    status: str
    last_depreciation_date: date | None = None

    @classmethod
    def from_model(cls, model: FixedAssetModel) -> FixedAssetInfo:
        return cls(
            id=model.id,
            asset_number=model.asset_number,
            name=model.name,
            category_id=model.category_id,
            acquisition_date=model.acquisition_date,
            acquisition_cost=model.acquisition_cost,
            salvage_value=model.salvage_value,
            useful_life_months=model.useful_life_months,
            depreciation_method=enum_value(model.depreciation_method),
            depreciation_start_date=model.depreciation_start_date,
            accumulated_depreciation=model.accumulated_depreciation,
            book_value=model.book_value,
            status=enum_value(model.status),
            last_depreciation_date=model.last_depreciation_date,
        )


@dataclass(frozen=True)
class ScheduleLineInfo:
    """One asset's charge for a period, persisted or previewed."""

    asset_id: UUID
    asset_number: str
    depreciation_method: str
    opening_book_value: Decimal
    depreciation_amount: Decimal
    closing_book_value: Decimal
    accumulated_after: Decimal
    expense_account_code: str
    accumulated_account_code: str

    @classmethod
    def from_model(cls, model: DepreciationScheduleLineModel) -> ScheduleLineInfo:
        return cls(
            asset_id=model.asset_id,
            asset_number=model.asset_number,
            depreciation_method=enum_value(model.depreciation_method),
            opening_book_value=model.opening_book_value,
            depreciation_amount=model.depreciation_amount,
            closing_book_value=model.closing_book_value,
            accumulated_after=model.accumulated_after,
            expense_account_code=model.expense_account_code,
            accumulated_account_code=model.accumulated_account_code,
        )


@dataclass(frozen=True)
class DepreciationPreview:
    fiscal_year: int
    fiscal_month: int
    lines: tuple[ScheduleLineInfo, ...]
    skipped_count: int

    @property
    def total_depreciation(self) -> Decimal:
        return sum((l.depreciation_amount for l in self.lines), Decimal("0"))


@dataclass(frozen=True)
class DepreciationRunInfo:
    id: UUID
    fiscal_year: int
    fiscal_month: int
    status: str
    total_depreciation: Decimal
    asset_count: int
    skipped_count: int
    calculated_at: datetime
    calculated_by: str
    journal_entry_id: UUID | None = None
    reversal_journal_entry_id: UUID | None = None
    posted_at: datetime | None = None
    posted_by: str | None = None
    reversed_at: datetime | None = None
    reversed_by: str | None = None
    reversal_reason: str | None = None
    lines: tuple[ScheduleLineInfo, ...] = field(default_factory=tuple)

    @property
    def period_code(self) -> str:
        return f"{self.fiscal_year}-{self.fiscal_month:02d}"

    @classmethod
    def from_model(cls, model: DepreciationRunModel) -> DepreciationRunInfo:
        return cls(
            id=model.id,
            fiscal_year=model.fiscal_year,
            fiscal_month=model.fiscal_month,
            status=enum_value(model.status),
            total_depreciation=model.total_depreciation,
            asset_count=model.asset_count,
            skipped_count=model.skipped_count,
            calculated_at=model.calculated_at,
            calculated_by=model.calculated_by,
            journal_entry_id=model.journal_entry_id,
            reversal_journal_entry_id=model.reversal_journal_entry_id,
            posted_at=model.posted_at,
            posted_by=model.posted_by,
            reversed_at=model.reversed_at,
            reversed_by=model.reversed_by,
            reversal_reason=model.reversal_reason,
            lines=tuple(ScheduleLineInfo.from_model(l) for l in model.lines),
        )
