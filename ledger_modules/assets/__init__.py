"""
ledger_modules.assets
=====================

Fixed asset register and the monthly depreciation run engine
(Calculated -> Posted -> Reversed).  Runs post through the kernel
journal engine and are gated by the fiscal period.
"""

from ledger_modules.assets.helpers import (
    calculate_period_depreciation,
    declining_balance,
    straight_line,
    sum_of_years_digits,
)
from ledger_modules.assets.models import (
    AssetCategoryInfo,
    DepreciationPreview,
    DepreciationRunInfo,
    FixedAssetInfo,
    ScheduleLineInfo,
)
from ledger_modules.assets.orm import AssetStatus, DepreciationMethod, DepreciationRunStatus
from ledger_modules.assets.service import DepreciationService

__all__ = [
    "AssetCategoryInfo",
    "AssetStatus",
    "DepreciationMethod",
    "DepreciationPreview",
    "DepreciationRunInfo",
    "DepreciationRunStatus",
    "DepreciationService",
    "FixedAssetInfo",
    "ScheduleLineInfo",
    "calculate_period_depreciation",
    "declining_balance",
    "straight_line",
    "sum_of_years_digits",
]
