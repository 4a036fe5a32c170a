"""
Configuration schema (``ledger_config.schema``).

Frozen dataclasses describing the runtime configuration.  Every field has
a default matching the standard chart of accounts, so an empty YAML file
is a valid configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal


@dataclass(frozen=True)
class AccountMapping:
    """
    GL account codes the event posting rules post to.

    ``None`` means "not configured"; rules that need an unconfigured account
    fail with MissingAccountConfigurationError.
    """

    cash: str | None = "1101"
    revenue: str | None = "4101"
    tax_payable: str | None = "2201"
    sales_discount: str | None = "4201"
    inventory: str | None = "1301"
    cogs: str | None = "5101"
    inventory_gain: str | None = "4901"
    inventory_shrinkage: str | None = "5901"
    inventory_write_off: str | None = "5902"
    inventory_recount: str | None = "5903"

    @classmethod
    def role_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))


@dataclass(frozen=True)
class ReconciliationSettings:
    amount_tolerance: Decimal = Decimal("0")
    date_tolerance_days: int = 3


@dataclass(frozen=True)
class DepreciationSettings:
    declining_balance_factor: Decimal = Decimal("2")
    source_service: str = "depreciation"


@dataclass(frozen=True)
class LedgerConfig:
    """Complete runtime configuration."""

    database_url: str = "sqlite:///ledger.db"
    account_mapping: AccountMapping = field(default_factory=AccountMapping)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    depreciation: DepreciationSettings = field(default_factory=DepreciationSettings)
    checksum: str | None = None
