"""
Configuration loader (``ledger_config.loader``).

Responsibility
--------------
Reads a YAML file and parses it into the frozen dataclasses of
``ledger_config.schema``.  Services never call this directly; they receive
a ``LedgerConfig`` from ``ledger_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown sections or keys, or non-numeric tolerances  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountMapping,
    DepreciationSettings,
    LedgerConfig,
    ReconciliationSettings,
)
from ledger_kernel.exceptions import ConfigurationError

_SECTIONS = ("database_url", "account_mapping", "reconciliation", "depreciation")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (empty if the YAML document is empty).
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed YAML, for change detection."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in {section}: {', '.join(sorted(unknown))}", field=section
        )


def _decimal(section: str, key: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(f"{section}.{key} must be numeric", field=key) from exc


def parse_account_mapping(data: dict[str, Any]) -> AccountMapping:
    _check_keys("account_mapping", data, set(AccountMapping.role_names()))
    return AccountMapping(
        **{key: (str(value) if value is not None else None) for key, value in data.items()}
    )


def parse_reconciliation(data: dict[str, Any]) -> ReconciliationSettings:
    _check_keys("reconciliation", data, {f.name for f in fields(ReconciliationSettings)})
    defaults = ReconciliationSettings()
    return ReconciliationSettings(
        amount_tolerance=_decimal(
            "reconciliation", "amount_tolerance",
            data.get("amount_tolerance", defaults.amount_tolerance),
        ),
        date_tolerance_days=int(data.get("date_tolerance_days", defaults.date_tolerance_days)),
    )


def parse_depreciation(data: dict[str, Any]) -> DepreciationSettings:
    _check_keys("depreciation", data, {f.name for f in fields(DepreciationSettings)})
    defaults = DepreciationSettings()
    return DepreciationSettings(
        declining_balance_factor=_decimal(
            "depreciation", "declining_balance_factor",
            data.get("declining_balance_factor", defaults.declining_balance_factor),
        ),
        source_service=str(data.get("source_service", defaults.source_service)),
    )


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse a full configuration document."""
    _check_keys("config", data, set(_SECTIONS))
    defaults = LedgerConfig()
    return LedgerConfig(
        database_url=str(data.get("database_url", defaults.database_url)),
        account_mapping=parse_account_mapping(data.get("account_mapping") or {}),
        reconciliation=parse_reconciliation(data.get("reconciliation") or {}),
        depreciation=parse_depreciation(data.get("depreciation") or {}),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> LedgerConfig:
    return parse_config(load_yaml_file(Path(path)))
