"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    Resolution order for the YAML file: explicit ``path`` argument, the
    ``LEDGER_CONFIG`` environment variable, then the bundled
    ``defaults.yaml``.  ``DATABASE_URL`` overrides the configured
    database URL.

Architecture position:
    Sits above ``ledger_kernel`` and below ``ledger_modules`` /
    ``ledger_services``.  The kernel never imports from here.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from ledger_config.loader import load_config
from ledger_config.schema import (
    AccountMapping,
    DepreciationSettings,
    LedgerConfig,
    ReconciliationSettings,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """
    Load the active configuration.

    Raises:
        FileNotFoundError: The resolved file does not exist.
        ConfigurationError: The file has unknown keys or bad values.
    """
    resolved = Path(path or os.environ.get("LEDGER_CONFIG") or _DEFAULT_CONFIG_FILE)
    config = load_config(resolved)

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        config = replace(config, database_url=database_url)

    logger.info(
        "ledger_config_loaded",
        extra={"config_path": str(resolved), "checksum": config.checksum},
    )
    return config


__all__ = [
    "AccountMapping",
    "DepreciationSettings",
    "LedgerConfig",
    "ReconciliationSettings",
    "get_active_config",
    "load_config",
]
