"""
ledger_services -- boundary facade over the kernel and modules.

Responsibility:
    Turns typed ledger exceptions into ``{success, data}`` /
    ``{success: false, error}`` results with HTTP-style status codes, and
    owns the transaction boundary for kernel operations.

Architecture position:
    Top layer.  May import from ledger_kernel, ledger_modules and
    ledger_config; nothing imports from here.
"""

from ledger_services.api import ApiResult, LedgerApi, status_for_error

__all__ = ["ApiResult", "LedgerApi", "status_for_error"]
