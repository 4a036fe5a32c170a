"""
ledger_modules -- business modules built on the ledger kernel.

Responsibility:
    ``events`` turns inbound business events into posted journal entries
    exactly once.  ``cash`` imports bank statements and reconciles them
    against ledger lines.  ``assets`` runs monthly depreciation.

Architecture:
    May import from ``ledger_kernel`` and ``ledger_config``.  MUST NOT be
    imported by ``ledger_kernel`` (the engine's model registry is the one
    exception: it imports the ORM modules so ``create_tables`` sees them).

Transaction boundary:
    Module services own commit/rollback.  Every public mutating method
    either commits and returns, or rolls back and raises.
"""
