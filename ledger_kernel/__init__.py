"""
Ledger Kernel

Double-entry ledger core:
- Journal entry state machine (draft, posted, voided) with balance checks
- Fiscal period gating of every posting
- Store-level journal numbering
- Immutability of posted records
- Structured JSON logging and typed errors
"""

__version__ = "0.1.0"
