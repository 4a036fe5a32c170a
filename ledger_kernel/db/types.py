"""
Module: ledger_kernel.db.types
Responsibility: Annotated column type aliases and the money helpers shared by
    every model and service.
Architecture position: Kernel > DB.  MUST NOT import from models/ or services/.

Invariants enforced:
    - No floats.  Amounts are Decimal, rounded only through round_money().
    - BALANCE_TOLERANCE (0.01) is the single equality tolerance used for
      debit/credit balance and bank statement total checks.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

Currency = Annotated[str, String(3)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

Fingerprint = Annotated[str, String(64)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Debits/credits and statement totals are equal when they differ by less
# than one minor unit.
BALANCE_TOLERANCE = Decimal("0.01")

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """
    Coerce an inbound amount (str, int, Decimal or float) to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion.

    Raises:
        ValueError: If the value is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the only sanctioned rounding function for ledger amounts.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def amounts_equal(left: Decimal, right: Decimal) -> bool:
    """True when two amounts agree within BALANCE_TOLERANCE."""
    return abs(left - right) < BALANCE_TOLERANCE


def enum_value(value):
    """
    Plain string for a str-Enum column value.

    Status columns are declared as String; freshly assigned attributes hold
    the Enum member while reloaded rows hold the raw string.
    """
    return getattr(value, "value", value)
