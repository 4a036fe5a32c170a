"""
Fixed Assets Helpers (``ledger_modules.assets.helpers``).

Responsibility
--------------
Pure monthly depreciation calculators: straight-line, declining balance
and sum-of-years'-digits, plus a dispatcher keyed by method.

Architecture position
---------------------
**Modules layer** -- pure helper functions.  No I/O, no session, no
clock.  Called by ``DepreciationService`` or from tests.

Invariants enforced
-------------------
* ``Decimal`` in, ``Decimal`` out, quantized to 0.01.
* A charge never takes book value below salvage value.
* Zero or negative useful life, or book value at/below salvage, yields
  ``Decimal("0")`` rather than an error.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from ledger_kernel.db.types import round_money

from ledger_modules.assets.orm import DepreciationMethod

ZERO = Decimal("0")
MONTHS_PER_YEAR = 12


def remaining_depreciable(book_value: Decimal, salvage_value: Decimal) -> Decimal:
    """Headroom before book value reaches salvage; never negative."""
    return max(book_value - salvage_value, ZERO)


def _cap(amount: Decimal, book_value: Decimal, salvage_value: Decimal) -> Decimal:
    return min(round_money(max(amount, ZERO)), remaining_depreciable(book_value, salvage_value))


def straight_line(
    cost: Decimal,
    salvage_value: Decimal,
    useful_life_months: int,
    book_value: Decimal,
) -> Decimal:
    """
    Monthly straight-line charge: ``(cost - salvage) / life``.

    Postconditions:
        - Capped so that ``book_value - charge >= salvage_value``.
    """
    if useful_life_months <= 0:
        return ZERO
    monthly = (cost - salvage_value) / Decimal(useful_life_months)
    return _cap(monthly, book_value, salvage_value)


def declining_balance(
    salvage_value: Decimal,
    useful_life_months: int,
    book_value: Decimal,
    factor: Decimal = Decimal("2"),
) -> Decimal:
    """
    Monthly declining-balance charge on current book value.

    The annual rate is ``factor * 12 / life_months`` (double-declining
    when ``factor`` is 2); the monthly charge is one twelfth of it.
    """
    if useful_life_months <= 0:
        return ZERO
    annual_rate = Decimal(MONTHS_PER_YEAR) / Decimal(useful_life_months) * factor
    monthly = book_value * annual_rate / Decimal(MONTHS_PER_YEAR)
    return _cap(monthly, book_value, salvage_value)


def sum_of_years_digits(
    cost: Decimal,
    salvage_value: Decimal,
    useful_life_months: int,
    book_value: Decimal,
    accumulated_depreciation: Decimal,
) -> Decimal:
    """
    Monthly sum-of-years'-digits charge.

    Preconditions:
        - ``accumulated_depreciation`` is what has been charged so far; it
          positions the asset within its life.
    Postconditions:
        - The current life year is
          ``floor(elapsed_months / 12) + 1`` where ``elapsed_months`` is
          accumulated depreciation over the straight-line monthly average.
        - Returns ``Decimal("0")`` once the asset is past its last year.
    """
    if useful_life_months <= 0:
        return ZERO
    depreciable = cost - salvage_value
    if depreciable <= 0:
        return ZERO

    life_years = Decimal(useful_life_months) / Decimal(MONTHS_PER_YEAR)
    digits_sum = life_years * (life_years + 1) / 2
    monthly_average = depreciable / Decimal(useful_life_months)
    elapsed_months = accumulated_depreciation / monthly_average
    current_year = (elapsed_months / Decimal(MONTHS_PER_YEAR)).to_integral_value(
        rounding=ROUND_FLOOR
    ) + 1
    remaining_years = life_years - current_year + 1
    if remaining_years <= 0:
        return ZERO

    annual = depreciable * remaining_years / digits_sum
    return _cap(annual / Decimal(MONTHS_PER_YEAR), book_value, salvage_value)


def calculate_period_depreciation(
    method: DepreciationMethod | str,
    cost: Decimal,
    salvage_value: Decimal,
    useful_life_months: int,
    book_value: Decimal,
    accumulated_depreciation: Decimal,
    declining_balance_factor: Decimal = Decimal("2"),
) -> Decimal:
    """
    One month of depreciation for an asset using its method.

    Raises:
        ValueError: Unknown depreciation method.
    """
    method = DepreciationMethod(method)
    if method == DepreciationMethod.STRAIGHT_LINE:
        return straight_line(cost, salvage_value, useful_life_months, book_value)
    if method == DepreciationMethod.DECLINING_BALANCE:
        return declining_balance(
            salvage_value, useful_life_months, book_value, declining_balance_factor,
        )
    return sum_of_years_digits(
        cost, salvage_value, useful_life_months, book_value, accumulated_depreciation,
    )
