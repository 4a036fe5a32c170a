"""
ledger_modules.cash.helpers
===========================

Responsibility:
    Pure helpers for bank reconciliation: transaction fingerprints,
    statement total checks, CSV statement parsing, and the greedy
    bank-to-ledger matcher.  Zero I/O, zero side effects.

Architecture:
    Module layer.  Called by ``BankReconciliationService`` and from tests.

Invariants enforced:
    - All amounts are ``Decimal`` -- never ``float``.
    - Fingerprints depend only on the defining fields, so re-importing a
      statement yields the same fingerprints.
    - Matching is deterministic: ties are broken by date distance, amount
      distance, then line id.

Failure modes:
    - ``parse_statement_csv``: missing columns or unparseable values ->
      ``ValidationError`` naming the row.
"""

from __future__ import annotations

import csv
import hashlib
import io
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import BALANCE_TOLERANCE, round_money, to_decimal
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.models.journal import LineSide

_REQUIRED_CSV_COLUMNS = ("date", "amount", "description")


@dataclass(frozen=True)
class StatementLine:
    """One incoming bank transaction, before import."""

    transaction_date: date
    amount: Decimal
    description: str
    reference: str | None = None

    def __post_init__(self) -> None:
        try:
            amount = to_decimal(self.amount)
        except ValueError as exc:
            raise ValidationError(str(exc), field="amount") from exc
        if amount == 0:
            raise ValidationError("Transaction amount cannot be zero", field="amount")
        if not (self.description or "").strip():
            raise ValidationError("Transaction description is required", field="description")
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "description", self.description.strip())
        object.__setattr__(self, "reference", (self.reference or "").strip() or None)


@dataclass(frozen=True)
class StatementTotals:
    """Outcome of the opening + credits - debits = closing check."""

    is_valid: bool
    calculated_closing: Decimal
    difference: Decimal


def compute_fingerprint(
    bank_account_id: UUID,
    transaction_date: date,
    amount: Decimal,
    description: str,
    reference: str | None,
) -> str:
    """
    SHA-256 over the fields that define a bank transaction.

    The bank account is part of the key so identical lines on two different
    accounts are not mistaken for duplicates.
    """
    parts = (
        str(bank_account_id),
        transaction_date.isoformat(),
        f"{round_money(to_decimal(amount)):f}",
        description.strip(),
        (reference or "").strip(),
    )
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def validate_statement_totals(
    opening_balance: Decimal,
    closing_balance: Decimal,
    total_debits: Decimal,
    total_credits: Decimal,
) -> StatementTotals:
    """
    Check that a statement's balances agree with its transactions.

    Postconditions:
        - ``calculated_closing = opening + credits - debits``.
        - ``difference = closing - calculated_closing`` (signed).
        - ``is_valid`` when ``|difference| < 0.01``.
    """
    calculated = opening_balance + total_credits - total_debits
    difference = closing_balance - calculated
    return StatementTotals(
        is_valid=abs(difference) < BALANCE_TOLERANCE,
        calculated_closing=calculated,
        difference=difference,
    )


def summarize(amounts: Iterable[Decimal]) -> tuple[Decimal, Decimal, int]:
    """(total_debits, total_credits, count); debits are reported positive."""
    debits = Decimal("0")
    credits = Decimal("0")
    count = 0
    for amount in amounts:
        count += 1
        if amount < 0:
            debits += -amount
        else:
            credits += amount
    return debits, credits, count


def parse_statement_csv(text: str) -> list[StatementLine]:
    """
    Parse a CSV bank export.

    Expected header: ``date,amount,description[,reference]`` (case
    insensitive).  Dates are ISO ``YYYY-MM-DD``; amounts are signed with a
    dot decimal separator and optional thousands commas inside quotes.
    Blank lines are ignored.
    """
    reader = csv.DictReader(io.StringIO(text.strip()))
    if reader.fieldnames is None:
        return []
    columns = {name.strip().lower(): name for name in reader.fieldnames}
    missing = [c for c in _REQUIRED_CSV_COLUMNS if c not in columns]
    if missing:
        raise ValidationError(
            f"CSV statement is missing column(s): {', '.join(missing)}", field="csv"
        )

    lines: list[StatementLine] = []
    for row_number, row in enumerate(reader, start=2):
        if not any((value or "").strip() for value in row.values()):
            continue
        raw_date = (row[columns["date"]] or "").strip()
        raw_amount = (row[columns["amount"]] or "").strip().replace(",", "")
        try:
            transaction_date = date.fromisoformat(raw_date)
        except ValueError as exc:
            raise ValidationError(
                f"Row {row_number}: invalid date {raw_date!r}", field="date"
            ) from exc
        try:
            line = StatementLine(
                transaction_date=transaction_date,
                amount=raw_amount,
                description=row[columns["description"]] or "",
                reference=row[columns["reference"]] if "reference" in columns else None,
            )
        except ValidationError as exc:
            raise ValidationError(f"Row {row_number}: {exc}", field=exc.field) from exc
        lines.append(line)
    return lines


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchCandidate:
    """A posted ledger line on the bank's GL account, not yet matched."""

    journal_line_id: UUID
    entry_date: date
    side: LineSide
    amount: Decimal


@dataclass(frozen=True)
class BankLine:
    transaction_id: UUID
    transaction_date: date
    amount: Decimal


@dataclass(frozen=True)
class MatchTolerance:
    amount_tolerance: Decimal = Decimal("0")
    date_tolerance_days: int = 3


def is_compatible(line: BankLine, candidate: MatchCandidate, tolerance: MatchTolerance) -> bool:
    """
    Money in (amount >= 0) pairs with a debit to the bank GL account,
    money out with a credit.
    """
    expected_side = LineSide.DEBIT if line.amount >= 0 else LineSide.CREDIT
    if candidate.side != expected_side:
        return False
    if abs(abs(line.amount) - candidate.amount) > tolerance.amount_tolerance:
        return False
    return abs((line.transaction_date - candidate.entry_date).days) <= tolerance.date_tolerance_days


def match_greedy(
    lines: Sequence[BankLine],
    candidates: Sequence[MatchCandidate],
    tolerance: MatchTolerance,
) -> dict[UUID, UUID]:
    """
    Pair bank lines with ledger lines; each ledger line is used once.

    Bank lines are taken in date order; each takes its closest compatible
    candidate.

    Returns:
        {transaction_id: journal_line_id}
    """
    available = list(candidates)
    pairs: dict[UUID, UUID] = {}
    for line in sorted(lines, key=lambda l: (l.transaction_date, str(l.transaction_id))):
        compatible = [c for c in available if is_compatible(line, c, tolerance)]
        if not compatible:
            continue
        best = min(
            compatible,
            key=lambda c: (
                abs((line.transaction_date - c.entry_date).days),
                abs(abs(line.amount) - c.amount),
                str(c.journal_line_id),
            ),
        )
        pairs[line.transaction_id] = best.journal_line_id
        available.remove(best)
    return pairs
