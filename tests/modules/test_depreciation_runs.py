"""
Depreciation run tests.

Verifies:
- Monthly calculators never take book value below salvage
- Calculated -> Posted -> Reversed, one live run per period
- Posting books one Dr expense / Cr accumulated entry at period end
- Reversal restores asset balances and frees the period
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PeriodAlreadyCalculatedError,
    PeriodClosedError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.models.journal import LineSide
from ledger_modules.assets import (
    AssetStatus,
    calculate_period_depreciation,
    declining_balance,
    straight_line,
    sum_of_years_digits,
)


class TestCalculators:
    """Pure monthly charge functions."""

    def test_straight_line(self):
        assert straight_line(Decimal("12000"), Decimal("0"), 60, Decimal("12000")) == Decimal("200.00")

    def test_straight_line_rounds_to_cents(self):
        assert straight_line(Decimal("12000"), Decimal("2000"), 60, Decimal("12000")) == Decimal("166.67")

    def test_charge_capped_at_salvage(self):
        assert straight_line(Decimal("12000"), Decimal("0"), 60, Decimal("150")) == Decimal("150")
        assert straight_line(Decimal("12000"), Decimal("500"), 60, Decimal("500")) == Decimal("0")

    def test_zero_life(self):
        assert straight_line(Decimal("12000"), Decimal("0"), 0, Decimal("12000")) == Decimal("0")
        assert declining_balance(Decimal("0"), 0, Decimal("12000")) == Decimal("0")

    def test_double_declining_balance(self):
        # 12/60 * 2 = 40% a year on book value
        assert declining_balance(Decimal("0"), 60, Decimal("12000")) == Decimal("400.00")
        assert declining_balance(Decimal("0"), 60, Decimal("11600")) == Decimal("386.67")

    def test_declining_balance_factor(self):
        assert declining_balance(Decimal("0"), 60, Decimal("12000"), Decimal("1.5")) == Decimal("300.00")

    def test_declining_balance_capped(self):
        assert declining_balance(Decimal("11900"), 60, Decimal("12000")) == Decimal("100")

    def test_sum_of_years_digits_by_life_year(self):
        cost, salvage = Decimal("12000"), Decimal("0")
        # five-year life, digits sum to 15
        assert sum_of_years_digits(cost, salvage, 60, cost, Decimal("0")) == Decimal("333.33")
        assert sum_of_years_digits(cost, salvage, 60, Decimal("8000"), Decimal("4000")) == Decimal("266.67")
        assert sum_of_years_digits(cost, salvage, 60, Decimal("0"), Decimal("12000")) == Decimal("0")

    def test_dispatch_by_method(self):
        args = dict(
            cost=Decimal("12000"),
            salvage_value=Decimal("0"),
            useful_life_months=60,
            book_value=Decimal("12000"),
            accumulated_depreciation=Decimal("0"),
        )
        assert calculate_period_depreciation("straight_line", **args) == Decimal("200.00")
        assert calculate_period_depreciation("declining_balance", **args) == Decimal("400.00")
        assert calculate_period_depreciation("sum_of_years_digits", **args) == Decimal("333.33")
        with pytest.raises(ValueError):
            calculate_period_depreciation("units_of_production", **args)


class TestRegister:

    def test_asset_defaults_from_category(self, laptop):
        assert laptop.book_value == Decimal("12000.00")
        assert laptop.accumulated_depreciation == Decimal("0")
        assert laptop.useful_life_months == 60
        assert laptop.depreciation_method == "straight_line"
        assert laptop.depreciation_start_date == date(2024, 1, 1)
        assert laptop.status == "active"

    def test_salvage_from_category_percent(self, depreciation_service, ledger, test_actor_id):
        depreciation_service.create_category(
            "VEH", "Vehicles", "declining_balance", 48, "1501", "1509", "6101",
            salvage_percent="10", actor=test_actor_id,
        )
        van = depreciation_service.register_asset(
            "FA-0100", "Delivery van", "VEH", date(2024, 1, 15), "5000", actor=test_actor_id
        )
        assert van.salvage_value == Decimal("500.00")
        assert van.depreciation_method == "declining_balance"

    def test_category_accounts_must_exist(self, depreciation_service, ledger, test_actor_id):
        with pytest.raises(UnknownAccountError):
            depreciation_service.create_category(
                "FURN", "Furniture", "straight_line", 96, "1501", "1599", "6101",
                actor=test_actor_id,
            )

    def test_category_accounts_must_differ(self, depreciation_service, ledger, test_actor_id):
        with pytest.raises(ValidationError):
            depreciation_service.create_category(
                "FURN", "Furniture", "straight_line", 96, "1501", "6101", "6101",
                actor=test_actor_id,
            )

    def test_unknown_method(self, depreciation_service, ledger, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            depreciation_service.create_category(
                "FURN", "Furniture", "units_of_production", 96, "1501", "1509", "6101",
                actor=test_actor_id,
            )
        assert exc_info.value.field == "depreciation_method"

    def test_salvage_must_be_below_cost(self, depreciation_service, equipment_category, test_actor_id):
        with pytest.raises(ValidationError):
            depreciation_service.register_asset(
                "FA-0002", "Monitor", "EQUIP", date(2024, 1, 1), "300", salvage_value="300",
                actor=test_actor_id,
            )

    def test_unknown_category(self, depreciation_service, ledger, test_actor_id):
        with pytest.raises(NotFoundError):
            depreciation_service.register_asset(
                "FA-0002", "Monitor", "NOPE", date(2024, 1, 1), "300", actor=test_actor_id
            )

    def test_dispose(self, depreciation_service, laptop, test_actor_id):
        disposed = depreciation_service.dispose_asset(laptop.id, test_actor_id)
        assert disposed.status == "disposed"
        with pytest.raises(InvalidTransitionError):
            depreciation_service.dispose_asset(laptop.id, test_actor_id)
        assert depreciation_service.list_assets(AssetStatus.ACTIVE) == []


class TestRunLifecycle:

    def test_preview_persists_nothing(self, depreciation_service, laptop):
        preview = depreciation_service.preview(2024, 1)
        assert preview.total_depreciation == Decimal("200.00")
        assert preview.lines[0].closing_book_value == Decimal("11800.00")
        assert depreciation_service.list_runs() == []

    def test_calculate_has_no_ledger_effect(self, depreciation_service, journal, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)

        assert run.status == "calculated"
        assert run.asset_count == 1
        assert run.total_depreciation == Decimal("200.00")
        assert run.journal_entry_id is None
        assert journal.list_entries(fiscal_year=2024, fiscal_month=1) == []
        assert depreciation_service.get_asset(laptop.id).book_value == Decimal("12000.00")

    def test_second_calculate_rejected(self, depreciation_service, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        with pytest.raises(PeriodAlreadyCalculatedError) as exc_info:
            depreciation_service.calculate(2024, 1, test_actor_id)
        assert exc_info.value.run_id == str(run.id)

    def test_post_books_one_entry(self, depreciation_service, journal, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        posted = depreciation_service.post(run.id, test_actor_id)

        assert posted.status == "posted"
        entry = journal.get_entry(posted.journal_entry_id)
        assert entry.status == "posted"
        assert entry.entry_date == date(2024, 1, 31)
        assert entry.reference == "DEP-202401"
        assert entry.source_service == "depreciation"
        assert [(l.account_code, l.side, l.amount) for l in entry.lines] == [
            ("6101", LineSide.DEBIT, Decimal("200.00")),
            ("1509", LineSide.CREDIT, Decimal("200.00")),
        ]

        asset = depreciation_service.get_asset(laptop.id)
        assert asset.book_value == Decimal("11800.00")
        assert asset.accumulated_depreciation == Decimal("200.00")
        assert asset.last_depreciation_date == date(2024, 1, 31)

    def test_post_twice_rejected(self, depreciation_service, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        depreciation_service.post(run.id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            depreciation_service.post(run.id, test_actor_id)
        with pytest.raises(PeriodAlreadyCalculatedError):
            depreciation_service.calculate(2024, 1, test_actor_id)

    def test_next_period_continues_from_book_value(self, depreciation_service, laptop, test_actor_id):
        depreciation_service.post(depreciation_service.calculate(2024, 1, test_actor_id).id, test_actor_id)
        depreciation_service.post(depreciation_service.calculate(2024, 2, test_actor_id).id, test_actor_id)

        asset = depreciation_service.get_asset(laptop.id)
        assert asset.book_value == Decimal("11600.00")
        assert asset.last_depreciation_date == date(2024, 2, 29)

    def test_post_into_closed_period(self, depreciation_service, period_service, session, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        period_service.close_period(2024, 1, test_actor_id)
        session.commit()

        with pytest.raises(PeriodClosedError):
            depreciation_service.post(run.id, test_actor_id)
        assert depreciation_service.get_run(run.id).status == "calculated"
        assert depreciation_service.get_asset(laptop.id).book_value == Decimal("12000.00")

    def test_empty_run_cannot_post(self, depreciation_service, equipment_category, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        assert run.asset_count == 0
        with pytest.raises(ValidationError):
            depreciation_service.post(run.id, test_actor_id)

    def test_stale_run_rejected_then_recalculated(self, depreciation_service, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        depreciation_service.dispose_asset(laptop.id, test_actor_id)

        with pytest.raises(ValidationError):
            depreciation_service.post(run.id, test_actor_id)

        depreciation_service.delete_run(run.id)
        fresh = depreciation_service.calculate(2024, 1, test_actor_id)
        assert fresh.asset_count == 0

    def test_fully_depreciated_asset(self, depreciation_service, equipment_category, test_actor_id):
        mouse = depreciation_service.register_asset(
            "FA-0003", "Mouse", "EQUIP", date(2024, 1, 1), "400", salvage_value="0",
            useful_life_months=2, actor=test_actor_id,
        )
        depreciation_service.post(depreciation_service.calculate(2024, 1, test_actor_id).id, test_actor_id)
        depreciation_service.post(depreciation_service.calculate(2024, 2, test_actor_id).id, test_actor_id)

        assert depreciation_service.get_asset(mouse.id).status == "fully_depreciated"
        assert depreciation_service.preview(2024, 3).lines == ()


class TestReversal:

    @pytest.fixture
    def posted_run(self, depreciation_service, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        return depreciation_service.post(run.id, test_actor_id)

    def test_reverse_restores_asset(self, depreciation_service, journal, account_service, ledger, laptop, posted_run, test_actor_id):
        reversed_run = depreciation_service.reverse(posted_run.id, "Wrong useful life", test_actor_id)

        assert reversed_run.status == "reversed"
        assert reversed_run.reversal_reason == "Wrong useful life"
        reversal = journal.get_entry(reversed_run.reversal_journal_entry_id)
        assert reversal.reversal_of_id == posted_run.journal_entry_id
        assert journal.get_entry(posted_run.journal_entry_id).status == "posted"
        assert account_service.get_balance(ledger["6101"]).balance == Decimal("0")

        asset = depreciation_service.get_asset(laptop.id)
        assert asset.book_value == Decimal("12000.00")
        assert asset.accumulated_depreciation == Decimal("0")
        assert asset.last_depreciation_date is None

    def test_reversal_into_closed_period_rejected(
        self, depreciation_service, period_service, session, journal, laptop, posted_run, test_actor_id
    ):
        period_service.close_period(2024, 1, test_actor_id)
        session.commit()

        with pytest.raises(PeriodClosedError):
            depreciation_service.reverse(posted_run.id, "Wrong useful life", test_actor_id)

        run = depreciation_service.get_run(posted_run.id)
        assert run.status == "posted"
        assert run.reversal_journal_entry_id is None
        assert journal.get_entry(posted_run.journal_entry_id).status == "posted"
        assert depreciation_service.get_asset(laptop.id).book_value == Decimal("11800.00")

    def test_period_can_be_recalculated(
        self, depreciation_service, posted_run, deterministic_clock, test_actor_id
    ):
        depreciation_service.reverse(posted_run.id, "Wrong useful life", test_actor_id)
        deterministic_clock.advance(hours=1)
        again = depreciation_service.calculate(2024, 1, test_actor_id)
        assert again.total_depreciation == Decimal("200.00")
        assert [r.status for r in depreciation_service.list_runs(2024)] == ["reversed", "calculated"]

    def test_partial_rollback_keeps_previous_period(self, depreciation_service, laptop, posted_run, test_actor_id):
        february = depreciation_service.post(
            depreciation_service.calculate(2024, 2, test_actor_id).id, test_actor_id
        )
        depreciation_service.reverse(february.id, "Duplicate charge", test_actor_id)

        asset = depreciation_service.get_asset(laptop.id)
        assert asset.book_value == Decimal("11800.00")
        assert asset.last_depreciation_date == date(2024, 1, 31)

    def test_later_run_must_be_reversed_first(self, depreciation_service, posted_run, test_actor_id):
        depreciation_service.post(depreciation_service.calculate(2024, 2, test_actor_id).id, test_actor_id)
        with pytest.raises(ValidationError):
            depreciation_service.reverse(posted_run.id, "Out of order", test_actor_id)

    def test_reason_required(self, depreciation_service, posted_run, test_actor_id):
        with pytest.raises(ValidationError):
            depreciation_service.reverse(posted_run.id, "no", test_actor_id)

    def test_only_posted_runs_reverse(self, depreciation_service, laptop, test_actor_id):
        run = depreciation_service.calculate(2024, 1, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            depreciation_service.reverse(run.id, "Not posted yet", test_actor_id)

    def test_posted_run_cannot_be_deleted(self, depreciation_service, posted_run):
        with pytest.raises(InvalidTransitionError):
            depreciation_service.delete_run(posted_run.id)
