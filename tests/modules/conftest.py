"""
Shared fixtures for module tests.

Every fixture is opt-in.  Each test declares the services and reference
data it depends on in its signature; fixtures that persist data commit so
that module services rolling back a failed call do not undo the setup.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_modules.assets import DepreciationService
from ledger_modules.cash import BankReconciliationService
from ledger_modules.events import EventIngestionService


@pytest.fixture
def event_service(session, ledger, ledger_config, deterministic_clock) -> EventIngestionService:
    return EventIngestionService(session, config=ledger_config, clock=deterministic_clock)


@pytest.fixture
def bank_service(session, ledger, ledger_config, deterministic_clock) -> BankReconciliationService:
    return BankReconciliationService(session, config=ledger_config, clock=deterministic_clock)


@pytest.fixture
def bank_account(bank_service, ledger, test_actor_id):
    """Operating account at the bank, linked to GL 1101 Cash."""
    return bank_service.register_bank_account(
        account_id=ledger["1101"],
        bank_name="Bank Mandiri",
        account_number="123-000-4567",
        account_name="Operating Account",
        actor=test_actor_id,
    )


@pytest.fixture
def depreciation_service(session, ledger, ledger_config, deterministic_clock) -> DepreciationService:
    return DepreciationService(session, config=ledger_config, clock=deterministic_clock)


@pytest.fixture
def equipment_category(depreciation_service, test_actor_id):
    """Five-year straight-line equipment, no default salvage."""
    return depreciation_service.create_category(
        code="EQUIP",
        name="Office Equipment",
        depreciation_method="straight_line",
        useful_life_months=60,
        asset_account_code="1501",
        accumulated_depreciation_account_code="1509",
        depreciation_expense_account_code="6101",
        actor=test_actor_id,
    )


@pytest.fixture
def laptop(depreciation_service, equipment_category, test_actor_id):
    """Cost 12,000, salvage 0, sixty months: 200.00 a month."""
    return depreciation_service.register_asset(
        asset_number="FA-0001",
        name="Developer laptop",
        category_code="EQUIP",
        acquisition_date=date(2024, 1, 1),
        acquisition_cost=Decimal("12000.00"),
        salvage_value=Decimal("0"),
        actor=test_actor_id,
    )
