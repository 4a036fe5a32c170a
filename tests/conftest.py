"""
Shared fixtures: a database engine built once per run, per-test sessions that
roll back, a pinned clock, and a small chart of accounts with January to
March 2024 open.

Set DATABASE_URL to run against PostgreSQL instead of in-memory SQLite.
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO
from typing import Iterator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.db.engine import create_tables, drop_tables, init_engine_from_url, reset_engine
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.account import AccountType, NormalBalance
from ledger_kernel.services import AccountService, JournalService, PeriodService

TEST_ACTOR_ID = "test-actor"

DEFAULT_DATABASE_URL = "sqlite://"

# code, name, type, normal balance override
STANDARD_ACCOUNTS = (
    ("1101", "Cash", AccountType.ASSET, None),
    ("1301", "Inventory", AccountType.ASSET, None),
    ("1501", "Equipment", AccountType.ASSET, None),
    ("1509", "Accumulated Depreciation - Equipment", AccountType.ASSET, NormalBalance.CREDIT),
    ("2201", "Tax Payable", AccountType.LIABILITY, None),
    ("3101", "Owner Equity", AccountType.EQUITY, None),
    ("4101", "Sales Revenue", AccountType.REVENUE, None),
    ("4201", "Sales Discount", AccountType.REVENUE, NormalBalance.DEBIT),
    ("4901", "Inventory Gain", AccountType.REVENUE, None),
    ("5101", "Cost of Goods Sold", AccountType.COGS, None),
    ("5901", "Inventory Shrinkage", AccountType.EXPENSE, None),
    ("5902", "Inventory Write-off", AccountType.EXPENSE, None),
    ("5903", "Inventory Recount Loss", AccountType.EXPENSE, None),
    ("6101", "Depreciation Expense", AccountType.EXPENSE, None),
)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _ledger_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _fresh_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Ledger log lines emitted during the test, parsed from JSON.

        def test_post_logged(captured_logs, journal, draft):
            journal.post(draft.id, "clerk-1")
            assert "journal_entry_posted" in [r["message"] for r in captured_logs()]
    """
    buffer = StringIO()
    capture = logging.StreamHandler(buffer)
    capture.setFormatter(StructuredFormatter())
    ledger_logger = logging.getLogger("ledger")
    ledger_logger.addHandler(capture)
    try:
        yield lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]
    finally:
        ledger_logger.removeHandler(capture)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    engine = init_engine_from_url(os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL))
    drop_tables(engine)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    reset_engine()


@pytest.fixture
def session(db_engine) -> Iterator[Session]:
    """
    A session whose commits only release SAVEPOINTs.

    Module services commit for real; the enclosing connection-level
    transaction is rolled back afterwards, so no test sees another's rows.
    """
    with db_engine.connect() as connection:
        outer = connection.begin()
        with Session(
            bind=connection,
            join_transaction_mode="create_savepoint",
            expire_on_commit=False,
        ) as test_session:
            yield test_session
        outer.rollback()


# =============================================================================
# Time, actors, configuration
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 1, 31, 17, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_actor_id() -> str:
    return TEST_ACTOR_ID


@pytest.fixture
def ledger_config() -> LedgerConfig:
    """Bundled defaults, independent of LEDGER_CONFIG / DATABASE_URL."""
    return LedgerConfig()


# =============================================================================
# Kernel services and reference data
# =============================================================================


@pytest.fixture
def account_service(session, deterministic_clock) -> AccountService:
    return AccountService(session, deterministic_clock)


@pytest.fixture
def period_service(session, deterministic_clock) -> PeriodService:
    return PeriodService(session, deterministic_clock)


@pytest.fixture
def journal(session, deterministic_clock) -> JournalService:
    return JournalService(session, deterministic_clock)


@pytest.fixture
def standard_accounts(account_service, session) -> dict[str, UUID]:
    """The default chart of accounts, keyed by code."""
    accounts = {}
    for code, name, account_type, normal_balance in STANDARD_ACCOUNTS:
        info = account_service.create_account(
            code=code,
            name=name,
            account_type=account_type,
            normal_balance=normal_balance,
            actor=TEST_ACTOR_ID,
        )
        accounts[code] = info.id
    session.commit()
    return accounts


@pytest.fixture
def open_periods(period_service, session):
    """January through March 2024, all OPEN."""
    periods = [period_service.create_period(2024, month, TEST_ACTOR_ID) for month in (1, 2, 3)]
    session.commit()
    return periods


@pytest.fixture
def ledger(standard_accounts, open_periods):
    """Chart of accounts plus open periods; returns the account ids."""
    return standard_accounts
