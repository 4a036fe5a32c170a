"""
Engine and session management.

One process-wide engine is registered by ``init_engine_from_url``. Callers
outside the test suite open a unit of work with ``session_scope``; module
services commit inside it, kernel services only flush.

PostgreSQL runs at READ COMMITTED with a bounded pool. Period and sequence
rows are locked with ``SELECT ... FOR UPDATE`` where serialization matters.
SQLite (local runs and the default test database) uses a single shared
connection, with BEGIN emitted by SQLAlchemy so nested SAVEPOINTs work.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _sqlite_engine(url, echo: bool) -> Engine:
    engine = create_engine(
        url,
        echo=echo,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
) -> Engine:
    """Register the process-wide engine, disposing any previous one."""
    global _engine, _sessions

    url = make_url(database_url)
    reset_engine()
    if url.get_backend_name() == "sqlite":
        _engine = _sqlite_engine(url, echo)
    else:
        _engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )
    _sessions = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "database": url.database},
    )
    return _engine


def reset_engine() -> None:
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _sessions is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _sessions


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on clean exit, roll back and re-raise on error, always close.

        with session_scope() as session:
            JournalService(session).post(entry_id, "clerk-1")
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    # Importing the ORM modules registers their tables on Base.metadata.
    import ledger_kernel.models  # noqa: F401
    import ledger_modules.assets.orm  # noqa: F401
    import ledger_modules.cash.orm  # noqa: F401
    from ledger_kernel.db.base import Base

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    _metadata().create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    _metadata().drop_all(engine or get_engine())
