"""
Gap-tolerant, never-reused numbering for journal entries.

Numbers come from a locked counter row per fiscal period. Reading the
highest existing entry number and adding one would let two concurrent
posters pick the same number.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).one_or_none()

    def _first_use(self, name: str) -> SequenceCounter:
        # A concurrent writer may insert the same counter; fall back to its row.
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=name, current_value=0)
                self._session.add(counter)
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_exists", extra={"sequence_name": name})
            counter = self._lock(name)
            if counter is None:
                raise
            return counter

    def allocate(self, name: str) -> int:
        """Next value of ``name``; stays reserved only if the caller commits."""
        counter = self._lock(name) or self._first_use(name)
        counter.current_value += 1
        self._session.flush()
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        return self._session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        )

    def next_entry_number(self, fiscal_year: int, fiscal_month: int) -> str:
        """``JE-<yyyymm>-<nnnn>``, counting from 0001 in each fiscal period."""
        period = f"{fiscal_year}{fiscal_month:02d}"
        value = self.allocate(f"journal_entry:{period}")
        logger.debug(
            "entry_number_allocated",
            extra={"fiscal_year": fiscal_year, "fiscal_month": fiscal_month, "value": value},
        )
        return f"JE-{period}-{value:04d}"
