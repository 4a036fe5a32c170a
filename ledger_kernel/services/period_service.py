"""
PeriodService -- the fiscal period gate.

Responsibility:
    Manages the monthly period lifecycle (OPEN -> CLOSED -> LOCKED, with
    CLOSED -> OPEN reopen) and answers the one question every posting path
    asks before it writes: is this (year, month) open?

Architecture position:
    Kernel > Services.  Called by JournalService before any Draft -> Posted
    transition, and directly by the boundary facade for period management.

Invariants enforced:
    - Posting into a period that is missing, CLOSED or LOCKED raises
      PeriodClosedError.
    - The period row is read FOR UPDATE both here and when the journal
      engine posts, so a concurrent close cannot slip between the check and
      the status change of the entry.
    - Reopen needs a reason of at least REOPEN_REASON_MIN_LENGTH characters
      and is refused for LOCKED periods.
    - Flush-only: never commits or rolls back.

Failure modes:
    - NotFoundError for lifecycle operations on a missing period.
    - InvalidTransitionError for any other illegal move, including a
      reopen reason that is too short.
    - PeriodLockedError when reopening a locked period.
    - ValidationError for bad month numbers, and duplicate periods.
"""

from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import enum_value
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import FiscalPeriodInfo
from ledger_kernel.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PeriodClosedError,
    PeriodLockedError,
    ReopenReasonTooShortError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period")

REOPEN_REASON_MIN_LENGTH = 10


def fiscal_period_for(value: date) -> tuple[int, int]:
    """(fiscal_year, fiscal_month) of a business date.  Calendar months."""
    return value.year, value.month


def _validate_month(fiscal_year: int, fiscal_month: int) -> None:
    if not 1 <= fiscal_month <= 12:
        raise ValidationError(
            f"Fiscal month must be between 1 and 12, got {fiscal_month}",
            field="fiscal_month",
        )
    if fiscal_year < 1900:
        raise ValidationError(f"Invalid fiscal year {fiscal_year}", field="fiscal_year")


class PeriodService(BaseService):
    """
    Fiscal period lifecycle and posting gate.

    Contract:
        Lifecycle methods return frozen FiscalPeriodInfo snapshots and
        flush within the caller's transaction.

    Non-goals:
        - Does NOT compute closing balances or carry-forwards.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # =========================================================================
    # Lookup
    # =========================================================================

    def _get_period(self, fiscal_year: int, fiscal_month: int) -> FiscalPeriod | None:
        return self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.fiscal_year == fiscal_year,
                FiscalPeriod.fiscal_month == fiscal_month,
            )
        ).scalar_one_or_none()

    def _get_period_for_update(
        self, fiscal_year: int, fiscal_month: int
    ) -> FiscalPeriod | None:
        """
        Load the period with a row lock (SELECT ... FOR UPDATE).

        populate_existing refreshes an identity-mapped instance with the
        committed row, so a close committed by another transaction is seen.
        """
        return self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.fiscal_year == fiscal_year,
                FiscalPeriod.fiscal_month == fiscal_month,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _require_period_for_update(self, fiscal_year: int, fiscal_month: int) -> FiscalPeriod:
        period = self._get_period_for_update(fiscal_year, fiscal_month)
        if period is None:
            raise NotFoundError("FiscalPeriod", f"{fiscal_year}-{fiscal_month:02d}")
        return period

    def get_period(self, fiscal_year: int, fiscal_month: int) -> FiscalPeriodInfo | None:
        period = self._get_period(fiscal_year, fiscal_month)
        return FiscalPeriodInfo.from_model(period) if period is not None else None

    def list_periods(self, fiscal_year: int | None = None) -> list[FiscalPeriodInfo]:
        stmt = select(FiscalPeriod).order_by(FiscalPeriod.fiscal_year, FiscalPeriod.fiscal_month)
        if fiscal_year is not None:
            stmt = stmt.where(FiscalPeriod.fiscal_year == fiscal_year)
        return [FiscalPeriodInfo.from_model(p) for p in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Gate
    # =========================================================================

    def is_open(self, fiscal_year: int, fiscal_month: int) -> bool:
        """A period accepts postings only when it exists and is OPEN."""
        period = self._get_period(fiscal_year, fiscal_month)
        return period is not None and period.is_open

    def require_open(self, fiscal_year: int, fiscal_month: int) -> FiscalPeriod:
        """
        Lock the period row and require it to be OPEN.

        Postconditions: The period row stays locked until the caller's
            transaction ends, so it cannot be closed underneath a posting.

        Raises:
            PeriodClosedError: If the period is missing, CLOSED or LOCKED.
        """
        period = self._get_period_for_update(fiscal_year, fiscal_month)
        if period is None or not period.is_open:
            status = enum_value(period.status) if period is not None else None
            logger.warning(
                "posting_period_not_open",
                extra={
                    "fiscal_year": fiscal_year,
                    "fiscal_month": fiscal_month,
                    "status": status,
                },
            )
            raise PeriodClosedError(fiscal_year, fiscal_month, status)
        return period

    def require_open_for_date(self, business_date: date) -> FiscalPeriod:
        return self.require_open(*fiscal_period_for(business_date))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_period(
        self, fiscal_year: int, fiscal_month: int, actor: str = "system"
    ) -> FiscalPeriodInfo:
        """
        Create an OPEN period.

        Raises:
            ValidationError: Month out of range or period already exists.
        """
        _validate_month(fiscal_year, fiscal_month)
        if self._get_period(fiscal_year, fiscal_month) is not None:
            raise ValidationError(
                f"Fiscal period {fiscal_year}-{fiscal_month:02d} already exists"
            )

        period = FiscalPeriod(
            fiscal_year=fiscal_year,
            fiscal_month=fiscal_month,
            status=PeriodStatus.OPEN,
            created_by=actor,
        )
        self.session.add(period)
        self.session.flush()

        logger.info(
            "period_created",
            extra={"period_code": period.period_code, "actor_id": actor},
        )
        return FiscalPeriodInfo.from_model(period)

    def ensure_period(
        self, fiscal_year: int, fiscal_month: int, actor: str = "system"
    ) -> FiscalPeriodInfo:
        """Return the period, creating it OPEN if it does not exist yet."""
        existing = self.get_period(fiscal_year, fiscal_month)
        if existing is not None:
            return existing
        return self.create_period(fiscal_year, fiscal_month, actor)

    def close_period(self, fiscal_year: int, fiscal_month: int, closed_by: str) -> FiscalPeriodInfo:
        """
        Close an OPEN period.

        Preconditions:
            - The period is OPEN.
            - The closest earlier period on record is not still OPEN
              (periods close in order).

        Raises:
            NotFoundError, InvalidTransitionError.
        """
        period = self._require_period_for_update(fiscal_year, fiscal_month)
        if not period.is_open:
            raise InvalidTransitionError(
                "FiscalPeriod", period.period_code, enum_value(period.status), "close"
            )

        previous = self.session.execute(
            select(FiscalPeriod)
            .where(
                or_(
                    FiscalPeriod.fiscal_year < fiscal_year,
                    and_(
                        FiscalPeriod.fiscal_year == fiscal_year,
                        FiscalPeriod.fiscal_month < fiscal_month,
                    ),
                )
            )
            .order_by(FiscalPeriod.fiscal_year.desc(), FiscalPeriod.fiscal_month.desc())
            .limit(1)
        ).scalar_one_or_none()
        if previous is not None and previous.is_open:
            raise InvalidTransitionError(
                "FiscalPeriod",
                period.period_code,
                enum_value(period.status),
                f"close before previous period {previous.period_code}",
            )

        period.status = PeriodStatus.CLOSED
        period.closed_at = self.clock.now()
        period.closed_by = closed_by
        period.updated_by = closed_by
        self.session.flush()

        logger.info(
            "period_closed",
            extra={"period_code": period.period_code, "actor_id": closed_by},
        )
        return FiscalPeriodInfo.from_model(period)

    def reopen_period(
        self, fiscal_year: int, fiscal_month: int, reason: str, reopened_by: str
    ) -> FiscalPeriodInfo:
        """
        Reopen a CLOSED period.

        Postconditions: status is OPEN, closed_* cleared, reopened_* set.

        Raises:
            PeriodLockedError: The period is LOCKED.
            InvalidTransitionError: The period is not CLOSED, or the reason is
                shorter than REOPEN_REASON_MIN_LENGTH (ReopenReasonTooShortError).
        """
        period = self._require_period_for_update(fiscal_year, fiscal_month)
        if period.status == PeriodStatus.LOCKED:
            raise PeriodLockedError(fiscal_year, fiscal_month)
        if period.status != PeriodStatus.CLOSED:
            raise InvalidTransitionError(
                "FiscalPeriod", period.period_code, enum_value(period.status), "reopen"
            )
        reason = (reason or "").strip()
        if len(reason) < REOPEN_REASON_MIN_LENGTH:
            raise ReopenReasonTooShortError(period.period_code, REOPEN_REASON_MIN_LENGTH)

        period.status = PeriodStatus.OPEN
        period.closed_at = None
        period.closed_by = None
        period.reopened_at = self.clock.now()
        period.reopened_by = reopened_by
        period.reopen_reason = reason
        period.updated_by = reopened_by
        self.session.flush()

        logger.warning(
            "period_reopened",
            extra={
                "period_code": period.period_code,
                "actor_id": reopened_by,
                "reason": reason,
            },
        )
        return FiscalPeriodInfo.from_model(period)

    def lock_period(self, fiscal_year: int, fiscal_month: int, locked_by: str) -> FiscalPeriodInfo:
        """
        Lock a CLOSED period permanently.

        Raises:
            InvalidTransitionError: The period is not CLOSED.
        """
        period = self._require_period_for_update(fiscal_year, fiscal_month)
        if period.status != PeriodStatus.CLOSED:
            raise InvalidTransitionError(
                "FiscalPeriod", period.period_code, enum_value(period.status), "lock"
            )

        period.status = PeriodStatus.LOCKED
        period.locked_at = self.clock.now()
        period.locked_by = locked_by
        period.updated_by = locked_by
        self.session.flush()

        logger.info(
            "period_locked",
            extra={"period_code": period.period_code, "actor_id": locked_by},
        )
        return FiscalPeriodInfo.from_model(period)
