"""
ledger_modules.events.service
=============================

Responsibility:
    Idempotent ingestion of external business events.  Each event id has
    at most one ledger effect, however often the transport delivers it.

Architecture:
    Module layer.  Posting rules decide *what* to post; the kernel
    JournalService performs the write; this service owns the transaction.

Atomic boundary:
    The ``processed_events`` claim row, the journal entry and its outbox
    record are flushed in one transaction and committed together.  On any
    failure the transaction is rolled back and a FAILED row is written in a
    fresh unit of work before the error is re-raised.

Idempotency policy:
    - SUCCESS and SKIPPED rows are final: redelivery returns DUPLICATE.
    - FAILED rows are not final: a retry runs again and upgrades the row.
    - Two concurrent first deliveries race on ``uq_processed_event_id``;
      the loser rolls back and raises EventConflictError.

Failure modes:
    - PeriodClosedError, MissingAccountConfigurationError,
      UnknownAccountError, UnbalancedEntryError, ValidationError,
      UnsupportedEventTypeError: recorded as FAILED, then re-raised.
    - EventConflictError: nothing recorded (the winner owns the row).
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.db.types import enum_value
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import JournalEntryInfo
from ledger_kernel.exceptions import (
    DuplicateEventError,
    EventConflictError,
    MissingAccountConfigurationError,
    NotFoundError,
    UnsupportedEventTypeError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.processed_event import ProcessedEvent, ProcessingOutcome
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.utils.hashing import hash_payload
from ledger_modules.events.models import (
    InboundEvent,
    IngestionResult,
    IngestionStatus,
    ProcessedEventInfo,
)
from ledger_modules.events.registry import PostingRuleRegistry, build_default_registry

logger = get_logger("modules.events.service")

_MAX_ERROR_LENGTH = 2000


class LedgerPostingContext:
    """``PostingContext`` backed by the kernel services of one session."""

    def __init__(self, journal: JournalService, config: LedgerConfig):
        self._journal = journal
        self._mapping = config.account_mapping

    def account_code(self, role: str) -> str:
        code = getattr(self._mapping, role, None)
        if not code:
            raise MissingAccountConfigurationError(role, None)
        account = self._journal.accounts.get_by_code(code)
        if account is None or not account.is_active or not account.is_detail_account:
            raise MissingAccountConfigurationError(role, code)
        return code

    def find_posted_entries(
        self, source_service: str, source_reference_id: str
    ) -> list[JournalEntryInfo]:
        return self._journal.find_by_source(source_service, source_reference_id)

    def get_entry(self, entry_id: UUID) -> JournalEntryInfo | None:
        try:
            return self._journal.get_entry(entry_id)
        except NotFoundError:
            return None

    def has_reversal(self, entry_id: UUID) -> bool:
        return self._journal.has_reversal(entry_id)


class EventIngestionService:
    """
    Translates inbound events into posted journal entries exactly once.

    Contract:
        ``handle`` commits on success (POSTED, SKIPPED, DUPLICATE) and
        rolls back then re-raises on failure.

    Non-goals:
        - Does NOT subscribe to a transport; callers hand it events.
        - Does NOT publish outbox records.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        registry: PostingRuleRegistry | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._registry = registry or build_default_registry()
        self._journal = JournalService(session, self._clock)
        self._context = LedgerPostingContext(self._journal, self._config)

    # =========================================================================
    # Ingestion
    # =========================================================================

    def handle(self, event: InboundEvent | dict[str, Any]) -> IngestionResult:
        """
        Process one event.

        Postconditions:
            - POSTED: one journal entry, one outbox record and a SUCCESS
              processed-event row were committed together.
            - SKIPPED: a SKIPPED row was committed, no entry.
            - DUPLICATE: nothing changed.

        Raises:
            Any LedgerError from the rule or the kernel, after the failure
            has been recorded.  EventConflictError when a concurrent
            writer claimed the event first.
        """
        if not isinstance(event, InboundEvent):
            event = InboundEvent.from_dict(event)
        payload_hash = hash_payload(event.payload)

        with LogContext.bind(event_id=event.event_id):
            logger.info(
                "event_ingestion_started",
                extra={"event_type": event.event_type, "payload_hash": payload_hash},
            )
            try:
                result = self._process(event, payload_hash)
                self._session.commit()
            except DuplicateEventError as dup:
                self._session.rollback()
                logger.info(
                    "event_duplicate",
                    extra={"event_type": event.event_type, "outcome": dup.outcome},
                )
                result = IngestionResult(
                    event_id=event.event_id,
                    status=IngestionStatus.DUPLICATE,
                    journal_entry_id=dup.journal_entry_id,
                    message=f"Event already processed ({dup.outcome})",
                )
            except EventConflictError:
                self._session.rollback()
                logger.warning(
                    "event_ingestion_conflict",
                    extra={"event_type": event.event_type},
                )
                raise
            except Exception as exc:
                self._session.rollback()
                self._record_failure(event, payload_hash, exc)
                raise

            logger.info(
                "event_ingestion_completed",
                extra={
                    "event_type": event.event_type,
                    "status": result.status.value,
                    "entry_id": str(result.journal_entry_id) if result.journal_entry_id else None,
                },
            )
            return result

    def _lock_record(self, event_id: str) -> ProcessedEvent | None:
        stmt = (
            select(ProcessedEvent)
            .where(ProcessedEvent.event_id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def _process(self, event: InboundEvent, payload_hash: str) -> IngestionResult:
        record = self._lock_record(event.event_id)

        if record is not None and record.is_final:
            if record.payload_hash and record.payload_hash != payload_hash:
                logger.warning(
                    "event_payload_mismatch",
                    extra={
                        "event_type": event.event_type,
                        "stored_hash": record.payload_hash,
                        "payload_hash": payload_hash,
                    },
                )
            raise DuplicateEventError(
                event.event_id, enum_value(record.outcome), record.journal_entry_id
            )

        rule = self._registry.get_rule(event.event_type)
        if rule is None:
            raise UnsupportedEventTypeError(event.event_type)

        now = self._clock.now()
        if record is None:
            # Outcome is placeholder until the end of this transaction.
            record = ProcessedEvent(
                event_id=event.event_id,
                event_type=event.event_type,
                outcome=ProcessingOutcome.FAILED,
                attempts=0,
                processed_at=now,
            )
            self._session.add(record)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise EventConflictError(event.event_id) from exc

        record.attempts = (record.attempts or 0) + 1
        record.payload_hash = payload_hash
        record.processed_at = now

        self._journal.periods.require_open_for_date(rule.business_date(event))
        plan = rule.build(event, self._context)

        if plan is None:
            record.outcome = ProcessingOutcome.SKIPPED
            record.error_message = None
            self._session.flush()
            return IngestionResult(
                event_id=event.event_id,
                status=IngestionStatus.SKIPPED,
                message=f"{event.event_type} has no ledger effect",
            )

        entry = self._journal.create_posted(list(plan.lines), plan.metadata, plan.actor)

        record.outcome = ProcessingOutcome.SUCCESS
        record.error_message = None
        record.journal_entry_id = entry.id
        self._session.flush()

        return IngestionResult(
            event_id=event.event_id,
            status=IngestionStatus.POSTED,
            journal_entry_id=entry.id,
            message=f"Posted {entry.entry_number}",
        )

    def _record_failure(self, event: InboundEvent, payload_hash: str, exc: Exception) -> None:
        """Persist a FAILED row in its own unit of work."""
        error_code = getattr(exc, "code", type(exc).__name__)
        message = str(exc)[:_MAX_ERROR_LENGTH]
        try:
            record = self._lock_record(event.event_id)
            if record is None:
                record = ProcessedEvent(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    attempts=0,
                )
                self._session.add(record)
            elif record.is_final:
                # A concurrent delivery succeeded in the meantime.
                self._session.rollback()
                record = None

            if record is not None:
                record.outcome = ProcessingOutcome.FAILED
                record.error_message = message
                record.attempts = (record.attempts or 0) + 1
                record.payload_hash = payload_hash
                record.processed_at = self._clock.now()
                self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.exception(
                "event_failure_not_recorded",
                extra={"event_type": event.event_type, "error_code": error_code},
            )

        logger.error(
            "event_ingestion_failed",
            extra={
                "event_type": event.event_type,
                "error_code": error_code,
                "error": message,
            },
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_processed_event(self, event_id: str) -> ProcessedEventInfo | None:
        record = self._session.execute(
            select(ProcessedEvent).where(ProcessedEvent.event_id == event_id)
        ).scalar_one_or_none()
        return _to_info(record) if record is not None else None

    def list_failed_events(self, limit: int = 100) -> list[ProcessedEventInfo]:
        """FAILED rows, most recent first, for retry and alerting."""
        stmt = (
            select(ProcessedEvent)
            .where(ProcessedEvent.outcome == ProcessingOutcome.FAILED.value)
            .order_by(ProcessedEvent.processed_at.desc())
            .limit(limit)
        )
        return [_to_info(r) for r in self._session.execute(stmt).scalars()]


def _to_info(record: ProcessedEvent) -> ProcessedEventInfo:
    return ProcessedEventInfo(
        event_id=record.event_id,
        event_type=record.event_type,
        outcome=enum_value(record.outcome),
        attempts=record.attempts,
        error_message=record.error_message,
        journal_entry_id=record.journal_entry_id,
        processed_at=record.processed_at,
    )
