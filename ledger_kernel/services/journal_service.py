"""
JournalService -- the journal entry engine, sole authority for ledger mutation.

Responsibility:
    Creates, balances, posts, voids and reverses journal entries.  Every
    posting path in the system (manual entries, event ingestion,
    depreciation runs) goes through this service.

Architecture position:
    Kernel > Services.  Uses AccountService (account directory),
    PeriodService (period gate) and SequenceService (entry numbering).

State machine:

    DRAFT ----post----> POSTED ----void----> VOIDED
      |
      +----delete----> (gone)

    Anything else raises InvalidTransitionError (AlreadyPostedError and
    AlreadyVoidedError for repeated calls).

Invariants enforced:
    - Balance: |sum(debits) - sum(credits)| <= BALANCE_TOLERANCE at
      creation, on every draft update, and again before posting.
    - Lines reference active detail accounts only.
    - Posting (and creating SYSTEM entries) requires the entry's fiscal
      period to be OPEN; the period row is locked in the same transaction
      that flips the entry to POSTED.
    - Voiding requires the period to be OPEN, so balances of a closed
      period never change after the fact.
    - Each posting writes one JournalEntryPosted outbox record in the same
      transaction.
    - Flush-only: never commits or rolls back.

Failure modes:
    - ValidationError, UnbalancedEntryError, UnknownAccountError,
      PeriodClosedError, InvalidTransitionError / AlreadyPostedError /
      AlreadyVoidedError, NotFoundError.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import BALANCE_TOLERANCE, enum_value
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import EntryMetadata, JournalEntryInfo, LineSpec, PostedLineInfo
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyVoidedError,
    InvalidTransitionError,
    NotFoundError,
    UnbalancedEntryError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import (
    DIMENSION_KEYS,
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    JournalLine,
    LineSide,
)
from ledger_kernel.models.outbox import JOURNAL_ENTRY_POSTED, OutboxEvent
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_service import PeriodService, fiscal_period_for
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.hashing import to_jsonable

logger = get_logger("services.journal")

VOID_REASON_MIN_LENGTH = 3
MIN_LINES = 2


def validate_line_set(lines: Sequence[LineSpec]) -> tuple[Decimal, Decimal]:
    """
    Structural and balance validation of a proposed line set.

    Returns:
        (total_debits, total_credits)

    Raises:
        ValidationError: Fewer than two lines, one-sided, or unknown
            dimension keys.
        UnbalancedEntryError: Debits and credits differ by more than
            BALANCE_TOLERANCE.
    """
    if len(lines) < MIN_LINES:
        raise ValidationError("Journal entry must have at least 2 lines", field="lines")

    debits = sum((l.amount for l in lines if l.side == LineSide.DEBIT), Decimal("0"))
    credits = sum((l.amount for l in lines if l.side == LineSide.CREDIT), Decimal("0"))

    if debits == 0 or credits == 0:
        raise ValidationError(
            "Journal entry must have at least one debit and one credit line",
            field="lines",
        )

    for line in lines:
        unknown = set(line.dimensions or {}) - DIMENSION_KEYS
        if unknown:
            raise ValidationError(
                f"Unknown dimension(s): {', '.join(sorted(unknown))}",
                field="dimensions",
            )

    if abs(debits - credits) > BALANCE_TOLERANCE:
        raise UnbalancedEntryError(debits=str(debits), credits=str(credits))

    return debits, credits


class JournalService(BaseService):
    """
    Journal entry engine.

    Contract:
        Public methods return frozen JournalEntryInfo snapshots.  All
        mutations flush within the caller's transaction.

    Non-goals:
        - Does NOT decide which accounts an event maps to (posting rules).
        - Does NOT auto-generate a reversing entry when voiding.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self.accounts = AccountService(session, self.clock)
        self.periods = PeriodService(session, self.clock)
        self.sequences = SequenceService(session)

    # =========================================================================
    # Reads
    # =========================================================================

    def _load(self, entry_id: UUID, for_update: bool = False) -> JournalEntry:
        stmt = select(JournalEntry).where(JournalEntry.id == entry_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        entry = self.session.execute(stmt).scalar_one_or_none()
        if entry is None:
            raise NotFoundError("JournalEntry", str(entry_id))
        return entry

    def get_entry(self, entry_id: UUID) -> JournalEntryInfo:
        return JournalEntryInfo.from_model(self._load(entry_id))

    def find_by_source(
        self,
        source_service: str,
        source_reference_id: str,
        status: JournalEntryStatus | None = JournalEntryStatus.POSTED,
    ) -> list[JournalEntryInfo]:
        """Entries produced for a given source, oldest first."""
        stmt = (
            select(JournalEntry)
            .where(
                JournalEntry.source_service == source_service,
                JournalEntry.source_reference_id == source_reference_id,
            )
            .order_by(JournalEntry.created_at, JournalEntry.entry_number)
        )
        if status is not None:
            stmt = stmt.where(JournalEntry.status == status.value)
        return [JournalEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]

    def has_reversal(self, entry_id: UUID) -> bool:
        """True when a POSTED entry reverses ``entry_id``."""
        stmt = select(JournalEntry.id).where(
            JournalEntry.reversal_of_id == entry_id,
            JournalEntry.status == JournalEntryStatus.POSTED.value,
        )
        return self.session.execute(stmt).first() is not None

    def list_entries(
        self,
        fiscal_year: int | None = None,
        fiscal_month: int | None = None,
        status: JournalEntryStatus | None = None,
    ) -> list[JournalEntryInfo]:
        stmt = select(JournalEntry).order_by(JournalEntry.entry_date, JournalEntry.entry_number)
        if fiscal_year is not None:
            stmt = stmt.where(JournalEntry.fiscal_year == fiscal_year)
        if fiscal_month is not None:
            stmt = stmt.where(JournalEntry.fiscal_month == fiscal_month)
        if status is not None:
            stmt = stmt.where(JournalEntry.status == status.value)
        return [JournalEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]

    def _line_info(self, line: JournalLine, entry: JournalEntry) -> PostedLineInfo:
        return PostedLineInfo(
            line_id=line.id,
            entry_id=entry.id,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            entry_status=enum_value(entry.status),
            account_id=line.account_id,
            side=LineSide(enum_value(line.side)),
            amount=line.amount,
            memo=line.line_memo,
        )

    def get_line(self, line_id: UUID) -> PostedLineInfo:
        row = self.session.execute(
            select(JournalLine, JournalEntry)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalLine.id == line_id)
        ).first()
        if row is None:
            raise NotFoundError("JournalLine", str(line_id))
        return self._line_info(*row)

    def posted_lines_for_account(
        self,
        account_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[PostedLineInfo]:
        """POSTED lines on one account, optionally within an entry-date window."""
        stmt = (
            select(JournalLine, JournalEntry)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalLine.account_id == account_id,
                JournalEntry.status == JournalEntryStatus.POSTED.value,
            )
            .order_by(JournalEntry.entry_date, JournalEntry.entry_number, JournalLine.line_seq)
        )
        if date_from is not None:
            stmt = stmt.where(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(JournalEntry.entry_date <= date_to)
        return [self._line_info(line, entry) for line, entry in self.session.execute(stmt)]

    # =========================================================================
    # Create
    # =========================================================================

    def _build_lines(self, lines: Sequence[LineSpec], actor: str) -> list[JournalLine]:
        built = []
        for seq, spec in enumerate(lines, start=1):
            account = self.accounts.require_postable(spec.account_id, spec.account_code)
            dimensions = {k: v for k, v in (spec.dimensions or {}).items() if v is not None}
            # By id only: setting the relationship would queue the line on
            # Account.journal_lines before its entry is in the session.
            built.append(
                JournalLine(
                    account_id=account.id,
                    side=spec.side,
                    amount=spec.amount,
                    dimensions=to_jsonable(dimensions) if dimensions else None,
                    line_memo=spec.memo,
                    line_seq=seq,
                    created_by=actor,
                )
            )
        return built

    @staticmethod
    def _validate_metadata(metadata: EntryMetadata) -> None:
        if not (metadata.description or "").strip():
            raise ValidationError("Description is required", field="description")
        if not isinstance(metadata.entry_date, date):
            raise ValidationError("entry_date must be a date", field="entry_date")

    def create(
        self,
        lines: Sequence[LineSpec],
        metadata: EntryMetadata,
        actor: str,
    ) -> JournalEntryInfo:
        """
        Create a DRAFT journal entry.

        Preconditions:
            - lines balance within tolerance and reference postable accounts.
            - SYSTEM entries additionally need an OPEN period.

        Postconditions:
            - The entry has a fresh JE-YYYYMM-NNNN number from its fiscal period.

        Raises:
            ValidationError, UnbalancedEntryError, UnknownAccountError,
            PeriodClosedError (SYSTEM entries only).
        """
        entry = self._create_draft(lines, metadata, actor)
        return JournalEntryInfo.from_model(entry)

    def _create_draft(
        self,
        lines: Sequence[LineSpec],
        metadata: EntryMetadata,
        actor: str,
    ) -> JournalEntry:
        self._validate_metadata(metadata)
        debits, credits = validate_line_set(lines)

        fiscal_year, fiscal_month = fiscal_period_for(metadata.entry_date)
        entry_type = JournalEntryType(metadata.entry_type)
        if entry_type == JournalEntryType.SYSTEM:
            self.periods.require_open(fiscal_year, fiscal_month)

        journal_lines = self._build_lines(lines, actor)

        entry = JournalEntry(
            entry_number=self.sequences.next_entry_number(fiscal_year, fiscal_month),
            entry_date=metadata.entry_date,
            fiscal_year=fiscal_year,
            fiscal_month=fiscal_month,
            description=metadata.description.strip(),
            reference=metadata.reference,
            notes=metadata.notes,
            entry_type=entry_type,
            status=JournalEntryStatus.DRAFT,
            source_service=metadata.source_service,
            source_reference_id=metadata.source_reference_id,
            reversal_of_id=metadata.reversal_of_id,
            created_by=actor,
            lines=journal_lines,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "journal_entry_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "entry_type": entry_type.value,
                "line_count": len(journal_lines),
                "total_debits": str(debits),
                "total_credits": str(credits),
                "source_service": metadata.source_service,
                "source_reference_id": metadata.source_reference_id,
            },
        )
        return entry

    def create_posted(
        self,
        lines: Sequence[LineSpec],
        metadata: EntryMetadata,
        actor: str,
    ) -> JournalEntryInfo:
        """
        Create and post in one step, for system and event-driven producers.

        No caller ever observes the entry in DRAFT: both steps happen in the
        caller's transaction.
        """
        entry = self._create_draft(lines, metadata, actor)
        self._post(entry, actor)
        return JournalEntryInfo.from_model(entry)

    # =========================================================================
    # Transitions
    # =========================================================================

    def post(self, entry_id: UUID, posted_by: str) -> JournalEntryInfo:
        """
        Transition a DRAFT entry to POSTED.

        Raises:
            AlreadyPostedError, AlreadyVoidedError, UnbalancedEntryError,
            UnknownAccountError, PeriodClosedError, NotFoundError.
        """
        entry = self._load(entry_id, for_update=True)
        self._post(entry, posted_by)
        return JournalEntryInfo.from_model(entry)

    def _post(self, entry: JournalEntry, posted_by: str) -> None:
        if entry.status == JournalEntryStatus.POSTED:
            raise AlreadyPostedError(str(entry.id))
        if entry.status == JournalEntryStatus.VOIDED:
            raise AlreadyVoidedError(str(entry.id), operation="post")

        if abs(entry.total_debits - entry.total_credits) > BALANCE_TOLERANCE:
            raise UnbalancedEntryError(
                debits=str(entry.total_debits), credits=str(entry.total_credits)
            )
        for line in entry.lines:
            self.accounts.require_postable(account_id=line.account_id)

        # Period row stays locked until the caller's transaction ends.
        self.periods.require_open(entry.fiscal_year, entry.fiscal_month)

        entry.status = JournalEntryStatus.POSTED
        entry.posted_at = self.clock.now()
        entry.posted_by = posted_by
        self.session.flush()

        self._record_posted_notification(entry)

        logger.info(
            "journal_entry_posted",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "fiscal_year": entry.fiscal_year,
                "fiscal_month": entry.fiscal_month,
                "total_amount": str(entry.total_debits),
                "actor_id": posted_by,
            },
        )

    def _record_posted_notification(self, entry: JournalEntry) -> None:
        payload = {
            "entryId": str(entry.id),
            "entryNumber": entry.entry_number,
            "entryDate": entry.entry_date.isoformat(),
            "description": entry.description,
            "totalAmount": str(entry.total_debits),
            "fiscalYear": entry.fiscal_year,
            "fiscalMonth": entry.fiscal_month,
            "accounts": [
                {
                    "accountId": str(line.account_id),
                    "accountCode": line.account.code,
                    "accountName": line.account.name,
                    "direction": enum_value(line.side),
                    "amount": str(line.amount),
                }
                for line in entry.lines
            ],
            "postedBy": entry.posted_by,
            "postedAt": entry.posted_at.isoformat(),
        }
        self.session.add(
            OutboxEvent(
                event_type=JOURNAL_ENTRY_POSTED,
                journal_entry_id=entry.id,
                payload=payload,
                occurred_at=entry.posted_at,
            )
        )
        self.session.flush()

    def void(self, entry_id: UUID, reason: str, voided_by: str) -> JournalEntryInfo:
        """
        Void a POSTED entry.  The entry and its lines stay in the ledger;
        voided entries are excluded from balances.

        Raises:
            InvalidTransitionError: Entry is DRAFT.
            AlreadyVoidedError: Entry is already VOIDED.
            ValidationError: reason shorter than VOID_REASON_MIN_LENGTH.
            PeriodClosedError: The entry's period is no longer OPEN.
        """
        entry = self._load(entry_id, for_update=True)
        if entry.status == JournalEntryStatus.VOIDED:
            raise AlreadyVoidedError(str(entry.id))
        if entry.status != JournalEntryStatus.POSTED:
            raise InvalidTransitionError(
                "JournalEntry", str(entry.id), enum_value(entry.status), "void"
            )
        reason = (reason or "").strip()
        if len(reason) < VOID_REASON_MIN_LENGTH:
            raise ValidationError(
                f"Void reason must be at least {VOID_REASON_MIN_LENGTH} characters",
                field="reason",
            )

        self.periods.require_open(entry.fiscal_year, entry.fiscal_month)

        entry.status = JournalEntryStatus.VOIDED
        entry.voided_at = self.clock.now()
        entry.voided_by = voided_by
        entry.void_reason = reason
        entry.updated_by = voided_by
        self.session.flush()

        logger.warning(
            "journal_entry_voided",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "actor_id": voided_by,
                "reason": reason,
            },
        )
        return JournalEntryInfo.from_model(entry)

    def create_reversal(
        self,
        entry_id: UUID,
        reversal_date: date,
        actor: str,
        description: str | None = None,
        source_service: str | None = None,
        source_reference_id: str | None = None,
    ) -> JournalEntryInfo:
        """
        Post a mirror-sign entry that cancels a POSTED entry.

        The original stays POSTED; the reversal references it through
        reversal_of_id.  The reversal lands in the period of reversal_date,
        which must be OPEN.

        Raises:
            InvalidTransitionError: Original not POSTED or already reversed.
            PeriodClosedError: reversal_date falls in a non-OPEN period.
        """
        original = self._load(entry_id, for_update=True)
        if original.status != JournalEntryStatus.POSTED:
            raise InvalidTransitionError(
                "JournalEntry", str(original.id), enum_value(original.status), "reverse"
            )
        if self.has_reversal(original.id):
            raise InvalidTransitionError(
                "JournalEntry", str(original.id), "reversed", "reverse"
            )

        lines = [
            LineSpec(
                side=LineSide(enum_value(line.side)).opposite(),
                amount=line.amount,
                account_id=line.account_id,
                memo=line.line_memo,
                dimensions=dict(line.dimensions) if line.dimensions else None,
            )
            for line in original.lines
        ]
        metadata = EntryMetadata(
            entry_date=reversal_date,
            description=description or f"Reversal of {original.entry_number}",
            entry_type=JournalEntryType(enum_value(original.entry_type)),
            reference=original.entry_number,
            source_service=source_service or original.source_service,
            source_reference_id=source_reference_id or original.source_reference_id,
            reversal_of_id=original.id,
        )
        reversal = self._create_draft(lines, metadata, actor)
        self._post(reversal, actor)

        logger.info(
            "journal_entry_reversed",
            extra={
                "entry_id": str(original.id),
                "reversal_entry_id": str(reversal.id),
                "reversal_date": reversal_date.isoformat(),
                "actor_id": actor,
            },
        )
        return JournalEntryInfo.from_model(reversal)

    # =========================================================================
    # Draft maintenance
    # =========================================================================

    def update_draft(
        self,
        entry_id: UUID,
        actor: str,
        lines: Sequence[LineSpec] | None = None,
        entry_date: date | None = None,
        description: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> JournalEntryInfo:
        """
        Edit a DRAFT entry.  Replacing lines re-runs full validation.  A new
        date in another fiscal period takes a number from that period.

        Raises:
            InvalidTransitionError: Entry is not DRAFT.
        """
        entry = self._load(entry_id, for_update=True)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidTransitionError(
                "JournalEntry", str(entry.id), enum_value(entry.status), "edit"
            )

        if description is not None:
            if not description.strip():
                raise ValidationError("Description is required", field="description")
            entry.description = description.strip()
        if reference is not None:
            entry.reference = reference
        if notes is not None:
            entry.notes = notes
        if entry_date is not None:
            new_period = fiscal_period_for(entry_date)
            if new_period != (entry.fiscal_year, entry.fiscal_month):
                entry.entry_number = self.sequences.next_entry_number(*new_period)
                entry.fiscal_year, entry.fiscal_month = new_period
            entry.entry_date = entry_date
        if lines is not None:
            validate_line_set(lines)
            entry.lines = self._build_lines(lines, actor)

        entry.updated_by = actor
        self.session.flush()
        logger.info("journal_entry_updated", extra={"entry_id": str(entry.id)})
        return JournalEntryInfo.from_model(entry)

    def delete_draft(self, entry_id: UUID) -> None:
        """
        Delete a DRAFT entry.  Not a ledger mutation: drafts never count.

        Raises:
            InvalidTransitionError: Entry is not DRAFT.
        """
        entry = self._load(entry_id, for_update=True)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidTransitionError(
                "JournalEntry", str(entry.id), enum_value(entry.status), "delete"
            )
        self.session.delete(entry)
        self.session.flush()
        logger.info(
            "journal_entry_deleted",
            extra={"entry_id": str(entry_id), "entry_number": entry.entry_number},
        )
