"""
Module: ledger_kernel.models.processed_event
Responsibility: Idempotency ledger of inbound event ingestion attempts.
Architecture position: Kernel > Models.

Invariants enforced:
    - event_id is unique (uq_processed_event_id).  The constraint is what
      stops two concurrent ingestors from both posting the same event.
    - A row with outcome SUCCESS or SKIPPED is final.  A FAILED row may be
      upgraded by a later successful attempt (attempts is incremented).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class ProcessingOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


FINAL_OUTCOMES = frozenset({ProcessingOutcome.SUCCESS, ProcessingOutcome.SKIPPED})


class ProcessedEvent(Base):
    """One row per external event id."""

    __tablename__ = "processed_events"

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_processed_event_id"),
        Index("idx_processed_event_outcome", "outcome"),
    )

    event_id: Mapped[str] = mapped_column(String(100), nullable=False)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    outcome: Mapped[ProcessingOutcome] = mapped_column(String(20), nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def is_final(self) -> bool:
        return ProcessingOutcome(self.outcome) in FINAL_OUTCOMES
