"""
Module: ledger_kernel.models.outbox
Responsibility: Persisted JournalEntryPosted notifications for downstream
    read models.  Transport is someone else's concern; rows are written in
    the same transaction that posts the entry.
Architecture position: Kernel > Models.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString

JOURNAL_ENTRY_POSTED = "JournalEntryPosted"


class OutboxEvent(Base):
    """
    Append-only notification record.

    published_at stays NULL until a relay hands the row to the transport.
    """

    __tablename__ = "outbox_events"

    __table_args__ = (
        Index("idx_outbox_unpublished", "published_at"),
        Index("idx_outbox_entry", "journal_entry_id"),
    )

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
