"""
ORM declarative bases for the ledger schema.

Every table gets a uuid4 primary key. Column types are chosen from the
Python annotation through ``type_annotation_map``:

    Decimal   -> Numeric(38, 9)     amounts are never stored as floats
    datetime  -> DateTime(tz=True)
    date      -> Date
    UUID      -> UUIDString          text, identical on SQLite and PostgreSQL
    int       -> BigInteger

Nothing here may import from models/ or services/.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """A ``uuid.UUID`` persisted as its 36-character text form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Base for rows that record who created them and who touched them last.

    ``updated_at`` and ``updated_by`` are the only columns the immutability
    listeners let change on a posted or closed record.
    """

    __abstract__ = True

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_by: Mapped[str | None] = mapped_column(String(100))
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
