"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts, the target of
    every journal line.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - code is globally unique (uq_account_code).
    - Only detail accounts (is_detail_account) may be posted to.
    - code, account_type and normal_balance are frozen once a posted line
      references the account (db/immutability.py).
    - System accounts cannot be deleted or deactivated (AccountService).
"""

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.journal import JournalLine


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    COGS = "cogs"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET, AccountType.COGS, AccountType.EXPENSE})


def default_normal_balance(account_type: AccountType | str) -> NormalBalance:
    """Normal balance implied by the account type."""
    if AccountType(account_type) in DEBIT_NORMAL_TYPES:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Contract:
        Header accounts (is_detail_account=False) group detail accounts via
        parent_id and never receive journal lines.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_parent", "parent_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_detail_account: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_system_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    journal_lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_postable(self) -> bool:
        """Detail accounts that are active accept journal lines."""
        return bool(self.is_detail_account and self.is_active)
