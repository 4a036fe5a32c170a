"""
AccountService -- the account directory.

Responsibility:
    Chart-of-accounts maintenance and the lookups every posting path relies
    on: existence, detail/header classification and activity.  Also computes
    posted-only account balances.

Invariants enforced:
    - Account.code unique (checked here, backed by uq_account_code).
    - Only active detail accounts may be posted to (require_postable).
    - System accounts cannot be deleted, deactivated, or re-coded.
    - Accounts referenced by journal lines or with child accounts cannot be
      deleted.
    - Balances include POSTED entries only.  Voided entries stay in the
      ledger for audit but never contribute.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import to_decimal
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import AccountBalance, AccountInfo
from ledger_kernel.exceptions import (
    DuplicateAccountCodeError,
    InvalidTransitionError,
    NotFoundError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    Account,
    AccountType,
    NormalBalance,
    default_normal_balance,
)
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine, LineSide
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account")


class AccountService(BaseService):
    """
    Chart of accounts service.

    Contract:
        Lookups return AccountInfo snapshots; require_* helpers return the
        ORM row for use inside other kernel services.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get(self, account_id: UUID) -> Account | None:
        return self.session.get(Account, account_id)

    def _get_by_code(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def get_by_id(self, account_id: UUID) -> AccountInfo | None:
        account = self._get(account_id)
        return AccountInfo.from_model(account) if account is not None else None

    def get_by_code(self, code: str) -> AccountInfo | None:
        account = self._get_by_code(code)
        return AccountInfo.from_model(account) if account is not None else None

    def list_accounts(self, active_only: bool = False) -> list[AccountInfo]:
        stmt = select(Account).order_by(Account.code)
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        return [AccountInfo.from_model(a) for a in self.session.execute(stmt).scalars()]

    def require_account(self, account_id: UUID) -> Account:
        account = self._get(account_id)
        if account is None:
            raise NotFoundError("Account", str(account_id))
        return account

    def require_postable(
        self, account_id: UUID | None = None, account_code: str | None = None
    ) -> Account:
        """
        Resolve an account that may receive journal lines.

        Raises:
            UnknownAccountError: Missing, inactive, or header account.
        """
        if account_id is not None:
            account = self._get(account_id)
            ref = str(account_id)
        else:
            account = self._get_by_code(account_code)
            ref = account_code

        if account is None:
            raise UnknownAccountError(ref)
        if not account.is_detail_account:
            raise UnknownAccountError(ref, reason=f"{account.code} is a header account")
        if not account.is_active:
            raise UnknownAccountError(ref, reason=f"{account.code} is inactive")
        return account

    # =========================================================================
    # Maintenance
    # =========================================================================

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        normal_balance: NormalBalance | str | None = None,
        is_detail_account: bool = True,
        is_system_account: bool = False,
        parent_code: str | None = None,
        description: str | None = None,
        actor: str = "system",
    ) -> AccountInfo:
        """
        Add an account to the chart.

        normal_balance defaults from the account type.

        Raises:
            ValidationError: Blank code/name, unknown type, or missing parent.
            DuplicateAccountCodeError: Code already in use.
        """
        code = (code or "").strip()
        name = (name or "").strip()
        if not code:
            raise ValidationError("Account code is required", field="code")
        if not name:
            raise ValidationError("Account name is required", field="name")
        if len(name) > 255:
            raise ValidationError("Account name must not exceed 255 characters", field="name")
        try:
            account_type = AccountType(account_type)
            normal_balance = (
                NormalBalance(normal_balance)
                if normal_balance is not None
                else default_normal_balance(account_type)
            )
        except ValueError as exc:
            raise ValidationError(str(exc), field="account_type") from exc

        if self._get_by_code(code) is not None:
            raise DuplicateAccountCodeError(code)

        parent_id = None
        if parent_code is not None:
            parent = self._get_by_code(parent_code)
            if parent is None:
                raise ValidationError(f"Parent account {parent_code} not found", field="parent_code")
            parent_id = parent.id

        account = Account(
            code=code,
            name=name,
            description=description,
            account_type=account_type,
            normal_balance=normal_balance,
            is_detail_account=is_detail_account,
            is_system_account=is_system_account,
            is_active=True,
            parent_id=parent_id,
            created_by=actor,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={"account_code": code, "account_type": account_type.value},
        )
        return AccountInfo.from_model(account)

    def update_account(
        self,
        account_id: UUID,
        name: str | None = None,
        code: str | None = None,
        description: str | None = None,
        actor: str = "system",
    ) -> AccountInfo:
        account = self.require_account(account_id)

        if code is not None and code != account.code:
            if account.is_system_account:
                raise ValidationError("Cannot change code of system account", field="code")
            if self._get_by_code(code) is not None:
                raise DuplicateAccountCodeError(code)
            account.code = code
        if name is not None:
            if not name.strip():
                raise ValidationError("Account name is required", field="name")
            account.name = name.strip()
        if description is not None:
            account.description = description
        account.updated_by = actor
        self.session.flush()
        return AccountInfo.from_model(account)

    def deactivate_account(self, account_id: UUID, actor: str = "system") -> AccountInfo:
        account = self.require_account(account_id)
        if account.is_system_account:
            raise InvalidTransitionError("Account", account.code, "system", "deactivate")
        account.is_active = False
        account.updated_by = actor
        self.session.flush()
        logger.info("account_deactivated", extra={"account_code": account.code})
        return AccountInfo.from_model(account)

    def activate_account(self, account_id: UUID, actor: str = "system") -> AccountInfo:
        account = self.require_account(account_id)
        account.is_active = True
        account.updated_by = actor
        self.session.flush()
        return AccountInfo.from_model(account)

    def delete_account(self, account_id: UUID) -> None:
        """
        Delete an unused, non-system account.

        Raises:
            InvalidTransitionError: System account, referenced by journal
                lines, or parent of other accounts.
        """
        account = self.require_account(account_id)
        if account.is_system_account:
            raise InvalidTransitionError("Account", account.code, "system", "delete")

        line_count = self.session.execute(
            select(func.count(JournalLine.id)).where(JournalLine.account_id == account.id)
        ).scalar_one()
        if line_count:
            raise InvalidTransitionError("Account", account.code, "referenced", "delete")

        child_count = self.session.execute(
            select(func.count(Account.id)).where(Account.parent_id == account.id)
        ).scalar_one()
        if child_count:
            raise InvalidTransitionError("Account", account.code, "has children", "delete")

        self.session.delete(account)
        self.session.flush()
        logger.info("account_deleted", extra={"account_code": account.code})

    # =========================================================================
    # Balances
    # =========================================================================

    def get_balance(self, account_id: UUID, as_of: date | None = None) -> AccountBalance:
        """
        Posted-only balance of an account, in its normal direction.

        Args:
            account_id: Account to total.
            as_of: Include entries dated on or before this date (all if None).
        """
        account = self.require_account(account_id)

        debit_sum = func.coalesce(
            func.sum(case((JournalLine.side == LineSide.DEBIT.value, JournalLine.amount), else_=0)),
            0,
        )
        credit_sum = func.coalesce(
            func.sum(case((JournalLine.side == LineSide.CREDIT.value, JournalLine.amount), else_=0)),
            0,
        )
        stmt = (
            select(debit_sum, credit_sum)
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalLine.account_id == account.id,
                JournalEntry.status == JournalEntryStatus.POSTED.value,
            )
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.entry_date <= as_of)

        debits, credits = self.session.execute(stmt).one()
        debits = to_decimal(debits)
        credits = to_decimal(credits)
        balance = debits - credits if account.is_debit_normal else credits - debits

        return AccountBalance(
            account_id=account.id,
            account_code=account.code,
            debit_total=debits,
            credit_total=credits,
            balance=balance,
            as_of=as_of,
        )
