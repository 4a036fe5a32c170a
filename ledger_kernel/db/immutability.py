"""
ORM-level immutability enforcement for posted ledger records.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here inspect attribute history and
raise ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() ----^

Protected entities:

    Entity        | Rule
    --------------|---------------------------------------------------------
    JournalEntry  | Once POSTED only the POSTED -> VOIDED transition may
                  | change it (status and void fields).  VOIDED is final.
                  | Only DRAFT entries may be deleted.
    JournalLine   | Frozen unless the parent entry is DRAFT.
    Account       | code, account_type and normal_balance frozen once any
                  | POSTED or VOIDED line references the account.

updated_at / updated_by are audit metadata and may always change.
"""

from sqlalchemy import event, func, select
from sqlalchemy.orm import attributes

from ledger_kernel.db.types import enum_value
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by"})
_VOID_FIELDS = frozenset({"status", "voided_at", "voided_by", "void_reason"})
_ACCOUNT_STRUCTURAL_FIELDS = ("code", "account_type", "normal_balance")

_registered = False


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_status(target) -> str:
    """Status as it was in the database before this flush."""
    history = attributes.get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


def _changed_fields(target) -> list[str]:
    from sqlalchemy import inspect

    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _check_journal_entry_update(mapper, connection, target):
    """
    Posted entries may only be voided; voided entries never change.

    Logic:
        1. Previous status DRAFT: anything goes (including the posting).
        2. Previous status POSTED: only status -> VOIDED plus void fields.
        3. Previous status VOIDED: nothing.
    """
    from ledger_kernel.models.journal import JournalEntryStatus

    previous = _previous_status(target)
    if previous == JournalEntryStatus.DRAFT:
        return

    changed = _changed_fields(target)
    if not changed:
        return

    if previous == JournalEntryStatus.POSTED and target.status == JournalEntryStatus.VOIDED:
        illegal = [name for name in changed if name not in _VOID_FIELDS]
        if not illegal:
            return
        changed = illegal

    _blocked(
        "JournalEntry",
        target.id,
        "UPDATE",
        f"Cannot modify field '{changed[0]}' on {enum_value(previous)} journal entry",
        field=changed[0],
    )


def _check_journal_entry_delete(mapper, connection, target):
    from ledger_kernel.models.journal import JournalEntryStatus

    if _previous_status(target) != JournalEntryStatus.DRAFT:
        _blocked("JournalEntry", target.id, "DELETE", "Only draft journal entries can be deleted")


def _parent_is_draft(connection, target) -> bool:
    from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus

    if target.entry is not None:
        return _previous_status(target.entry) == JournalEntryStatus.DRAFT
    status = connection.execute(
        select(JournalEntry.status).where(JournalEntry.id == target.journal_entry_id)
    ).scalar_one_or_none()
    return status is None or status == JournalEntryStatus.DRAFT.value


def _check_journal_line_update(mapper, connection, target):
    if not _parent_is_draft(connection, target):
        _blocked(
            "JournalLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after the entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if not _parent_is_draft(connection, target):
        _blocked(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after the entry is posted",
        )


def _account_has_posted_lines(connection, account_id) -> bool:
    from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine

    count = connection.execute(
        select(func.count(JournalLine.id))
        .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
        .where(
            JournalLine.account_id == account_id,
            JournalEntry.status != JournalEntryStatus.DRAFT.value,
        )
    ).scalar_one()
    return count > 0


def _check_account_structural_update(mapper, connection, target):
    changed = [
        name
        for name in _ACCOUNT_STRUCTURAL_FIELDS
        if attributes.get_history(target, name).has_changes()
    ]
    if changed and _account_has_posted_lines(connection, target.id):
        _blocked(
            "Account",
            target.id,
            "UPDATE",
            f"Cannot change '{changed[0]}' on an account referenced by posted lines",
            field=changed[0],
        )


def register_immutability_listeners() -> None:
    """
    Register all immutability listeners (idempotent).

    Called when ledger_kernel.models is imported so every session that
    touches journal rows is covered.
    """
    global _registered
    if _registered:
        return

    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    event.listen(JournalEntry, "before_update", _check_journal_entry_update)
    event.listen(JournalEntry, "before_delete", _check_journal_entry_delete)
    event.listen(JournalLine, "before_update", _check_journal_line_update)
    event.listen(JournalLine, "before_delete", _check_journal_line_delete)
    event.listen(Account, "before_update", _check_account_structural_update)
    _registered = True
