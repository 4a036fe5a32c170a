"""
Journal entry engine tests.

Covers the Draft -> Posted -> Voided state machine, balance validation,
account checks, reversals and the posting notification.
"""

import warnings
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SAWarning

from ledger_kernel.domain.dtos import EntryMetadata, LineSpec
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyVoidedError,
    InvalidTransitionError,
    NotFoundError,
    PeriodClosedError,
    UnbalancedEntryError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.models.journal import JournalEntryStatus, LineSide
from ledger_kernel.models.outbox import JOURNAL_ENTRY_POSTED, OutboxEvent
from ledger_kernel.services.journal_service import validate_line_set


def _metadata(description="Cash sale", entry_date=date(2024, 1, 10), **kwargs):
    return EntryMetadata(entry_date=entry_date, description=description, **kwargs)


def _sale_lines(amount="1000.00"):
    return [LineSpec.debit("1101", amount), LineSpec.credit("4101", amount)]


class TestLineValidation:
    """validate_line_set is pure and runs before any database work."""

    def test_balanced_lines_return_totals(self):
        debits, credits = validate_line_set([
            LineSpec.debit("1101", "1000"),
            LineSpec.credit("4101", "900"),
            LineSpec.credit("2201", "100"),
        ])
        assert debits == Decimal("1000")
        assert credits == Decimal("1000")

    def test_single_line_rejected(self):
        with pytest.raises(ValidationError):
            validate_line_set([LineSpec.debit("1101", "10")])

    def test_one_sided_rejected(self):
        with pytest.raises(ValidationError):
            validate_line_set([LineSpec.debit("1101", "10"), LineSpec.debit("1301", "10")])

    def test_imbalance_rejected(self):
        with pytest.raises(UnbalancedEntryError) as exc_info:
            validate_line_set([LineSpec.debit("1101", "100"), LineSpec.credit("4101", "99.98")])
        assert Decimal(exc_info.value.debits) == Decimal("100")

    def test_imbalance_within_tolerance_accepted(self):
        debits, credits = validate_line_set(
            [LineSpec.debit("1101", "100.00"), LineSpec.credit("4101", "99.995")]
        )
        assert debits - credits == Decimal("0.005")

    def test_unknown_dimension_rejected(self):
        with pytest.raises(ValidationError):
            validate_line_set([
                LineSpec.debit("1101", "10", dimensions={"colour": "red"}),
                LineSpec.credit("4101", "10"),
            ])

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError):
            LineSpec.debit("1101", "0")
        with pytest.raises(ValidationError):
            LineSpec.credit("1101", "-5")

    def test_line_needs_exactly_one_account_reference(self):
        with pytest.raises(ValidationError):
            LineSpec(side=LineSide.DEBIT, amount=Decimal("1"))


class TestCreateDraft:

    def test_create_returns_draft_with_number(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)

        assert entry.status == "draft"
        assert entry.entry_number == "JE-202401-0001"
        assert entry.fiscal_year == 2024
        assert entry.fiscal_month == 1
        assert [l.account_code for l in entry.lines] == ["1101", "4101"]
        assert entry.total_debits == entry.total_credits == Decimal("1000.00")

    def test_entry_numbers_increase(self, journal, ledger, test_actor_id):
        first = journal.create(_sale_lines(), _metadata(), test_actor_id)
        second = journal.create(_sale_lines(), _metadata(), test_actor_id)
        assert second.entry_number > first.entry_number

    def test_unknown_account_rejected(self, journal, ledger, test_actor_id):
        lines = [LineSpec.debit("9999", "10"), LineSpec.credit("4101", "10")]
        with pytest.raises(UnknownAccountError):
            journal.create(lines, _metadata(), test_actor_id)

    def test_inactive_account_rejected(self, journal, account_service, ledger, test_actor_id):
        account_service.deactivate_account(ledger["1301"], test_actor_id)
        lines = [LineSpec.debit("1301", "10"), LineSpec.credit("4101", "10")]
        with pytest.raises(UnknownAccountError):
            journal.create(lines, _metadata(), test_actor_id)

    def test_header_account_rejected(self, journal, account_service, ledger, test_actor_id):
        account_service.create_account(
            "1000", "Current Assets", "asset", is_detail_account=False, actor=test_actor_id
        )
        lines = [LineSpec.debit("1000", "10"), LineSpec.credit("4101", "10")]
        with pytest.raises(UnknownAccountError):
            journal.create(lines, _metadata(), test_actor_id)

    def test_blank_description_rejected(self, journal, ledger, test_actor_id):
        with pytest.raises(ValidationError):
            journal.create(_sale_lines(), _metadata(description="  "), test_actor_id)

    def test_dimensions_are_stored(self, journal, ledger, test_actor_id):
        lines = [
            LineSpec.debit("1101", "50", dimensions={"customer_id": "C-7"}),
            LineSpec.credit("4101", "50"),
        ]
        entry = journal.create(lines, _metadata(), test_actor_id)
        assert entry.lines[0].dimensions == {"customer_id": "C-7"}
        assert entry.lines[1].dimensions is None


class TestStateMachine:
    """DRAFT -> POSTED -> VOIDED."""

    def test_post_draft(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)
        posted = journal.post(entry.id, "poster")

        assert posted.status == "posted"
        assert posted.posted_by == "poster"
        assert posted.posted_at is not None

    def test_post_twice_raises_already_posted(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)
        journal.post(entry.id, test_actor_id)
        with pytest.raises(AlreadyPostedError):
            journal.post(entry.id, test_actor_id)

    def test_void_draft_is_invalid(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            journal.void(entry.id, "Entered in error", test_actor_id)
        assert exc_info.value.from_status == "draft"

    def test_void_posted(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        voided = journal.void(entry.id, "Duplicate entry", "auditor")

        assert voided.status == "voided"
        assert voided.voided_by == "auditor"
        assert voided.void_reason == "Duplicate entry"

    def test_void_twice_raises_already_voided(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        journal.void(entry.id, "Duplicate entry", test_actor_id)
        with pytest.raises(AlreadyVoidedError):
            journal.void(entry.id, "Duplicate entry", test_actor_id)

    def test_post_voided_raises_already_voided(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        journal.void(entry.id, "Duplicate entry", test_actor_id)
        with pytest.raises(AlreadyVoidedError):
            journal.post(entry.id, test_actor_id)

    def test_void_needs_reason(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        with pytest.raises(ValidationError):
            journal.void(entry.id, "no", test_actor_id)

    def test_void_in_closed_period_rejected(self, journal, period_service, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        period_service.close_period(2024, 1, test_actor_id)
        with pytest.raises(PeriodClosedError):
            journal.void(entry.id, "Duplicate entry", test_actor_id)

    def test_unknown_entry(self, journal, ledger, test_actor_id):
        with pytest.raises(NotFoundError):
            journal.post(uuid4(), test_actor_id)


class TestDraftMaintenance:

    def test_update_draft_lines(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines("10"), _metadata(), test_actor_id)
        updated = journal.update_draft(entry.id, test_actor_id, lines=_sale_lines("25"))
        assert updated.total_debits == Decimal("25")

    def test_update_draft_revalidates_balance(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines("10"), _metadata(), test_actor_id)
        with pytest.raises(UnbalancedEntryError):
            journal.update_draft(
                entry.id,
                test_actor_id,
                lines=[LineSpec.debit("1101", "10"), LineSpec.credit("4101", "11")],
            )

    def test_update_draft_moves_period(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)
        updated = journal.update_draft(entry.id, test_actor_id, entry_date=date(2024, 2, 14))
        assert (updated.fiscal_year, updated.fiscal_month) == (2024, 2)
        assert updated.entry_number == "JE-202402-0001"

    def test_date_change_within_period_keeps_number(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)
        updated = journal.update_draft(entry.id, test_actor_id, entry_date=date(2024, 1, 29))
        assert updated.entry_number == entry.entry_number

    def test_update_posted_rejected(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        with pytest.raises(InvalidTransitionError):
            journal.update_draft(entry.id, test_actor_id, description="Changed")

    def test_delete_draft(self, journal, ledger, test_actor_id):
        entry = journal.create(_sale_lines(), _metadata(), test_actor_id)
        journal.delete_draft(entry.id)
        with pytest.raises(NotFoundError):
            journal.get_entry(entry.id)

    def test_delete_posted_rejected(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        with pytest.raises(InvalidTransitionError):
            journal.delete_draft(entry.id)


class TestReversal:

    def test_reversal_mirrors_lines(self, journal, ledger, test_actor_id):
        original = journal.create_posted(
            [
                LineSpec.debit("1101", "1000"),
                LineSpec.credit("4101", "900"),
                LineSpec.credit("2201", "100"),
            ],
            _metadata(),
            test_actor_id,
        )
        reversal = journal.create_reversal(original.id, date(2024, 2, 1), test_actor_id)

        assert reversal.status == "posted"
        assert reversal.reversal_of_id == original.id
        assert reversal.reference == original.entry_number
        assert reversal.fiscal_month == 2
        assert [(l.account_code, l.side, l.amount) for l in reversal.lines] == [
            ("1101", LineSide.CREDIT, Decimal("1000")),
            ("4101", LineSide.DEBIT, Decimal("900")),
            ("2201", LineSide.DEBIT, Decimal("100")),
        ]
        assert journal.get_entry(original.id).status == "posted"
        assert journal.has_reversal(original.id)

    def test_reversal_nets_balances_to_zero(self, journal, account_service, ledger, test_actor_id):
        original = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        journal.create_reversal(original.id, date(2024, 1, 20), test_actor_id)

        assert account_service.get_balance(ledger["1101"]).balance == Decimal("0")
        assert account_service.get_balance(ledger["4101"]).balance == Decimal("0")

    def test_second_reversal_rejected(self, journal, ledger, test_actor_id):
        original = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        journal.create_reversal(original.id, date(2024, 1, 20), test_actor_id)
        with pytest.raises(InvalidTransitionError):
            journal.create_reversal(original.id, date(2024, 1, 21), test_actor_id)

    def test_reversing_draft_rejected(self, journal, ledger, test_actor_id):
        draft = journal.create(_sale_lines(), _metadata(), test_actor_id)
        with pytest.raises(InvalidTransitionError):
            journal.create_reversal(draft.id, date(2024, 1, 20), test_actor_id)

    def test_reversal_into_closed_period_rejected(self, journal, period_service, ledger, test_actor_id):
        original = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)
        with pytest.raises(PeriodClosedError):
            journal.create_reversal(original.id, date(2024, 6, 1), test_actor_id)

    def test_post_and_reverse_emit_no_flush_warnings(self, journal, ledger, test_actor_id):
        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            original = journal.create_posted(
                [
                    LineSpec.debit("1101", "500"),
                    LineSpec.credit("4101", "450"),
                    LineSpec.credit("2201", "50"),
                ],
                _metadata(),
                test_actor_id,
            )
            reversal = journal.create_reversal(original.id, date(2024, 1, 25), test_actor_id)

        assert [l.account_code for l in reversal.lines] == ["1101", "4101", "2201"]

    def test_find_by_source(self, journal, ledger, test_actor_id):
        journal.create_posted(
            _sale_lines(),
            _metadata(source_service="orders", source_reference_id="ord-1"),
            test_actor_id,
        )
        found = journal.find_by_source("orders", "ord-1")
        assert len(found) == 1
        assert journal.find_by_source("orders", "ord-2") == []


class TestBalancesAndNotifications:

    def test_balance_counts_posted_only(self, journal, account_service, ledger, test_actor_id):
        journal.create(_sale_lines("500"), _metadata(), test_actor_id)
        posted = journal.create_posted(_sale_lines("1000"), _metadata(), test_actor_id)
        voided = journal.create_posted(_sale_lines("250"), _metadata(), test_actor_id)
        journal.void(voided.id, "Entered twice", test_actor_id)

        cash = account_service.get_balance(ledger["1101"])
        revenue = account_service.get_balance(ledger["4101"])
        assert cash.debit_total == Decimal("1000")
        assert cash.balance == Decimal("1000")
        assert revenue.balance == Decimal("1000")
        assert posted.status == "posted"

    def test_balance_as_of(self, journal, account_service, ledger, test_actor_id):
        journal.create_posted(_sale_lines("100"), _metadata(entry_date=date(2024, 1, 5)), test_actor_id)
        journal.create_posted(_sale_lines("200"), _metadata(entry_date=date(2024, 2, 5)), test_actor_id)

        assert account_service.get_balance(ledger["1101"], as_of=date(2024, 1, 31)).balance == Decimal("100")
        assert account_service.get_balance(ledger["1101"]).balance == Decimal("300")

    def test_posting_writes_one_notification(self, journal, session, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines(), _metadata(), test_actor_id)

        events = session.execute(
            select(OutboxEvent).where(OutboxEvent.journal_entry_id == entry.id)
        ).scalars().all()
        assert len(events) == 1
        assert events[0].event_type == JOURNAL_ENTRY_POSTED
        payload = events[0].payload
        assert payload["entryNumber"] == entry.entry_number
        assert Decimal(payload["totalAmount"]) == Decimal("1000")
        assert {a["accountCode"] for a in payload["accounts"]} == {"1101", "4101"}

    def test_list_entries_by_status(self, journal, ledger, test_actor_id):
        journal.create(_sale_lines(), _metadata(), test_actor_id)
        journal.create_posted(_sale_lines(), _metadata(), test_actor_id)

        drafts = journal.list_entries(status=JournalEntryStatus.DRAFT)
        posted = journal.list_entries(fiscal_year=2024, fiscal_month=1, status=JournalEntryStatus.POSTED)
        assert len(drafts) == 1
        assert len(posted) == 1

    def test_posted_lines_for_account(self, journal, ledger, test_actor_id):
        entry = journal.create_posted(_sale_lines("75"), _metadata(), test_actor_id)
        lines = journal.posted_lines_for_account(ledger["1101"])

        assert len(lines) == 1
        assert lines[0].entry_id == entry.id
        assert lines[0].side == LineSide.DEBIT
        assert journal.get_line(lines[0].line_id).amount == Decimal("75")
