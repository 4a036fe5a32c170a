"""
Idempotent event ingestion tests.

Verifies:
- Each event id has at most one ledger effect
- Failures are recorded as FAILED and a later retry can succeed
- Posting rules for orders, cancellations, COGS and inventory adjustments
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from ledger_config import AccountMapping
from ledger_kernel.exceptions import (
    EventConflictError,
    MissingAccountConfigurationError,
    PeriodClosedError,
    UnsupportedEventTypeError,
    ValidationError,
)
from ledger_kernel.models.journal import LineSide
from ledger_kernel.models.processed_event import ProcessedEvent, ProcessingOutcome
from ledger_modules.events import (
    EventIngestionService,
    InboundEvent,
    IngestionStatus,
    OrderCompletedRule,
    PostingContext,
)


def order_completed(event_id="evt-1", order_id="ord-1", **overrides):
    event = {
        "eventId": event_id,
        "eventType": "OrderCompleted",
        "orderId": order_id,
        "orderNumber": f"SO-{order_id}",
        "orderDate": "2024-01-15",
        "grandTotal": "1000",
        "subtotal": "900",
        "totalDiscount": "0",
        "totalTax": "100",
    }
    event.update(overrides)
    return event


def _lines(entry):
    return [(l.account_code, l.side, l.amount) for l in entry.lines]


class TestIdempotency:
    """Same event id, one ledger effect."""

    def test_duplicate_delivery_posts_once(self, event_service, journal):
        first = event_service.handle(order_completed())
        second = event_service.handle(order_completed())

        assert first.status == IngestionStatus.POSTED
        assert second.status == IngestionStatus.DUPLICATE
        assert second.journal_entry_id == first.journal_entry_id

        entries = journal.find_by_source("order-service", "ord-1")
        assert len(entries) == 1
        assert _lines(entries[0]) == [
            ("1101", LineSide.DEBIT, Decimal("1000")),
            ("4101", LineSide.CREDIT, Decimal("900")),
            ("2201", LineSide.CREDIT, Decimal("100")),
        ]

    def test_processed_event_recorded(self, event_service):
        result = event_service.handle(order_completed())
        record = event_service.get_processed_event("evt-1")

        assert record.outcome == "success"
        assert record.attempts == 1
        assert record.journal_entry_id == result.journal_entry_id
        assert record.error_message is None

    def test_inbound_event_object_accepted(self, event_service):
        raw = order_completed()
        event = InboundEvent(
            event_id=raw.pop("eventId"),
            event_type=raw.pop("eventType"),
            payload=raw,
        )
        assert event_service.handle(event).is_posted

    def test_distinct_ids_post_separately(self, event_service, journal):
        event_service.handle(order_completed("evt-1", "ord-1"))
        event_service.handle(order_completed("evt-2", "ord-2"))
        assert len(journal.find_by_source("order-service", "ord-2")) == 1

    def test_missing_event_id_rejected(self, event_service):
        with pytest.raises(ValidationError):
            event_service.handle(order_completed(eventId=""))

    def test_payload_mismatch_on_redelivery_is_logged(self, event_service, captured_logs):
        event_service.handle(order_completed())
        result = event_service.handle(order_completed(grandTotal="2000", subtotal="1900"))

        assert result.status == IngestionStatus.DUPLICATE
        mismatches = [r for r in captured_logs() if r["message"] == "event_payload_mismatch"]
        assert len(mismatches) == 1
        assert mismatches[0]["event_id"] == "evt-1"

    def test_redelivery_short_circuits_with_outcome(self, event_service, captured_logs):
        first = event_service.handle(order_completed())
        second = event_service.handle(order_completed())

        assert second.journal_entry_id == first.journal_entry_id
        assert second.message == "Event already processed (success)"
        duplicates = [r for r in captured_logs() if r["message"] == "event_duplicate"]
        assert [r["outcome"] for r in duplicates] == ["success"]


    def test_losing_concurrent_claim_conflicts(
        self, event_service, session, journal, deterministic_clock, monkeypatch
    ):
        session.add(
            ProcessedEvent(
                event_id="evt-race",
                event_type="OrderCompleted",
                outcome=ProcessingOutcome.SUCCESS,
                attempts=1,
                processed_at=deterministic_clock.now(),
            )
        )
        session.commit()

        # The other delivery commits its claim after this one found no row.
        monkeypatch.setattr(event_service, "_lock_record", lambda event_id: None)
        with pytest.raises(EventConflictError):
            event_service.handle(order_completed("evt-race", "ord-race"))
        monkeypatch.undo()

        assert journal.find_by_source("order-service", "ord-race") == []
        record = event_service.get_processed_event("evt-race")
        assert record.outcome == "success"
        assert record.attempts == 1
        assert event_service.list_failed_events() == []


class TestFailureAndRetry:

    def test_closed_period_failure_then_retry(self, event_service, period_service, session, test_actor_id):
        period_service.close_period(2024, 1, test_actor_id)
        session.commit()

        with pytest.raises(PeriodClosedError):
            event_service.handle(order_completed())

        failed = event_service.get_processed_event("evt-1")
        assert failed.outcome == "failed"
        assert failed.attempts == 1
        assert "not open" in failed.error_message
        assert [f.event_id for f in event_service.list_failed_events()] == ["evt-1"]

        period_service.reopen_period(2024, 1, "Late order feed replayed", test_actor_id)
        session.commit()

        result = event_service.handle(order_completed())
        assert result.status == IngestionStatus.POSTED

        record = event_service.get_processed_event("evt-1")
        assert record.outcome == "success"
        assert record.attempts == 2
        assert event_service.list_failed_events() == []

    def test_failure_leaves_no_entry(self, event_service, period_service, journal, session, test_actor_id):
        period_service.close_period(2024, 1, test_actor_id)
        session.commit()
        with pytest.raises(PeriodClosedError):
            event_service.handle(order_completed())
        assert journal.find_by_source("order-service", "ord-1", status=None) == []

    def test_unset_account_role(self, session, ledger, ledger_config, deterministic_clock, journal):
        config = replace(ledger_config, account_mapping=AccountMapping(tax_payable=None))
        service = EventIngestionService(session, config=config, clock=deterministic_clock)

        with pytest.raises(MissingAccountConfigurationError) as exc_info:
            service.handle(order_completed())
        assert exc_info.value.role == "tax_payable"
        assert service.get_processed_event("evt-1").outcome == "failed"
        assert journal.find_by_source("order-service", "ord-1", status=None) == []

    def test_account_missing_from_chart(self, session, ledger, ledger_config, deterministic_clock):
        config = replace(ledger_config, account_mapping=AccountMapping(cash="1999"))
        service = EventIngestionService(session, config=config, clock=deterministic_clock)

        with pytest.raises(MissingAccountConfigurationError) as exc_info:
            service.handle(order_completed())
        assert exc_info.value.account_code == "1999"

    def test_unused_role_may_stay_unset(self, session, ledger, ledger_config, deterministic_clock):
        config = replace(ledger_config, account_mapping=AccountMapping(sales_discount=None))
        service = EventIngestionService(session, config=config, clock=deterministic_clock)
        assert service.handle(order_completed()).is_posted

    def test_unsupported_event_type(self, event_service):
        with pytest.raises(UnsupportedEventTypeError):
            event_service.handle({"eventId": "evt-9", "eventType": "CustomerCreated"})
        assert event_service.get_processed_event("evt-9").outcome == "failed"

    def test_failure_is_logged(self, event_service, captured_logs):
        with pytest.raises(UnsupportedEventTypeError):
            event_service.handle({"eventId": "evt-9", "eventType": "CustomerCreated"})
        failures = [r for r in captured_logs() if r["message"] == "event_ingestion_failed"]
        assert failures[-1]["error_code"] == "UNSUPPORTED_EVENT_TYPE"
        assert failures[-1]["event_id"] == "evt-9"


class TestSalesRules:

    def test_discount_line(self, event_service, journal):
        event_service.handle(order_completed(
            grandTotal="950", subtotal="1000", totalDiscount="150", totalTax="100",
        ))
        entry = journal.find_by_source("order-service", "ord-1")[0]
        assert _lines(entry) == [
            ("1101", LineSide.DEBIT, Decimal("950")),
            ("4101", LineSide.CREDIT, Decimal("1000")),
            ("4201", LineSide.DEBIT, Decimal("150")),
            ("2201", LineSide.CREDIT, Decimal("100")),
        ]
        assert entry.entry_type == "system"
        assert entry.reference == "SO-ord-1"

    def test_order_dimensions_carried(self, event_service, journal):
        event_service.handle(order_completed(customerId="C-1", salesChannel="web"))
        entry = journal.find_by_source("order-service", "ord-1")[0]
        assert entry.lines[0].dimensions == {"customer_id": "C-1", "sales_channel": "web"}

    def test_cancellation_reverses_order(self, event_service, journal, account_service, ledger):
        posted = event_service.handle(order_completed())
        result = event_service.handle({
            "eventId": "evt-2",
            "eventType": "OrderCancelled",
            "orderId": "ord-1",
            "orderNumber": "SO-ord-1",
            "cancelledAt": "2024-01-20T09:30:00Z",
            "cancelReason": "customer request",
        })

        assert result.status == IngestionStatus.POSTED
        reversal = journal.get_entry(result.journal_entry_id)
        assert reversal.reversal_of_id == posted.journal_entry_id
        assert reversal.entry_date == date(2024, 1, 20)
        assert journal.get_entry(posted.journal_entry_id).status == "posted"
        assert account_service.get_balance(ledger["1101"]).balance == Decimal("0")
        assert account_service.get_balance(ledger["2201"]).balance == Decimal("0")

    def test_cancellation_with_explicit_entry_id(self, event_service, journal):
        posted = event_service.handle(order_completed())
        result = event_service.handle({
            "eventId": "evt-2",
            "eventType": "OrderCancelled",
            "orderId": "ord-1",
            "cancelledAt": "2024-01-20",
            "originalJournalEntryId": str(posted.journal_entry_id),
        })
        assert journal.get_entry(result.journal_entry_id).reversal_of_id == posted.journal_entry_id

    def test_second_cancellation_skipped(self, event_service):
        event_service.handle(order_completed())
        cancel = {
            "eventType": "OrderCancelled",
            "orderId": "ord-1",
            "cancelledAt": "2024-01-20",
        }
        event_service.handle({"eventId": "evt-2", **cancel})
        result = event_service.handle({"eventId": "evt-3", **cancel})
        assert result.status == IngestionStatus.SKIPPED

    def test_cancellation_of_unknown_order_skipped(self, event_service):
        result = event_service.handle({
            "eventId": "evt-2",
            "eventType": "OrderCancelled",
            "orderId": "ord-404",
            "cancelledAt": "2024-01-20",
        })
        assert result.status == IngestionStatus.SKIPPED
        assert result.journal_entry_id is None
        assert event_service.get_processed_event("evt-2").outcome == "skipped"


class TestInventoryRules:

    def test_cogs(self, event_service, journal):
        event_service.handle({
            "eventId": "evt-c1",
            "eventType": "COGSCalculated",
            "orderId": "ord-1",
            "orderDate": "2024-01-15",
            "totalCOGS": "400",
        })
        entry = journal.find_by_source("inventory-service", "cogs-ord-1")[0]
        assert _lines(entry) == [
            ("5101", LineSide.DEBIT, Decimal("400")),
            ("1301", LineSide.CREDIT, Decimal("400")),
        ]

    def test_zero_cogs_skipped(self, event_service):
        result = event_service.handle({
            "eventId": "evt-c1",
            "eventType": "COGSCalculated",
            "orderId": "ord-1",
            "orderDate": "2024-01-15",
            "totalCOGS": "0",
        })
        assert result.status == IngestionStatus.SKIPPED

    @pytest.mark.parametrize(
        "adjustment_type, debit_code, credit_code",
        [
            ("INCREASE", "1301", "4901"),
            ("DECREASE", "5901", "1301"),
            ("WRITE_OFF", "5902", "1301"),
            ("RECOUNT", "5903", "1301"),
        ],
    )
    def test_adjustment_accounts(self, event_service, journal, adjustment_type, debit_code, credit_code):
        event_service.handle({
            "eventId": f"evt-{adjustment_type}",
            "eventType": "InventoryAdjusted",
            "adjustmentId": "adj-1",
            "adjustmentType": adjustment_type,
            "adjustmentDate": "2024-02-03",
            "totalValue": "-75.50" if adjustment_type != "INCREASE" else "75.50",
        })
        entry = journal.find_by_source("inventory-service", "adj-1")[0]
        assert _lines(entry) == [
            (debit_code, LineSide.DEBIT, Decimal("75.50")),
            (credit_code, LineSide.CREDIT, Decimal("75.50")),
        ]
        assert entry.fiscal_month == 2

    def test_transfer_skipped_then_duplicate(self, event_service):
        transfer = {
            "eventId": "evt-t1",
            "eventType": "InventoryAdjusted",
            "adjustmentId": "adj-2",
            "adjustmentType": "TRANSFER",
            "adjustmentDate": "2024-02-03",
            "totalValue": "500",
        }
        assert event_service.handle(transfer).status == IngestionStatus.SKIPPED
        assert event_service.handle(transfer).status == IngestionStatus.DUPLICATE

    def test_unknown_adjustment_type(self, event_service):
        with pytest.raises(ValidationError):
            event_service.handle({
                "eventId": "evt-u1",
                "eventType": "InventoryAdjusted",
                "adjustmentId": "adj-3",
                "adjustmentType": "MELTED",
                "adjustmentDate": "2024-02-03",
                "totalValue": "10",
            })
        assert event_service.get_processed_event("evt-u1").outcome == "failed"


class _MappingContext:
    """In-memory PostingContext for rule unit tests."""

    def __init__(self, codes):
        self._codes = codes

    def account_code(self, role):
        if role not in self._codes:
            raise MissingAccountConfigurationError(role, None)
        return self._codes[role]

    def find_posted_entries(self, source_service, source_reference_id):
        return []

    def get_entry(self, entry_id):
        return None

    def has_reversal(self, entry_id):
        return False


class TestOrderCompletedRule:
    """The rule is pure: no session needed."""

    def test_context_satisfies_protocol(self):
        assert isinstance(_MappingContext({}), PostingContext)

    def test_plan_is_balanced(self):
        ctx = _MappingContext({"cash": "1101", "revenue": "4101", "tax_payable": "2201"})
        plan = OrderCompletedRule().build(InboundEvent.from_dict(order_completed()), ctx)

        debits = sum(l.amount for l in plan.lines if l.side == LineSide.DEBIT)
        credits = sum(l.amount for l in plan.lines if l.side == LineSide.CREDIT)
        assert debits == credits == Decimal("1000")
        assert plan.metadata.source_reference_id == "ord-1"
        assert plan.metadata.entry_date == date(2024, 1, 15)

    def test_roles_resolved_before_building(self):
        ctx = _MappingContext({"cash": "1101", "revenue": "4101"})
        with pytest.raises(MissingAccountConfigurationError):
            OrderCompletedRule().build(InboundEvent.from_dict(order_completed()), ctx)

    def test_missing_amount_rejected(self):
        ctx = _MappingContext({"cash": "1101", "revenue": "4101", "tax_payable": "2201"})
        event = order_completed()
        del event["grandTotal"]
        with pytest.raises(ValidationError):
            OrderCompletedRule().build(InboundEvent.from_dict(event), ctx)

    def test_wrong_event_type_is_validation_error(self):
        ctx = _MappingContext({"cash": "1101", "revenue": "4101", "tax_payable": "2201"})
        event = InboundEvent.from_dict(order_completed(eventType="OrderCancelled"))
        with pytest.raises(ValidationError) as exc_info:
            OrderCompletedRule().build(event, ctx)
        assert exc_info.value.field == "eventType"
