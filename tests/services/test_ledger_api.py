"""
Tests for the LedgerApi result-mapping facade.

Every call returns an ApiResult; domain errors map to 400/404/409 and
anything unexpected to a generic 500 with details only in the logs.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import EntryMetadata, LineSpec
from ledger_kernel.exceptions import (
    DuplicateEventError,
    DuplicateTransactionError,
    EventConflictError,
    HasMatchedTransactionsError,
    NotFoundError,
    PeriodAlreadyCalculatedError,
    PeriodClosedError,
    UnbalancedEntryError,
    ValidationError,
)
from ledger_services.api import INTERNAL_ERROR_MESSAGE, ApiResult, LedgerApi, status_for_error


@pytest.fixture
def api(session, ledger, ledger_config, deterministic_clock) -> LedgerApi:
    return LedgerApi(session, config=ledger_config, clock=deterministic_clock)


def _sale(amount="250.00"):
    return (
        [LineSpec.debit("1101", amount), LineSpec.credit("4101", amount)],
        EntryMetadata(entry_date=date(2024, 1, 18), description="Counter sale"),
    )


class TestStatusMapping:

    @pytest.mark.parametrize(
        "exc, status",
        [
            (NotFoundError("Account", "9999"), 404),
            (EventConflictError("evt-1"), 409),
            (DuplicateEventError("evt-1"), 409),
            (DuplicateTransactionError("abc"), 409),
            (PeriodAlreadyCalculatedError(2024, 1, "run-1", "posted"), 409),
            (PeriodClosedError(2024, 1, "closed"), 400),
            (UnbalancedEntryError("100", "90"), 400),
            (HasMatchedTransactionsError("stmt-1", 2), 400),
            (ValidationError("bad"), 400),
        ],
    )
    def test_status_for_error(self, exc, status):
        assert status_for_error(exc) == status

    def test_failure_body_has_no_data(self):
        result = ApiResult(success=False, error={"code": "NOT_FOUND", "message": "x"}, status=404)
        assert result.to_dict() == {"success": False, "error": {"code": "NOT_FOUND", "message": "x"}}


class TestLedgerApi:

    def test_success_is_json_ready(self, api, ledger):
        result = api.get_account_balance(ledger["1101"])
        assert result.success
        assert result.status == 200

        body = result.to_dict()
        assert body["data"]["account_id"] == str(ledger["1101"])
        assert Decimal(body["data"]["balance"]) == 0

    def test_missing_account_is_404(self, api):
        result = api.get_account("9999")
        assert not result.success
        assert result.status == 404
        assert result.error["code"] == NotFoundError.code

    def test_post_into_closed_period_is_400(self, api, test_actor_id):
        lines, metadata = _sale()
        draft = api.create_entry(lines, metadata, test_actor_id)
        assert draft.success
        assert api.close_period(2024, 1, test_actor_id).success

        result = api.post_entry(draft.data.id, test_actor_id)
        assert result.status == 400
        assert result.error["code"] == "PERIOD_CLOSED"
        assert api.get_entry(draft.data.id).data.status == "draft"

    def test_post_and_reverse(self, api, test_actor_id):
        lines, metadata = _sale()
        entry = api.create_entry(lines, metadata, test_actor_id).data
        assert api.post_entry(entry.id, test_actor_id).data.status == "posted"

        reversal = api.reverse_entry(entry.id, date(2024, 1, 19), test_actor_id)
        assert reversal.success
        assert reversal.data.reversal_of_id == entry.id
        assert api.reverse_entry(entry.id, date(2024, 1, 19), test_actor_id).status == 400

    def test_event_redelivery(self, api):
        event = {
            "eventId": "evt-api-1",
            "eventType": "COGSCalculated",
            "orderId": "ord-9",
            "orderDate": "2024-01-15",
            "totalCOGS": "80",
        }
        assert api.handle_event(event).to_dict()["data"]["status"] == "POSTED"
        assert api.handle_event(event).to_dict()["data"]["status"] == "DUPLICATE"

    def test_failed_events_listed(self, api):
        result = api.handle_event({"eventId": "evt-api-2", "eventType": "Unknown"})
        assert result.status == 400
        assert result.error["code"] == "UNSUPPORTED_EVENT_TYPE"
        assert [e.event_id for e in api.list_failed_events().data] == ["evt-api-2"]

    def test_second_depreciation_run_is_409(self, api, test_actor_id):
        assert api.calculate_depreciation(2024, 1, test_actor_id).success
        result = api.calculate_depreciation(2024, 1, test_actor_id)
        assert result.status == 409
        assert result.error["code"] == "PERIOD_ALREADY_CALCULATED"

    def test_csv_import(self, api, ledger, test_actor_id):
        bank = api.register_bank_account(
            ledger["1101"], "Bank Mandiri", "123-000-4567", "Operating", actor=test_actor_id
        ).data
        result = api.import_statement_csv(
            bank.id, date(2024, 1, 31), date(2024, 1, 1), date(2024, 1, 31),
            Decimal("0"), Decimal("300"),
            "date,amount,description\n2024-01-05,300,Opening deposit\n",
            test_actor_id,
        )
        assert result.success
        assert result.data.transactions_imported == 1
        assert api.validate_statement(result.data.statement_id).data.is_valid

    def test_bad_csv_is_400(self, api, ledger, test_actor_id):
        bank = api.register_bank_account(
            ledger["1101"], "Bank Mandiri", "123-000-4567", "Operating", actor=test_actor_id
        ).data
        result = api.import_statement_csv(
            bank.id, date(2024, 1, 31), date(2024, 1, 1), date(2024, 1, 31),
            Decimal("0"), Decimal("0"), "date,amount\n2024-01-05,300\n", test_actor_id,
        )
        assert result.status == 400
        assert result.error["code"] == "VALIDATION_ERROR"

    def test_unexpected_error_is_generic_500(self, api, monkeypatch, captured_logs, ledger):
        def explode(entry_id):
            raise RuntimeError("connection string with password=hunter2")

        monkeypatch.setattr(api.journal, "get_entry", explode)
        result = api.get_entry(ledger["1101"])

        assert result.status == 500
        assert result.error == {"code": "INTERNAL_ERROR", "message": INTERNAL_ERROR_MESSAGE}
        assert "hunter2" not in str(result.to_dict())
        assert any(r["message"] == "api_request_failed" for r in captured_logs())
