"""
Funds-transfer tracking: requests, batches, the event log and responses.

Covers:
- Request and batch creation rules
- Every append keeps request.state equal to the fold of its events
- A batch's state follows its members
- Digesting a response file produces one collation with per-type counts
- Divergence between stored state and the log is detected, not repaired
"""

from decimal import Decimal

import pytest

from domos_kernel.domain.funds_transfer import TransferResponse
from domos_kernel.exceptions import (
    ConflictError,
    DuplicateRequestError,
    InvalidTransitionError,
    ValidationError,
)
from domos_kernel.selectors.funds_transfer_selector import FundsTransferSelector


@pytest.fixture
def tracker(session):
    return FundsTransferSelector(session)


@pytest.fixture
def make_request(funds_transfer, credit_system):
    def _make(guid, amount="250.00", currency="USD", direction="withdrawal"):
        return funds_transfer.create_request(
            guid, credit_system.id, Decimal(amount), currency, direction, f"tx-{guid}"
        )

    return _make


def _walk(service, request, *events):
    for event in events:
        service.append_event(request.id, event)


class TestCreateRequest:

    def test_new_request_is_pending(self, make_request, tracker):
        request = make_request("R1")
        view = tracker.request_by_guid("R1")
        assert view.request_id == request.id
        assert view.state == "pending"
        assert view.batch_id is None

    def test_grouped_request(self, funds_transfer, credit_system):
        group = funds_transfer.create_request_group(
            "Jane Payee", "enc:acct", encrypted_transit_number="enc:transit"
        )
        request = funds_transfer.create_request(
            "R1", credit_system.id, Decimal("10"), "USD", "deposit", "tx-1", group_id=group.id
        )
        assert request.group.encrypted_account_number == "enc:acct"

    def test_duplicate_guid(self, make_request):
        make_request("R1")
        with pytest.raises(DuplicateRequestError) as exc_info:
            make_request("R1")
        assert exc_info.value.guid == "R1"

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, make_request, amount):
        with pytest.raises(ValidationError) as exc_info:
            make_request("R1", amount=amount)
        assert exc_info.value.field == "amount"

    def test_unknown_direction(self, make_request):
        with pytest.raises(ValidationError) as exc_info:
            make_request("R1", direction="sideways")
        assert exc_info.value.field == "direction"


class TestEventLog:

    def test_settled_path(self, funds_transfer, tracker, make_request):
        request = make_request("R1")
        _walk(funds_transfer, request, "submitted", "accepted", "settled")

        assert request.state == "completed"
        assert [e.sequence for e in tracker.events_for(request.id)] == [1, 2, 3]
        assert tracker.verify_request_state(request.id).consistent

    def test_rejected_path(self, funds_transfer, make_request):
        request = make_request("R1")
        _walk(funds_transfer, request, "submitted", "rejected")
        assert request.state == "failed"

    def test_inadmissible_event_leaves_log_untouched(self, funds_transfer, tracker, make_request):
        request = make_request("R1")
        funds_transfer.append_event(request.id, "submitted")
        with pytest.raises(InvalidTransitionError):
            funds_transfer.append_event(request.id, "settled")
        assert request.state == "submitted"
        assert len(tracker.events_for(request.id)) == 1

    def test_terminal_request_accepts_nothing(self, funds_transfer, make_request):
        request = make_request("R1")
        _walk(funds_transfer, request, "submitted", "rejected")
        with pytest.raises(InvalidTransitionError):
            funds_transfer.append_event(request.id, "submitted")

    def test_event_details_are_kept(self, funds_transfer, tracker, make_request):
        request = make_request("R1")
        funds_transfer.append_event(request.id, "submitted", trace_code="T-1", comments="sent")
        (event,) = tracker.events_for(request.id)
        assert (event.event_type, event.trace_code, event.comments) == ("submitted", "T-1", "sent")

    def test_event_log_carries_trace_code(self, funds_transfer, make_request, captured_logs):
        request = make_request("R1")
        funds_transfer.append_event(request.id, "submitted", trace_code="T-9")
        (record,) = [r for r in captured_logs() if r["message"] == "funds_transfer_event_appended"]
        assert record["trace_id"] == "T-9"
        assert record["request_id"] == str(request.id)

    def test_divergence_is_detected(self, funds_transfer, tracker, session, make_request):
        request = make_request("R1")
        funds_transfer.append_event(request.id, "submitted")
        request.state = "completed"
        session.flush()

        check = tracker.verify_request_state(request.id)
        assert not check.consistent
        assert check.folded_state == "submitted"
        with pytest.raises(ConflictError):
            funds_transfer.append_event(request.id, "accepted")

    def test_requests_by_state(self, funds_transfer, tracker, make_request):
        first = make_request("R1")
        make_request("R2")
        funds_transfer.append_event(first.id, "submitted")
        assert [r.guid for r in tracker.requests_by_state("pending")] == ["R2"]
        assert [r.guid for r in tracker.requests_by_state("submitted")] == ["R1"]


class TestBatches:

    def test_batch_state_follows_members(self, funds_transfer, tracker, make_request, credit_system):
        first, second = make_request("R1"), make_request("R2")
        batch = funds_transfer.create_batch("B1", credit_system.id, [first.id, second.id])
        assert batch.state == "pending"

        funds_transfer.append_event(first.id, "submitted")
        assert batch.state == "in_progress"

        _walk(funds_transfer, first, "accepted", "settled")
        funds_transfer.append_event(second.id, "failed")
        assert batch.state == "completed"

        summary = tracker.batch_summary(batch.id)
        assert summary.state == summary.derived_state == "completed"
        assert summary.requests_by_state == {"completed": 1, "failed": 1}
        assert summary.totals_by_currency == {"USD": Decimal("500.00")}

    def test_only_pending_requests(self, funds_transfer, make_request, credit_system):
        request = make_request("R1")
        funds_transfer.append_event(request.id, "submitted")
        with pytest.raises(ValidationError, match="only pending"):
            funds_transfer.create_batch("B1", credit_system.id, [request.id])

    def test_request_in_one_batch_only(self, funds_transfer, make_request, credit_system):
        request = make_request("R1")
        funds_transfer.create_batch("B1", credit_system.id, [request.id])
        with pytest.raises(ValidationError, match="already belongs"):
            funds_transfer.create_batch("B2", credit_system.id, [request.id])

    def test_same_credit_system(self, funds_transfer, ledger, make_request):
        request = make_request("R1")
        wire = ledger.create_credit_system("wire", "Wire transfer")
        with pytest.raises(ValidationError, match="different credit system"):
            funds_transfer.create_batch("B1", wire.id, [request.id])

    def test_duplicate_batch_guid(self, funds_transfer, make_request, credit_system):
        funds_transfer.create_batch("B1", credit_system.id, [make_request("R1").id])
        with pytest.raises(DuplicateRequestError):
            funds_transfer.create_batch("B1", credit_system.id, [make_request("R2").id])

    def test_batch_messages(self, funds_transfer, make_request, credit_system):
        batch = funds_transfer.create_batch("B1", credit_system.id, [make_request("R1").id])
        message = funds_transfer.record_batch_message(batch.id, "submission", comments="file 1")
        assert message.batch_id == batch.id
        assert len(message.guid) == 32


class TestDigestResponse:

    def test_collation_summarizes_events(self, funds_transfer, tracker, make_request, credit_system):
        requests = [make_request(f"R{i}") for i in range(1, 4)]
        batch = funds_transfer.create_batch("B1", credit_system.id, [r.id for r in requests])
        for request in requests:
            funds_transfer.append_event(request.id, "submitted")

        collation = funds_transfer.digest_batch_response(
            batch.id,
            [
                TransferResponse("R1", "accepted", trace_code="T1"),
                TransferResponse("R2", "accepted", trace_code="T2"),
                TransferResponse("R3", "rejected", response_code="R01"),
            ],
        )

        assert collation.event_count == 3
        assert collation.summary == {"accepted": 2, "rejected": 1}
        assert [c.id for c in tracker.collations_for_batch(batch.id)] == [collation.id]
        (last,) = tracker.events_for(requests[2].id)[-1:]
        assert last.collation_id == collation.id
        assert last.response_code == "R01"
        assert tracker.request_by_guid("R3").state == "failed"

    def test_foreign_request_is_refused(self, funds_transfer, tracker, make_request, credit_system):
        batch = funds_transfer.create_batch("B1", credit_system.id, [make_request("R1").id])
        make_request("R2")
        with pytest.raises(ValidationError, match="not part of batch"):
            funds_transfer.digest_batch_response(batch.id, [TransferResponse("R2", "submitted")])
        assert tracker.collations_for_batch(batch.id) == []

    def test_unknown_event_type(self, funds_transfer, make_request, credit_system):
        batch = funds_transfer.create_batch("B1", credit_system.id, [make_request("R1").id])
        with pytest.raises(InvalidTransitionError):
            funds_transfer.digest_batch_response(batch.id, [TransferResponse("R1", "bounced")])
