"""
Tests for the store request aggregate operations.

Covers the end-to-end transfer scenarios (approve, issue in parts, receive,
cancel midway), draft editing, and every refusal path.  All operations are
pure: a refused operation leaves the input aggregate as it was.
"""

from datetime import date
from decimal import Decimal

import pytest

from transfer_kernel.domain import transfer
from transfer_kernel.domain.ledger import TransactionType
from transfer_kernel.domain.status import ItemStatus, Priority, RequestStatus
from transfer_kernel.domain.transfer import NewItem
from transfer_kernel.exceptions import (
    InvalidTransitionError,
    QuantityInvariantViolationError,
    ValidationError,
)

from tests.conftest import BRANCH_STORE, EUR, MAIN_STORE, TEST_ACTOR_ID, USD

D = Decimal


# =============================================================================
# Transfer scenarios
# =============================================================================


class TestTransferScenarios:
    """Requested 100, approved 60, issued in two parts, then received."""

    def test_partial_issue(self, approved_request, advance):
        item_id = approved_request.items[0].id
        outcome = transfer.issue(
            approved_request, {item_id: D("40")}, actor_id="keeper", at=advance(),
        )
        request = outcome.request
        item = request.items[0]
        assert request.status is RequestStatus.PARTIAL_ISSUED
        assert item.issued_quantity == D("40")
        assert item.remaining_quantity == D("20")
        assert request.item_status(item) is ItemStatus.PARTIAL_ISSUED
        assert outcome.from_status is RequestStatus.APPROVED
        assert outcome.to_status is RequestStatus.PARTIAL_ISSUED
        assert outcome.transition.writes_ledger

        entry = outcome.entries[0]
        assert entry.transaction_type is TransactionType.ISSUED
        assert (entry.previous_quantity, entry.new_quantity, entry.quantity) == (
            D("0"), D("40"), D("40"),
        )
        assert entry.sequence == 3
        assert entry.performed_by == "keeper"

    def test_complete_issue_then_full_receipt(self, approved_request, advance):
        item_id = approved_request.items[0].id
        request = transfer.issue(
            approved_request, {item_id: D("40")}, actor_id="keeper", at=advance(),
        ).request
        fulfilled_at = advance()
        request = transfer.issue(
            request, {item_id: D("20")}, actor_id="keeper", at=fulfilled_at,
        ).request
        assert request.status is RequestStatus.FULFILLED
        assert request.fulfilled_at == fulfilled_at
        assert request.fulfilled_by == "keeper"
        assert not request.is_terminal

        received_at = advance()
        request = transfer.receive(
            request, {item_id: D("60")}, actor_id="receiver", at=received_at,
        ).request
        item = request.items[0]
        assert request.status is RequestStatus.FULLY_RECEIVED
        assert request.is_terminal
        assert item.remaining_receiving_quantity == D("0")
        assert item.fulfilled_quantity == D("60")
        assert request.item_status(item) is ItemStatus.FULLY_RECEIVED
        assert request.received_by == "receiver"
        assert request.actual_delivery_date == received_at.date()
        assert [t.transaction_type for t in item.transactions] == [
            TransactionType.REQUESTED,
            TransactionType.APPROVED,
            TransactionType.ISSUED,
            TransactionType.ISSUED,
            TransactionType.RECEIVED,
        ]

    def test_over_issue_refused(self, approved_request, advance):
        item_id = approved_request.items[0].id
        request = transfer.issue(
            approved_request, {item_id: D("40")}, actor_id="keeper", at=advance(),
        ).request
        with pytest.raises(QuantityInvariantViolationError) as exc_info:
            transfer.issue(request, {item_id: D("50")}, actor_id="keeper", at=advance())
        err = exc_info.value
        assert err.code == "QUANTITY_INVARIANT_VIOLATION"
        assert err.counter == "issued_quantity"
        assert err.attempted == "90"
        assert err.limit == "60"
        assert request.items[0].issued_quantity == D("40")
        assert len(request.items[0].transactions) == 3

    def test_cancel_partially_issued_keeps_quantities(self, approved_request, advance):
        item_id = approved_request.items[0].id
        request = transfer.issue(
            approved_request, {item_id: D("40")}, actor_id="keeper", at=advance(),
        ).request
        cancelled = transfer.cancel(
            request, "branch closed", actor_id="manager", at=advance(),
        ).request
        assert cancelled.status is RequestStatus.PARTIAL_ISSUED_CANCELLED
        assert cancelled.items[0].issued_quantity == D("40")
        assert cancelled.cancellation_reason == "branch closed"
        assert cancelled.cancelled_by == "manager"
        assert cancelled.items[0].transactions == request.items[0].transactions

    def test_cancel_after_partial_receipt(self, approved_request, advance):
        item_id = approved_request.items[0].id
        request = transfer.issue(
            approved_request, {item_id: D("60")}, actor_id="keeper", at=advance(),
        ).request
        request = transfer.receive(
            request, {item_id: D("25")}, actor_id="receiver", at=advance(),
        ).request
        cancelled = transfer.cancel(request, "stock damaged", actor_id="m", at=advance()).request
        assert cancelled.status is RequestStatus.PARTIALLY_RECEIVED_CANCELLED
        assert cancelled.item_status(cancelled.items[0]) is ItemStatus.CLOSED_PARTIALLY_RECEIVED

    def test_cancel_requires_reason(self, approved_request, advance):
        with pytest.raises(ValidationError) as exc_info:
            transfer.cancel(approved_request, "", actor_id="m", at=advance())
        assert exc_info.value.field == "reason"

    def test_terminal_request_refuses_everything(self, approved_request, advance):
        cancelled = transfer.cancel(approved_request, "no longer needed", actor_id="m", at=advance()).request
        assert cancelled.status is RequestStatus.CANCELLED
        item_id = cancelled.items[0].id
        with pytest.raises(InvalidTransitionError):
            transfer.issue(cancelled, {item_id: D("1")}, actor_id="k", at=advance())
        with pytest.raises(InvalidTransitionError):
            transfer.cancel(cancelled, "again", actor_id="m", at=advance())


# =============================================================================
# Issue and receive refusals
# =============================================================================


class TestMovementRefusals:
    def test_issue_before_approval(self, submitted_request, advance):
        item_id = submitted_request.items[0].id
        with pytest.raises(InvalidTransitionError):
            transfer.issue(submitted_request, {item_id: D("1")}, actor_id="k", at=advance())

    @pytest.mark.parametrize("qty", ["0", "-1"])
    def test_non_positive_issue_is_malformed(self, approved_request, advance, qty):
        item_id = approved_request.items[0].id
        with pytest.raises(ValidationError, match="greater than zero") as exc_info:
            transfer.issue(approved_request, {item_id: D(qty)}, actor_id="k", at=advance())
        assert exc_info.value.field == "issued_quantity"
        assert not isinstance(exc_info.value, QuantityInvariantViolationError)

    @pytest.mark.parametrize("qty", ["0", "-1"])
    def test_non_positive_receipt_is_malformed(self, approved_request, advance, qty):
        item_id = approved_request.items[0].id
        request = transfer.issue(
            approved_request, {item_id: D("5")}, actor_id="k", at=advance(),
        ).request
        with pytest.raises(ValidationError) as exc_info:
            transfer.receive(request, {item_id: D(qty)}, actor_id="r", at=advance())
        assert exc_info.value.field == "received_quantity"

    def test_empty_quantities(self, approved_request, advance):
        with pytest.raises(ValidationError) as exc_info:
            transfer.issue(approved_request, {}, actor_id="k", at=advance())
        assert exc_info.value.field == "items"

    def test_unknown_item(self, approved_request, advance):
        from uuid import uuid4

        with pytest.raises(ValidationError) as exc_info:
            transfer.issue(approved_request, {uuid4(): D("1")}, actor_id="k", at=advance())
        assert exc_info.value.field == "item_id"

    def test_receive_more_than_issued(self, approved_request, advance):
        item_id = approved_request.items[0].id
        request = transfer.issue(
            approved_request, {item_id: D("30")}, actor_id="k", at=advance(),
        ).request
        with pytest.raises(QuantityInvariantViolationError) as exc_info:
            transfer.receive(request, {item_id: D("31")}, actor_id="r", at=advance())
        assert exc_info.value.counter == "received_quantity"
        assert exc_info.value.limit == "30"

    def test_receive_before_issue(self, approved_request, advance):
        item_id = approved_request.items[0].id
        with pytest.raises(InvalidTransitionError):
            transfer.receive(approved_request, {item_id: D("1")}, actor_id="r", at=advance())

    def test_one_bad_line_refuses_the_whole_call(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "10", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        request = transfer.approve(
            request, transfer.pending_approval_quantities(request), actor_id="a", at=advance(),
        ).request
        a, b = (item.id for item in request.items)
        with pytest.raises(QuantityInvariantViolationError):
            transfer.issue(request, {a: D("5"), b: D("11")}, actor_id="k", at=advance())
        assert all(item.issued_quantity == 0 for item in request.items)

    def test_issue_while_partially_received(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "10", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        request = transfer.approve(
            request, transfer.pending_approval_quantities(request), actor_id="a", at=advance(),
        ).request
        a, b = (item.id for item in request.items)
        request = transfer.issue(request, {a: D("10")}, actor_id="k", at=advance()).request
        request = transfer.receive(request, {a: D("10")}, actor_id="r", at=advance()).request
        assert request.status is RequestStatus.PARTIALLY_RECEIVED
        request = transfer.issue(request, {b: D("10")}, actor_id="k", at=advance()).request
        assert request.status is RequestStatus.PARTIALLY_RECEIVED
        assert request.fulfilled_at is not None
        request = transfer.receive(
            request, transfer.remaining_receipt_quantities(request), actor_id="r", at=advance(),
        ).request
        assert request.status is RequestStatus.FULLY_RECEIVED


# =============================================================================
# Approval
# =============================================================================


class TestApproval:
    def test_partial_approval_keeps_request_submitted(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "5", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        a = request.items[0].id
        outcome = transfer.approve(request, {a: D("8")}, actor_id="a", at=advance())
        assert outcome.request.status is RequestStatus.SUBMITTED
        assert outcome.request.approved_at is None
        assert outcome.request.item_status(outcome.request.items[1]) is ItemStatus.PENDING

    def test_full_approval_stamps_approver(self, submitted_request, advance):
        item_id = submitted_request.items[0].id
        at = advance()
        request = transfer.approve(
            submitted_request, {item_id: D("100")}, actor_id="approver", at=at,
        ).request
        assert request.status is RequestStatus.APPROVED
        assert (request.approved_by, request.approved_at) == ("approver", at)

    def test_reapproval_appends_compensating_delta(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "5", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        a = request.items[0].id
        request = transfer.approve(request, {a: D("8")}, actor_id="x", at=advance()).request
        outcome = transfer.approve(request, {a: D("6")}, actor_id="x", at=advance())
        entry = outcome.entries[0]
        assert entry.transaction_type is TransactionType.APPROVED
        assert (entry.previous_quantity, entry.new_quantity, entry.quantity) == (
            D("8"), D("6"), D("-2"),
        )
        assert outcome.request.items[0].approved_quantity == D("6")

    def test_same_quantity_writes_nothing(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "5", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        a = request.items[0].id
        request = transfer.approve(request, {a: D("8")}, actor_id="x", at=advance()).request
        outcome = transfer.approve(request, {a: D("8")}, actor_id="x", at=advance())
        assert outcome.entries == ()

    def test_approve_above_requested(self, submitted_request, advance):
        item_id = submitted_request.items[0].id
        with pytest.raises(QuantityInvariantViolationError) as exc_info:
            transfer.approve(submitted_request, {item_id: D("101")}, actor_id="a", at=advance())
        assert exc_info.value.counter == "approved_quantity"

    def test_negative_approval_is_malformed(self, submitted_request, advance):
        item_id = submitted_request.items[0].id
        with pytest.raises(ValidationError, match="cannot be negative") as exc_info:
            transfer.approve(submitted_request, {item_id: D("-1")}, actor_id="a", at=advance())
        assert exc_info.value.field == "approved_quantity"

    def test_all_zero_approval_refused(self, submitted_request, advance):
        item_id = submitted_request.items[0].id
        with pytest.raises(ValidationError, match="reject the request instead"):
            transfer.approve(submitted_request, {item_id: D("0")}, actor_id="a", at=advance())

    def test_reject_item_records_reason(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "5", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        b = request.items[1].id
        outcome = transfer.reject_item(request, b, "discontinued", actor_id="a", at=advance())
        entry = outcome.entries[0]
        assert entry.transaction_type is TransactionType.REJECTED
        assert entry.reason == "discontinued"
        line = outcome.request.items[1]
        assert line.approved_quantity == D("0")
        assert outcome.request.item_status(line) is ItemStatus.REJECTED

    def test_reject_item_requires_reason(self, submitted_request, advance):
        with pytest.raises(ValidationError):
            transfer.reject_item(
                submitted_request, submitted_request.items[0].id, " ", actor_id="a", at=advance(),
            )

    def test_pending_approval_quantities_skips_decided_lines(self, make_request, advance):
        request = make_request(lines=[("A", "10", "1"), ("B", "5", "1")])
        request = transfer.submit(request, actor_id="u", at=advance()).request
        a, b = (item.id for item in request.items)
        request = transfer.approve(request, {a: D("3")}, actor_id="x", at=advance()).request
        assert transfer.pending_approval_quantities(request) == {b: D("5")}
        request = transfer.approve(
            request, transfer.pending_approval_quantities(request), actor_id="x", at=advance(),
        ).request
        assert request.status is RequestStatus.APPROVED
        assert request.items[0].approved_quantity == D("3")

    def test_reject_request(self, submitted_request, advance):
        at = advance()
        request = transfer.reject(submitted_request, "budget", actor_id="a", at=at).request
        assert request.status is RequestStatus.REJECTED
        assert (request.rejection_reason, request.rejected_by, request.rejected_at) == (
            "budget", "a", at,
        )
        assert request.item_status(request.items[0]) is ItemStatus.REJECTED


# =============================================================================
# Create and draft editing
# =============================================================================


class TestCreate:
    def test_opening_ledger_rows(self, make_request):
        request = make_request(lines=[("A", "10", "1"), ("B", "0", "1")])
        assert request.status is RequestStatus.DRAFT
        assert request.priority is Priority.MEDIUM
        for item in request.items:
            assert len(item.transactions) == 1
            row = item.transactions[0]
            assert row.transaction_type is TransactionType.REQUESTED
            assert row.sequence == 1
            assert row.new_quantity == item.requested_quantity

    def test_requires_items(self, make_request):
        with pytest.raises(ValidationError) as exc_info:
            make_request(items=[])
        assert exc_info.value.field == "items"

    def test_stores_must_differ(self, make_request):
        with pytest.raises(ValidationError) as exc_info:
            make_request(issuing_store_id=BRANCH_STORE)
        assert exc_info.value.field == "issuing_store_id"

    def test_negative_requested_quantity(self, make_request):
        with pytest.raises(ValidationError) as exc_info:
            make_request(lines=[("A", "-1", "1")])
        assert exc_info.value.field == "requested_quantity"

    def test_float_quantities_refused(self, make_request):
        with pytest.raises(ValidationError):
            make_request(items=[NewItem("A", 1.5, D("1"))])

    def test_submit_needs_a_positive_line(self, make_request, advance):
        request = make_request(lines=[("A", "0", "1")])
        with pytest.raises(InvalidTransitionError):
            transfer.submit(request, actor_id="u", at=advance())


class TestUpdateDraft:
    def test_header_change(self, make_request, advance, resolver):
        request = make_request()
        outcome = transfer.update_draft(
            request,
            {"priority": "urgent", "notes": "rush", "expected_delivery_date": date(2024, 1, 9)},
            None,
            actor_id="editor", at=advance(), resolver=resolver,
        )
        updated = outcome.request
        assert updated.priority is Priority.URGENT
        assert updated.notes == "rush"
        assert updated.items == request.items
        assert updated.updated_by == "editor"
        assert outcome.entries == ()

    def test_currency_change_refreezes_header_rate_only(self, make_request, advance, resolver):
        request = make_request()
        updated = transfer.update_draft(
            request, {"currency_id": EUR}, None,
            actor_id="editor", at=advance(), resolver=resolver,
        ).request
        assert updated.exchange_rate == D("2700")
        # lines keep the rates frozen at creation when items are not resent
        assert updated.items[0].exchange_rate == D("2500")
        assert updated.items[0].currency_id == USD

    def test_request_date_change_refreezes_header_rate(self, make_request, advance, resolver):
        request = make_request()
        updated = transfer.update_draft(
            request, {"request_date": date(2023, 5, 1)}, None,
            actor_id="editor", at=advance(), resolver=resolver,
        ).request
        assert updated.exchange_rate == D("1450")

    def test_replace_line_set(self, make_request, advance, resolver):
        request = make_request(lines=[("A", "10", "1"), ("B", "5", "1")])
        a, b = request.items
        outcome = transfer.update_draft(
            request,
            {},
            [
                NewItem("A", D("12"), D("1"), id=a.id),
                NewItem("C", D("3"), D("4")),
            ],
            actor_id="editor", at=advance(), resolver=resolver,
        )
        updated = outcome.request
        assert [i.product_id for i in updated.items] == ["A", "C"]
        assert outcome.removed_item_ids == (b.id,)
        kept = updated.items[0]
        assert kept.requested_quantity == D("12")
        assert [(t.previous_quantity, t.new_quantity) for t in kept.transactions] == [
            (D("0"), D("10")), (D("10"), D("12")),
        ]
        assert len(outcome.entries) == 2

    def test_unknown_line_id(self, make_request, advance, resolver):
        from uuid import uuid4

        request = make_request()
        with pytest.raises(ValidationError):
            transfer.update_draft(
                request, {}, [NewItem("A", D("1"), D("1"), id=uuid4())],
                actor_id="e", at=advance(), resolver=resolver,
            )

    def test_protected_fields(self, make_request, advance, resolver):
        request = make_request()
        for name in ("request_type", "reference_number", "status"):
            with pytest.raises(ValidationError) as exc_info:
                transfer.update_draft(
                    request, {name: "x"}, None, actor_id="e", at=advance(), resolver=resolver,
                )
            assert exc_info.value.field == name

    def test_only_drafts_are_editable(self, submitted_request, advance, resolver):
        with pytest.raises(InvalidTransitionError):
            transfer.update_draft(
                submitted_request, {"notes": "late"}, None,
                actor_id="e", at=advance(), resolver=resolver,
            )

    def test_delete_only_drafts(self, make_request, submitted_request):
        transfer.check_deletable(make_request())
        with pytest.raises(InvalidTransitionError):
            transfer.check_deletable(submitted_request)

    def test_header_fields_reach_the_aggregate(self, make_request):
        request = make_request(
            priority=Priority.LOW, notes="n", expected_delivery_date=date(2024, 2, 1),
        )
        assert (request.requesting_store_id, request.issuing_store_id) == (BRANCH_STORE, MAIN_STORE)
        assert request.created_by == TEST_ACTOR_ID
        assert request.priority is Priority.LOW
