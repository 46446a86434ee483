"""
Tests for the store request transition table and its checks.

The table is fixed: every action is legal only out of the statuses listed
in TRANSFER_WORKFLOW, guards refuse moves that would be no-ops, and
terminal statuses have no way out.
"""

from decimal import Decimal

import pytest

from transfer_kernel.domain import state_machine as sm
from transfer_kernel.domain import transfer
from transfer_kernel.domain.status import RequestStatus, TERMINAL_STATUSES
from transfer_kernel.domain.workflow import Transition, Workflow
from transfer_kernel.exceptions import InvalidTransitionError, ValidationError

from tests.conftest import TEST_ACTOR_ID


class TestWorkflowDefinition:
    def test_initial_state_is_draft(self):
        assert sm.TRANSFER_WORKFLOW.initial_state == "draft"

    def test_every_status_is_a_state(self):
        assert set(sm.TRANSFER_WORKFLOW.states) == {s.value for s in RequestStatus}

    def test_terminal_states_have_no_actions(self):
        for status in TERMINAL_STATUSES:
            assert sm.TRANSFER_WORKFLOW.allowed_actions(status.value) == ()
            assert sm.TRANSFER_WORKFLOW.is_terminal(status.value)

    def test_fulfilled_is_not_terminal(self):
        assert not sm.TRANSFER_WORKFLOW.is_terminal("fulfilled")
        assert set(sm.TRANSFER_WORKFLOW.allowed_actions("fulfilled")) == {"receive", "cancel"}

    def test_every_guard_has_an_evaluator(self):
        for t in sm.TRANSFER_WORKFLOW.transitions:
            if t.guard is not None:
                assert t.guard.name in sm.GUARD_EVALUATORS

    def test_quantity_moves_write_the_ledger(self):
        for t in sm.TRANSFER_WORKFLOW.transitions:
            if t.action in (sm.APPROVE, sm.ISSUE, sm.RECEIVE):
                assert t.writes_ledger

    def test_reject_and_cancel_require_a_reason(self):
        for t in sm.TRANSFER_WORKFLOW.transitions:
            if t.action in (sm.REJECT, sm.CANCEL):
                assert t.requires_reason

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            ("draft", "cancelled"),
            ("submitted", "cancelled"),
            ("approved", "cancelled"),
            ("partial_issued", "partial_issued_cancelled"),
            ("fulfilled", "partial_issued_cancelled"),
            ("partially_received", "partially_received_cancelled"),
        ],
    )
    def test_cancellation_targets(self, from_state, to_state):
        assert sm.TRANSFER_WORKFLOW.find(from_state, sm.CANCEL, to_state) is not None

    def test_unknown_state_in_transition_rejected(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="w", description="", initial_state="a", states=("a",),
                transitions=(Transition("a", "b", "go"),),
            )

    def test_transition_out_of_terminal_state_rejected(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="w", description="", initial_state="a", states=("a", "b"),
                transitions=(Transition("b", "a", "go"),),
                terminal_states=("b",),
            )


class TestCheckTransition:
    def test_legal_action_returns_candidates(self, make_request):
        candidates = sm.check_transition(make_request(), sm.SUBMIT)
        assert [t.to_state for t in candidates] == ["submitted"]

    def test_illegal_action_lists_allowed_actions(self, make_request):
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.check_transition(make_request(), sm.ISSUE)
        err = exc_info.value
        assert err.code == "INVALID_TRANSITION"
        assert err.action == "issue"
        assert err.current_status == "draft"
        assert "allowed actions: update, delete, submit, cancel" in err.reason

    def test_terminal_status_reported(self, submitted_request, advance):
        rejected = transfer.reject(
            submitted_request, "not needed", actor_id=TEST_ACTOR_ID, at=advance(),
        ).request
        with pytest.raises(InvalidTransitionError, match="terminal status"):
            sm.check_transition(rejected, sm.CANCEL, "again")

    def test_missing_reason(self, submitted_request):
        with pytest.raises(ValidationError) as exc_info:
            sm.check_transition(submitted_request, sm.REJECT, "   ")
        assert exc_info.value.field == "reason"

    def test_submit_guard_refuses_all_zero_lines(self, make_request):
        request = make_request(lines=[("SKU-1", "0", "5"), ("SKU-2", "0", "1")])
        with pytest.raises(InvalidTransitionError, match="requested quantity above zero"):
            sm.check_transition(request, sm.SUBMIT)

    def test_receive_guard(self, approved_request, advance):
        item_id = approved_request.items[0].id
        issued = transfer.issue(
            approved_request, {item_id: Decimal("60")}, actor_id="keeper", at=advance(),
        ).request
        received = transfer.receive(
            issued, {item_id: Decimal("30")}, actor_id="keeper", at=advance(),
        ).request
        assert received.status is RequestStatus.PARTIALLY_RECEIVED
        # issuing is complete, so issue is refused by its guard
        with pytest.raises(InvalidTransitionError, match="already been issued"):
            sm.check_transition(received, sm.ISSUE)
        assert sm.check_transition(received, sm.RECEIVE)


class TestConfirmTransition:
    def test_returns_table_entry(self, make_request):
        request = make_request()
        t = sm.confirm_transition(request.id, RequestStatus.DRAFT, sm.SUBMIT, RequestStatus.SUBMITTED)
        assert t.guard is sm.HAS_REQUESTED_LINES

    def test_unreachable_target_rejected(self, make_request):
        request = make_request()
        with pytest.raises(InvalidTransitionError, match="not a legal target"):
            sm.confirm_transition(
                request.id, RequestStatus.DRAFT, sm.SUBMIT, RequestStatus.APPROVED,
            )
