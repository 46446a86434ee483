"""
Store request state machine.

Responsibility:
    Declares the fixed transition table for store requests
    (``TRANSFER_WORKFLOW``), the guard evaluators attached to it, and the two
    checks every operation goes through: ``check_transition`` before any
    change and ``confirm_transition`` once the new status has been derived.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    aggregate functions in ``transfer``; never by outer layers directly.

Invariants enforced:
    - An action is legal only if the table has a transition for it out of
      the current derived status and that transition's guard passes.
    - Terminal statuses have no outgoing transitions.
    - Transitions that require a reason refuse an empty one.

Failure modes:
    - InvalidTransitionError for an illegal action or failed guard.
    - ValidationError for a missing reason.
"""

from __future__ import annotations

from typing import Any, Callable

from transfer_kernel.domain.status import (
    RequestStatus,
    TERMINAL_STATUSES,
    remaining_quantity,
    remaining_receiving_quantity,
)
from transfer_kernel.domain.workflow import Guard, Transition, Workflow
from transfer_kernel.exceptions import InvalidTransitionError, ValidationError

S = RequestStatus

# Actions
SUBMIT = "submit"
UPDATE = "update"
DELETE = "delete"
APPROVE = "approve"
REJECT = "reject"
ISSUE = "issue"
RECEIVE = "receive"
CANCEL = "cancel"

ACTIONS = (SUBMIT, UPDATE, DELETE, APPROVE, REJECT, ISSUE, RECEIVE, CANCEL)

# Guards
HAS_REQUESTED_LINES = Guard(
    "has_requested_lines",
    "at least one item must have a requested quantity above zero",
)
ISSUING_INCOMPLETE = Guard(
    "issuing_incomplete",
    "every approved quantity has already been issued",
)
HAS_UNRECEIVED_STOCK = Guard(
    "has_unreceived_stock",
    "there is no issued stock waiting to be received",
)


def _has_requested_lines(request: Any) -> bool:
    return any(item.requested_quantity > 0 for item in request.items)


def _issuing_incomplete(request: Any) -> bool:
    return any(remaining_quantity(item) > 0 for item in request.items)


def _has_unreceived_stock(request: Any) -> bool:
    return any(remaining_receiving_quantity(item) > 0 for item in request.items)


GUARD_EVALUATORS: dict[str, Callable[[Any], bool]] = {
    HAS_REQUESTED_LINES.name: _has_requested_lines,
    ISSUING_INCOMPLETE.name: _issuing_incomplete,
    HAS_UNRECEIVED_STOCK.name: _has_unreceived_stock,
}


def _issue(from_state: S, to_state: S) -> Transition:
    return Transition(from_state, to_state, ISSUE, guard=ISSUING_INCOMPLETE, writes_ledger=True)


def _receive(from_state: S, to_state: S) -> Transition:
    return Transition(from_state, to_state, RECEIVE, guard=HAS_UNRECEIVED_STOCK, writes_ledger=True)


def _cancel(from_state: S, to_state: S) -> Transition:
    return Transition(from_state, to_state, CANCEL, requires_reason=True)


_TRANSITIONS = (
    # Draft editing
    Transition(S.DRAFT, S.DRAFT, UPDATE, writes_ledger=True),
    Transition(S.DRAFT, S.DRAFT, DELETE),
    Transition(S.DRAFT, S.SUBMITTED, SUBMIT, guard=HAS_REQUESTED_LINES),
    # Approval: partial approval keeps the request submitted
    Transition(S.SUBMITTED, S.SUBMITTED, APPROVE, writes_ledger=True),
    Transition(S.SUBMITTED, S.APPROVED, APPROVE, writes_ledger=True),
    Transition(S.SUBMITTED, S.REJECTED, REJECT, requires_reason=True),
    # Issuing axis
    _issue(S.APPROVED, S.PARTIAL_ISSUED),
    _issue(S.APPROVED, S.FULFILLED),
    _issue(S.PARTIAL_ISSUED, S.PARTIAL_ISSUED),
    _issue(S.PARTIAL_ISSUED, S.FULFILLED),
    _issue(S.PARTIALLY_RECEIVED, S.PARTIALLY_RECEIVED),
    # Receiving axis
    _receive(S.PARTIAL_ISSUED, S.PARTIALLY_RECEIVED),
    _receive(S.FULFILLED, S.PARTIALLY_RECEIVED),
    _receive(S.FULFILLED, S.FULLY_RECEIVED),
    _receive(S.PARTIALLY_RECEIVED, S.PARTIALLY_RECEIVED),
    _receive(S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED),
    # Cancellation variants
    _cancel(S.DRAFT, S.CANCELLED),
    _cancel(S.SUBMITTED, S.CANCELLED),
    _cancel(S.APPROVED, S.CANCELLED),
    _cancel(S.PARTIAL_ISSUED, S.PARTIAL_ISSUED_CANCELLED),
    _cancel(S.FULFILLED, S.PARTIAL_ISSUED_CANCELLED),
    _cancel(S.PARTIALLY_RECEIVED, S.PARTIALLY_RECEIVED_CANCELLED),
)

TRANSFER_WORKFLOW = Workflow(
    name="store_request",
    description="Inter-store stock transfer: request, approve, issue, receive",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in S),
    transitions=tuple(
        Transition(
            t.from_state.value,
            t.to_state.value,
            t.action,
            guard=t.guard,
            writes_ledger=t.writes_ledger,
            requires_reason=t.requires_reason,
        )
        for t in _TRANSITIONS
    ),
    terminal_states=tuple(s.value for s in TERMINAL_STATUSES),
)


def evaluate_guard(guard: Guard, request: Any) -> bool:
    evaluator = GUARD_EVALUATORS.get(guard.name)
    if evaluator is None:
        raise KeyError(f"No evaluator registered for guard '{guard.name}'")
    return evaluator(request)


def check_transition(
    request: Any,
    action: str,
    reason: str | None = None,
) -> tuple[Transition, ...]:
    """Verify ``action`` is legal for ``request`` right now.

    Returns the candidate transitions (their ``to_state`` is only known once
    quantities have been applied).

    Raises:
        InvalidTransitionError: no transition, or every candidate's guard fails.
        ValidationError: the transition needs a reason and none was given.
    """
    status = request.status.value
    candidates = TRANSFER_WORKFLOW.transitions_from(status, action)
    if not candidates:
        if TRANSFER_WORKFLOW.is_terminal(status):
            detail = "request is in a terminal status"
        else:
            allowed = ", ".join(TRANSFER_WORKFLOW.allowed_actions(status)) or "none"
            detail = f"allowed actions: {allowed}"
        raise InvalidTransitionError(str(request.id), action, status, detail)

    if any(t.requires_reason for t in candidates) and not (reason and reason.strip()):
        raise ValidationError("reason", f"a reason is required to {action}")

    failed: list[Guard] = []
    passing: list[Transition] = []
    for t in candidates:
        if t.guard is None or evaluate_guard(t.guard, request):
            passing.append(t)
        else:
            failed.append(t.guard)
    if not passing:
        raise InvalidTransitionError(
            str(request.id), action, status, failed[0].description,
        )
    return tuple(passing)


def confirm_transition(
    request_id: Any,
    from_status: RequestStatus,
    action: str,
    to_status: RequestStatus,
) -> Transition:
    """Return the table entry for a completed move.

    Raises InvalidTransitionError if the derived target is not reachable via
    ``action``; the caller discards the new state in that case.
    """
    transition = TRANSFER_WORKFLOW.find(from_status.value, action, to_status.value)
    if transition is None:
        raise InvalidTransitionError(
            str(request_id),
            action,
            from_status.value,
            f"would move to '{to_status.value}', which is not a legal target",
        )
    return transition
