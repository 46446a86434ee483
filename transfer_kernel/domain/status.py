"""
Derived statuses for store requests and their items.

Responsibility:
    Pure functions that compute line and header status from quantities and
    the stored lifecycle phase.  Nothing in the system assigns a status
    directly; everything goes through ``derive_line_status`` and
    ``derive_request_status``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - The header shows the more restrictive of the issuing and receiving
      axes once receiving has started.
    - The three cancellation variants are kept apart: nothing moved,
      issued but not received, partly received.
    - ``ItemStatus.FULFILLED`` is never derived.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable, Protocol

ZERO = Decimal("0")


class RequestType(str, Enum):
    REQUEST = "request"
    ISSUE = "issue"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RequestPhase(str, Enum):
    """Stored lifecycle phase; the only status-like field that is persisted."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RequestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIAL_ISSUED = "partial_issued"
    FULFILLED = "fulfilled"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CANCELLED = "cancelled"
    PARTIAL_ISSUED_CANCELLED = "partial_issued_cancelled"
    PARTIALLY_RECEIVED_CANCELLED = "partially_received_cancelled"


class ItemStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIAL_ISSUED = "partial_issued"
    ISSUED = "issued"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    FULLY_RECEIVED = "fully_received"
    FULFILLED = "fulfilled"
    CLOSED_PARTIALLY_RECEIVED = "closed_partially_received"


class IssuingAxis(str, Enum):
    APPROVED = "approved"
    PARTIAL_ISSUED = "partial_issued"
    FULFILLED = "fulfilled"


class ReceivingAxis(str, Enum):
    NOT_STARTED = "not_started"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.REJECTED,
    RequestStatus.FULLY_RECEIVED,
    RequestStatus.CANCELLED,
    RequestStatus.PARTIAL_ISSUED_CANCELLED,
    RequestStatus.PARTIALLY_RECEIVED_CANCELLED,
})


class LineQuantities(Protocol):
    requested_quantity: Decimal
    approved_quantity: Decimal | None
    issued_quantity: Decimal
    received_quantity: Decimal


def approved_or_zero(line: LineQuantities) -> Decimal:
    return line.approved_quantity if line.approved_quantity is not None else ZERO


def remaining_quantity(line: LineQuantities) -> Decimal:
    """Approved stock still to be issued."""
    return approved_or_zero(line) - line.issued_quantity


def remaining_receiving_quantity(line: LineQuantities) -> Decimal:
    """Issued stock still to be received."""
    return line.issued_quantity - line.received_quantity


def issuing_axis(lines: Iterable[LineQuantities]) -> IssuingAxis:
    lines = list(lines)
    if all(line.issued_quantity == 0 for line in lines):
        return IssuingAxis.APPROVED
    if any(remaining_quantity(line) > 0 for line in lines):
        return IssuingAxis.PARTIAL_ISSUED
    return IssuingAxis.FULFILLED


def receiving_axis(lines: Iterable[LineQuantities]) -> ReceivingAxis:
    lines = list(lines)
    if all(line.received_quantity == 0 for line in lines):
        return ReceivingAxis.NOT_STARTED
    if all(
        line.received_quantity == line.issued_quantity == approved_or_zero(line)
        for line in lines
    ):
        return ReceivingAxis.FULLY_RECEIVED
    return ReceivingAxis.PARTIALLY_RECEIVED


def derive_request_status(
    phase: RequestPhase,
    lines: Iterable[LineQuantities],
) -> RequestStatus:
    """Header status from the stored phase and the line quantities."""
    lines = list(lines)
    if phase is RequestPhase.DRAFT:
        return RequestStatus.DRAFT
    if phase is RequestPhase.SUBMITTED:
        return RequestStatus.SUBMITTED
    if phase is RequestPhase.REJECTED:
        return RequestStatus.REJECTED

    if phase is RequestPhase.CANCELLED:
        if any(line.received_quantity > 0 for line in lines):
            return RequestStatus.PARTIALLY_RECEIVED_CANCELLED
        if any(line.issued_quantity > 0 for line in lines):
            return RequestStatus.PARTIAL_ISSUED_CANCELLED
        return RequestStatus.CANCELLED

    receiving = receiving_axis(lines)
    if receiving is ReceivingAxis.FULLY_RECEIVED:
        return RequestStatus.FULLY_RECEIVED
    if receiving is ReceivingAxis.PARTIALLY_RECEIVED:
        return RequestStatus.PARTIALLY_RECEIVED
    return RequestStatus(issuing_axis(lines).value)


def derive_line_status(line: LineQuantities, phase: RequestPhase) -> ItemStatus:
    """Line status from its quantities and the owning request's phase."""
    if phase is RequestPhase.REJECTED:
        return ItemStatus.REJECTED
    approved = line.approved_quantity
    if approved is None:
        return ItemStatus.PENDING
    if approved == 0:
        return ItemStatus.REJECTED

    issued = line.issued_quantity
    received = line.received_quantity
    if issued == 0:
        return ItemStatus.APPROVED
    if received == 0:
        return ItemStatus.PARTIAL_ISSUED if issued < approved else ItemStatus.ISSUED
    if phase is RequestPhase.CANCELLED and received < approved:
        return ItemStatus.CLOSED_PARTIALLY_RECEIVED
    if received < issued:
        return ItemStatus.PARTIALLY_RECEIVED
    if received == approved:
        return ItemStatus.FULLY_RECEIVED
    return ItemStatus.RECEIVED
