"""
Store request aggregate -- header, lines and the operations that move them.

Responsibility:
    ``StoreRequest`` and ``StoreRequestItem`` are frozen value objects.
    Every operation (create, update draft, submit, approve, reject, issue,
    receive, cancel) is a pure function that takes the current aggregate and
    returns a ``TransferOutcome``: the new aggregate plus the ledger rows it
    appended.  The caller persists both or neither.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Time and actor are
    passed in; rates come from a ``CurrencyResolver`` snapshot.

Invariants enforced:
    - 0 <= issued <= approved <= requested and 0 <= received <= issued on
      every line, checked before any row is built.
    - Every quantity change appends exactly one ledger row per affected line.
    - Header and line statuses are derived, never assigned.
    - Only drafts may change header fields or the line set.
    - Cancel never reverts issued or received quantities.

Failure modes:
    - InvalidTransitionError when the state machine refuses the action.
    - QuantityInvariantViolationError when a delta would push a counter past
      its upper bound; the input aggregate is returned untouched.
    - ValidationError for malformed input, including zero or negative
      deltas.
    - NoApplicableRateError / InvalidExchangeRateError during rate freezing.

Audit relevance:
    Each line's ``transactions`` tuple is the full, ordered history of its
    counters; ``ledger.reconcile`` can verify a line at any time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Sequence
from uuid import UUID, uuid4

from transfer_kernel.domain import state_machine as sm
from transfer_kernel.domain.currency import CurrencyResolver
from transfer_kernel.domain.equivalence import (
    ValueSummary,
    effective_quantity,
    line_equivalent_amount,
    line_total_cost,
    resolve_header_rate,
    resolve_line_rate,
    summarize,
)
from transfer_kernel.domain.ledger import ItemTransaction, TransactionType, next_sequence
from transfer_kernel.domain.status import (
    IssuingAxis,
    ItemStatus,
    Priority,
    RequestPhase,
    RequestStatus,
    RequestType,
    TERMINAL_STATUSES,
    derive_line_status,
    derive_request_status,
    issuing_axis,
    remaining_quantity,
    remaining_receiving_quantity,
)
from transfer_kernel.domain.workflow import Transition
from transfer_kernel.exceptions import (
    QuantityInvariantViolationError,
    ValidationError,
)

ZERO = Decimal("0")

CREATE = "create"

UPDATABLE_HEADER_FIELDS = frozenset({
    "request_date",
    "requesting_store_id",
    "issuing_store_id",
    "priority",
    "expected_delivery_date",
    "notes",
    "currency_id",
    "exchange_rate",
})


def _decimal(field_name: str, value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise ValidationError(field_name, f"expected a decimal number, got {value!r}")
    result = Decimal(value)
    if not result.is_finite():
        raise ValidationError(field_name, "must be a finite number")
    return result


def _optional_decimal(field_name: str, value: Any) -> Decimal | None:
    return None if value is None else _decimal(field_name, value)


@dataclass(frozen=True)
class NewItem:
    """Line input for create and draft update.

    ``id`` identifies an existing line on update; leave it None for new lines.
    ``currency_id`` None means the header currency.
    """

    product_id: str
    requested_quantity: Decimal
    unit_cost: Decimal
    currency_id: str | None = None
    exchange_rate: Decimal | None = None
    notes: str | None = None
    id: UUID | None = None


@dataclass(frozen=True)
class StoreRequestItem:
    id: UUID
    product_id: str
    requested_quantity: Decimal
    unit_cost: Decimal
    currency_id: str
    exchange_rate: Decimal
    approved_quantity: Decimal | None = None
    issued_quantity: Decimal = ZERO
    received_quantity: Decimal = ZERO
    notes: str | None = None
    transactions: tuple[ItemTransaction, ...] = ()

    @property
    def fulfilled_quantity(self) -> Decimal:
        return self.received_quantity

    @property
    def remaining_quantity(self) -> Decimal:
        return remaining_quantity(self)

    @property
    def remaining_receiving_quantity(self) -> Decimal:
        return remaining_receiving_quantity(self)

    @property
    def effective_quantity(self) -> Decimal:
        return effective_quantity(self)

    @property
    def total_cost(self) -> Decimal:
        return line_total_cost(self)

    @property
    def equivalent_amount(self) -> Decimal:
        return line_equivalent_amount(self)

    def status_in(self, phase: RequestPhase) -> ItemStatus:
        return derive_line_status(self, phase)

    def _append(
        self,
        transaction_type: TransactionType,
        previous: Decimal,
        new: Decimal,
        actor_id: str,
        at: datetime,
        notes: str | None = None,
        reason: str | None = None,
    ) -> ItemTransaction:
        return ItemTransaction.for_change(
            item_id=self.id,
            sequence=next_sequence(self.transactions),
            transaction_type=transaction_type,
            previous_quantity=previous,
            new_quantity=new,
            performed_by=actor_id,
            performed_at=at,
            notes=notes,
            reason=reason,
        )


@dataclass(frozen=True)
class StoreRequest:
    id: UUID
    reference_number: str
    request_type: RequestType
    request_date: date
    requesting_store_id: str
    issuing_store_id: str
    currency_id: str
    exchange_rate: Decimal
    items: tuple[StoreRequestItem, ...]
    created_by: str
    created_at: datetime
    phase: RequestPhase = RequestPhase.DRAFT
    priority: Priority = Priority.MEDIUM
    expected_delivery_date: date | None = None
    actual_delivery_date: date | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None
    submitted_by: str | None = None
    submitted_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    fulfilled_by: str | None = None
    fulfilled_at: datetime | None = None
    received_by: str | None = None
    received_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    version: int = 0

    @property
    def status(self) -> RequestStatus:
        return derive_request_status(self.phase, self.items)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def value_summary(self) -> ValueSummary:
        return summarize(self.items)

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def total_value(self) -> Decimal:
        return self.value_summary.total_value

    def item_status(self, item: StoreRequestItem) -> ItemStatus:
        return item.status_in(self.phase)

    def get_item(self, item_id: UUID) -> StoreRequestItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise ValidationError("item_id", f"item {item_id} is not on request {self.id}")


@dataclass(frozen=True)
class TransferOutcome:
    """Result of one aggregate operation."""

    request: StoreRequest
    action: str
    from_status: RequestStatus | None
    to_status: RequestStatus
    entries: tuple[ItemTransaction, ...] = ()
    removed_item_ids: tuple[UUID, ...] = ()
    transition: Transition | None = None


# ---------------------------------------------------------------------------
# Construction and draft editing
# ---------------------------------------------------------------------------


def _validate_stores(requesting_store_id: str, issuing_store_id: str) -> None:
    if not requesting_store_id:
        raise ValidationError("requesting_store_id", "is required")
    if not issuing_store_id:
        raise ValidationError("issuing_store_id", "is required")
    if requesting_store_id == issuing_store_id:
        raise ValidationError(
            "issuing_store_id", "must differ from the requesting store",
        )


def _build_line(
    new: NewItem,
    *,
    header_currency_id: str,
    header_rate: Decimal,
    request_date: date,
    resolver: CurrencyResolver,
    actor_id: str,
    at: datetime,
    existing: StoreRequestItem | None,
    new_id: Callable[[], UUID],
) -> tuple[StoreRequestItem, ItemTransaction | None]:
    if not new.product_id:
        raise ValidationError("product_id", "is required")
    requested = _decimal("requested_quantity", new.requested_quantity)
    if requested < 0:
        raise ValidationError("requested_quantity", "cannot be negative")
    unit_cost = _decimal("unit_cost", new.unit_cost)
    if unit_cost < 0:
        raise ValidationError("unit_cost", "cannot be negative")

    currency_id = new.currency_id or header_currency_id
    rate = resolve_line_rate(
        currency_id,
        header_currency_id,
        header_rate,
        request_date,
        resolver,
        explicit_rate=_optional_decimal("exchange_rate", new.exchange_rate),
    )

    if existing is None:
        item = StoreRequestItem(
            id=new.id or new_id(),
            product_id=new.product_id,
            requested_quantity=ZERO,
            unit_cost=unit_cost,
            currency_id=currency_id,
            exchange_rate=rate,
            notes=new.notes,
        )
        previous = ZERO
    else:
        item = replace(
            existing,
            product_id=new.product_id,
            unit_cost=unit_cost,
            currency_id=currency_id,
            exchange_rate=rate,
            notes=new.notes,
        )
        previous = existing.requested_quantity

    entry = None
    if existing is None or requested != previous:
        entry = item._append(TransactionType.REQUESTED, previous, requested, actor_id, at)
        item = replace(
            item,
            requested_quantity=requested,
            transactions=item.transactions + (entry,),
        )
    return item, entry


def create_request(
    *,
    reference_number: str,
    request_type: RequestType,
    request_date: date,
    requesting_store_id: str,
    issuing_store_id: str,
    currency_id: str,
    items: Sequence[NewItem],
    created_by: str,
    created_at: datetime,
    resolver: CurrencyResolver,
    exchange_rate: Decimal | None = None,
    priority: Priority = Priority.MEDIUM,
    expected_delivery_date: date | None = None,
    notes: str | None = None,
    request_id: UUID | None = None,
    new_id: Callable[[], UUID] = uuid4,
) -> TransferOutcome:
    """Build a new draft request and its opening ``requested`` ledger rows."""
    _validate_stores(requesting_store_id, issuing_store_id)
    if not currency_id:
        raise ValidationError("currency_id", "is required")
    if not items:
        raise ValidationError("items", "at least one item is required")

    header_rate = resolve_header_rate(
        currency_id,
        request_date,
        resolver,
        explicit_rate=_optional_decimal("exchange_rate", exchange_rate),
    )

    lines: list[StoreRequestItem] = []
    entries: list[ItemTransaction] = []
    for new in items:
        line, entry = _build_line(
            new,
            header_currency_id=currency_id,
            header_rate=header_rate,
            request_date=request_date,
            resolver=resolver,
            actor_id=created_by,
            at=created_at,
            existing=None,
            new_id=new_id,
        )
        lines.append(line)
        entries.append(entry)

    request = StoreRequest(
        id=request_id or new_id(),
        reference_number=reference_number,
        request_type=RequestType(request_type),
        request_date=request_date,
        requesting_store_id=requesting_store_id,
        issuing_store_id=issuing_store_id,
        currency_id=currency_id,
        exchange_rate=header_rate,
        items=tuple(lines),
        created_by=created_by,
        created_at=created_at,
        priority=Priority(priority),
        expected_delivery_date=expected_delivery_date,
        notes=notes,
    )
    return TransferOutcome(
        request=request,
        action=CREATE,
        from_status=None,
        to_status=request.status,
        entries=tuple(entries),
    )


def update_draft(
    request: StoreRequest,
    changes: Mapping[str, Any],
    items: Sequence[NewItem] | None,
    *,
    actor_id: str,
    at: datetime,
    resolver: CurrencyResolver,
    new_id: Callable[[], UUID] = uuid4,
) -> TransferOutcome:
    """Edit header fields and/or replace the line set of a draft.

    When ``items`` is given it is the complete new line set: lines whose id
    is not listed are removed, listed ids are updated, id-less entries are
    added.  Line rates are re-frozen for every listed line.  When ``items``
    is None the existing lines, including their rates, are kept.
    """
    sm.check_transition(request, sm.UPDATE)

    unknown = set(changes) - UPDATABLE_HEADER_FIELDS
    if unknown:
        name = sorted(unknown)[0]
        raise ValidationError(name, "cannot be changed on a store request")

    header: dict[str, Any] = dict(changes)
    if "priority" in header:
        header["priority"] = Priority(header["priority"])
    requesting = header.get("requesting_store_id", request.requesting_store_id)
    issuing = header.get("issuing_store_id", request.issuing_store_id)
    _validate_stores(requesting, issuing)

    currency_id = header.get("currency_id", request.currency_id)
    if not currency_id:
        raise ValidationError("currency_id", "is required")
    request_date = header.get("request_date", request.request_date)
    if "exchange_rate" in header and header["exchange_rate"] is not None:
        header["exchange_rate"] = resolve_header_rate(
            currency_id, request_date, resolver,
            explicit_rate=_decimal("exchange_rate", header["exchange_rate"]),
        )
    elif (
        "exchange_rate" in header
        or currency_id != request.currency_id
        or request_date != request.request_date
    ):
        header["exchange_rate"] = resolve_header_rate(currency_id, request_date, resolver)
    header_rate = header.get("exchange_rate", request.exchange_rate)

    lines = request.items
    entries: list[ItemTransaction] = []
    removed: tuple[UUID, ...] = ()
    if items is not None:
        if not items:
            raise ValidationError("items", "at least one item is required")
        existing_by_id = {item.id: item for item in request.items}
        new_lines: list[StoreRequestItem] = []
        kept: set[UUID] = set()
        for new in items:
            existing = None
            if new.id is not None:
                existing = existing_by_id.get(new.id)
                if existing is None:
                    raise ValidationError("items", f"item {new.id} is not on request {request.id}")
                if new.id in kept:
                    raise ValidationError("items", f"item {new.id} is listed twice")
                kept.add(new.id)
            line, entry = _build_line(
                new,
                header_currency_id=currency_id,
                header_rate=header_rate,
                request_date=request_date,
                resolver=resolver,
                actor_id=actor_id,
                at=at,
                existing=existing,
                new_id=new_id,
            )
            new_lines.append(line)
            if entry is not None:
                entries.append(entry)
        lines = tuple(new_lines)
        removed = tuple(item.id for item in request.items if item.id not in kept)

    updated = replace(
        request,
        **header,
        items=lines,
        updated_by=actor_id,
        updated_at=at,
    )
    transition = sm.confirm_transition(request.id, request.status, sm.UPDATE, updated.status)
    return TransferOutcome(
        request=updated,
        action=sm.UPDATE,
        from_status=request.status,
        to_status=updated.status,
        entries=tuple(entries),
        removed_item_ids=removed,
        transition=transition,
    )


def check_deletable(request: StoreRequest) -> None:
    """Raise unless the request is a draft that may be deleted."""
    sm.check_transition(request, sm.DELETE)


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------


def _finish(
    before: StoreRequest,
    after: StoreRequest,
    action: str,
    entries: Iterable[ItemTransaction] = (),
) -> TransferOutcome:
    transition = sm.confirm_transition(before.id, before.status, action, after.status)
    return TransferOutcome(
        request=after,
        action=action,
        from_status=before.status,
        to_status=after.status,
        entries=tuple(entries),
        transition=transition,
    )


def _replace_items(
    request: StoreRequest,
    changed: Mapping[UUID, StoreRequestItem],
) -> tuple[StoreRequestItem, ...]:
    return tuple(changed.get(item.id, item) for item in request.items)


def _require_quantities(quantities: Mapping[UUID, Any]) -> None:
    if not quantities:
        raise ValidationError("items", "at least one item quantity is required")


def submit(request: StoreRequest, *, actor_id: str, at: datetime) -> TransferOutcome:
    sm.check_transition(request, sm.SUBMIT)
    after = replace(
        request,
        phase=RequestPhase.SUBMITTED,
        submitted_by=actor_id,
        submitted_at=at,
        updated_by=actor_id,
        updated_at=at,
    )
    return _finish(request, after, sm.SUBMIT)


def _apply_approvals(
    request: StoreRequest,
    quantities: Mapping[UUID, Any],
    *,
    actor_id: str,
    at: datetime,
    notes: str | None,
    reason: str | None,
) -> TransferOutcome:
    sm.check_transition(request, sm.APPROVE)
    _require_quantities(quantities)

    planned: list[tuple[StoreRequestItem, Decimal]] = []
    for item_id, raw in quantities.items():
        item = request.get_item(item_id)
        approved = _decimal("approved_quantity", raw)
        if approved < 0:
            raise ValidationError("approved_quantity", "cannot be negative")
        if approved > item.requested_quantity:
            raise QuantityInvariantViolationError(
                str(item.id), "approved_quantity", str(approved),
                str(item.requested_quantity),
                "approved quantity cannot exceed requested quantity",
            )
        planned.append((item, approved))

    changed: dict[UUID, StoreRequestItem] = {}
    entries: list[ItemTransaction] = []
    for item, approved in planned:
        if item.approved_quantity == approved:
            continue
        previous = item.approved_quantity if item.approved_quantity is not None else ZERO
        txn_type = TransactionType.REJECTED if approved == 0 else TransactionType.APPROVED
        entry = item._append(txn_type, previous, approved, actor_id, at, notes, reason)
        changed[item.id] = replace(
            item,
            approved_quantity=approved,
            transactions=item.transactions + (entry,),
        )
        entries.append(entry)

    items = _replace_items(request, changed)
    fully_approved = all(item.approved_quantity is not None for item in items)
    if fully_approved and all(item.approved_quantity == 0 for item in items):
        raise ValidationError(
            "approved_quantity",
            "every item would be approved at zero; reject the request instead",
        )

    after = replace(request, items=items, updated_by=actor_id, updated_at=at)
    if fully_approved:
        after = replace(
            after,
            phase=RequestPhase.APPROVED,
            approved_by=actor_id,
            approved_at=at,
        )
    return _finish(request, after, sm.APPROVE, entries)


def approve(
    request: StoreRequest,
    quantities: Mapping[UUID, Any],
    *,
    actor_id: str,
    at: datetime,
    notes: str | None = None,
) -> TransferOutcome:
    """Record approved quantities for some or all lines.

    The request becomes ``approved`` once every line has an approval.
    Approving a line again while still submitted appends the difference.
    """
    return _apply_approvals(
        request, quantities, actor_id=actor_id, at=at, notes=notes, reason=None,
    )


def reject_item(
    request: StoreRequest,
    item_id: UUID,
    reason: str,
    *,
    actor_id: str,
    at: datetime,
) -> TransferOutcome:
    """Approve a single line at zero, recording why."""
    if not (reason and reason.strip()):
        raise ValidationError("reason", "a reason is required to reject an item")
    return _apply_approvals(
        request, {item_id: ZERO}, actor_id=actor_id, at=at, notes=None, reason=reason,
    )


def reject(
    request: StoreRequest,
    reason: str,
    *,
    actor_id: str,
    at: datetime,
) -> TransferOutcome:
    sm.check_transition(request, sm.REJECT, reason)
    after = replace(
        request,
        phase=RequestPhase.REJECTED,
        rejection_reason=reason,
        rejected_by=actor_id,
        rejected_at=at,
        updated_by=actor_id,
        updated_at=at,
    )
    return _finish(request, after, sm.REJECT)


def issue(
    request: StoreRequest,
    quantities: Mapping[UUID, Any],
    *,
    actor_id: str,
    at: datetime,
    notes: str | None = None,
) -> TransferOutcome:
    """Issue stock against approved quantities."""
    sm.check_transition(request, sm.ISSUE)
    _require_quantities(quantities)

    planned: list[tuple[StoreRequestItem, Decimal]] = []
    for item_id, raw in quantities.items():
        item = request.get_item(item_id)
        delta = _decimal("issued_quantity", raw)
        if delta <= 0:
            raise ValidationError("issued_quantity", "must be greater than zero")
        if item.approved_quantity is None or delta > item.remaining_quantity:
            raise QuantityInvariantViolationError(
                str(item.id), "issued_quantity",
                str(item.issued_quantity + delta),
                str(item.approved_quantity if item.approved_quantity is not None else ZERO),
                f"issue of {delta} exceeds remaining quantity {item.remaining_quantity}",
            )
        planned.append((item, delta))

    changed: dict[UUID, StoreRequestItem] = {}
    entries: list[ItemTransaction] = []
    for item, delta in planned:
        new_issued = item.issued_quantity + delta
        entry = item._append(
            TransactionType.ISSUED, item.issued_quantity, new_issued, actor_id, at, notes,
        )
        changed[item.id] = replace(
            item,
            issued_quantity=new_issued,
            transactions=item.transactions + (entry,),
        )
        entries.append(entry)

    items = _replace_items(request, changed)
    after = replace(request, items=items, updated_by=actor_id, updated_at=at)
    if after.fulfilled_at is None and issuing_axis(items) is IssuingAxis.FULFILLED:
        after = replace(after, fulfilled_by=actor_id, fulfilled_at=at)
    return _finish(request, after, sm.ISSUE, entries)


def receive(
    request: StoreRequest,
    quantities: Mapping[UUID, Any],
    *,
    actor_id: str,
    at: datetime,
    notes: str | None = None,
) -> TransferOutcome:
    """Receive issued stock at the requesting store."""
    sm.check_transition(request, sm.RECEIVE)
    _require_quantities(quantities)

    planned: list[tuple[StoreRequestItem, Decimal]] = []
    for item_id, raw in quantities.items():
        item = request.get_item(item_id)
        delta = _decimal("received_quantity", raw)
        if delta <= 0:
            raise ValidationError("received_quantity", "must be greater than zero")
        if delta > item.remaining_receiving_quantity:
            raise QuantityInvariantViolationError(
                str(item.id), "received_quantity",
                str(item.received_quantity + delta), str(item.issued_quantity),
                f"receipt of {delta} exceeds issued-but-unreceived quantity "
                f"{item.remaining_receiving_quantity}",
            )
        planned.append((item, delta))

    changed: dict[UUID, StoreRequestItem] = {}
    entries: list[ItemTransaction] = []
    for item, delta in planned:
        new_received = item.received_quantity + delta
        entry = item._append(
            TransactionType.RECEIVED, item.received_quantity, new_received, actor_id, at, notes,
        )
        changed[item.id] = replace(
            item,
            received_quantity=new_received,
            transactions=item.transactions + (entry,),
        )
        entries.append(entry)

    after = replace(
        request,
        items=_replace_items(request, changed),
        updated_by=actor_id,
        updated_at=at,
    )
    if after.status is RequestStatus.FULLY_RECEIVED:
        after = replace(
            after,
            received_by=actor_id,
            received_at=at,
            actual_delivery_date=at.date(),
        )
    return _finish(request, after, sm.RECEIVE, entries)


def cancel(
    request: StoreRequest,
    reason: str,
    *,
    actor_id: str,
    at: datetime,
) -> TransferOutcome:
    """Close the request; quantities already issued or received stay as they are."""
    sm.check_transition(request, sm.CANCEL, reason)
    after = replace(
        request,
        phase=RequestPhase.CANCELLED,
        cancellation_reason=reason,
        cancelled_by=actor_id,
        cancelled_at=at,
        updated_by=actor_id,
        updated_at=at,
    )
    return _finish(request, after, sm.CANCEL)


# ---------------------------------------------------------------------------
# Bulk quantity helpers
# ---------------------------------------------------------------------------


def pending_approval_quantities(request: StoreRequest) -> dict[UUID, Decimal]:
    """Full requested quantity for every line without an approval yet."""
    return {
        item.id: item.requested_quantity
        for item in request.items
        if item.approved_quantity is None
    }


def remaining_issue_quantities(request: StoreRequest) -> dict[UUID, Decimal]:
    return {
        item.id: item.remaining_quantity
        for item in request.items
        if item.remaining_quantity > 0
    }


def remaining_receipt_quantities(request: StoreRequest) -> dict[UUID, Decimal]:
    return {
        item.id: item.remaining_receiving_quantity
        for item in request.items
        if item.remaining_receiving_quantity > 0
    }
