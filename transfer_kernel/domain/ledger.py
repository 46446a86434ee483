"""
Quantity ledger -- append-only per-item transactions, fold and reconcile.

Responsibility:
    Defines the immutable ``ItemTransaction`` ledger row, replays a sequence
    of rows into counter totals (``fold``), and compares those totals with
    the counters stored on an item (``reconcile``).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Rows are frozen; history only changes through compensating rows.
    - ``quantity == new_quantity - previous_quantity`` on every row.
    - Folding an item's rows from empty state reproduces its counters.

Failure modes:
    - LedgerDriftError from ``assert_reconciled`` when stored counters and
      the replayed ledger disagree.

Audit relevance:
    The ledger is the source of truth for every quantity; stored counters
    on the item row are a cache that ``reconcile`` can always rebuild.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Sequence
from uuid import UUID, uuid4

from transfer_kernel.exceptions import LedgerDriftError

ZERO = Decimal("0")


class TransactionType(str, Enum):
    """Kinds of quantity movement recorded against an item."""

    REQUESTED = "requested"
    APPROVED = "approved"
    ISSUED = "issued"
    RECEIVED = "received"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class Counter(str, Enum):
    """Item quantity counters a transaction can move."""

    REQUESTED = "requested_quantity"
    APPROVED = "approved_quantity"
    ISSUED = "issued_quantity"
    RECEIVED = "received_quantity"


COUNTER_FOR_TYPE: dict[TransactionType, Counter] = {
    TransactionType.REQUESTED: Counter.REQUESTED,
    TransactionType.APPROVED: Counter.APPROVED,
    TransactionType.REJECTED: Counter.APPROVED,
    TransactionType.ISSUED: Counter.ISSUED,
    TransactionType.RECEIVED: Counter.RECEIVED,
    # Fulfilment is receipt; kept readable for rows written by older clients.
    TransactionType.FULFILLED: Counter.RECEIVED,
}


@dataclass(frozen=True)
class ItemTransaction:
    """One immutable ledger row.

    ``previous_quantity`` / ``new_quantity`` are values of the counter the
    transaction type moves (see ``COUNTER_FOR_TYPE``).
    """

    item_id: UUID
    sequence: int
    transaction_type: TransactionType
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    performed_by: str
    performed_at: datetime
    notes: str | None = None
    reason: str | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.new_quantity - self.previous_quantity != self.quantity:
            raise ValueError(
                f"Ledger row {self.id}: quantity {self.quantity} does not equal "
                f"{self.new_quantity} - {self.previous_quantity}"
            )
        if self.sequence < 1:
            raise ValueError(f"Ledger row {self.id}: sequence must start at 1")

    @property
    def counter(self) -> Counter:
        return COUNTER_FOR_TYPE[self.transaction_type]

    @classmethod
    def for_change(
        cls,
        *,
        item_id: UUID,
        sequence: int,
        transaction_type: TransactionType,
        previous_quantity: Decimal,
        new_quantity: Decimal,
        performed_by: str,
        performed_at: datetime,
        notes: str | None = None,
        reason: str | None = None,
    ) -> ItemTransaction:
        """Build a row from before/after values; the delta is derived."""
        return cls(
            item_id=item_id,
            sequence=sequence,
            transaction_type=transaction_type,
            quantity=new_quantity - previous_quantity,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            performed_by=performed_by,
            performed_at=performed_at,
            notes=notes,
            reason=reason,
        )


@dataclass(frozen=True)
class LedgerTotals:
    """Counter values obtained by replaying a ledger.

    ``approved`` stays None until an approved/rejected row is replayed.
    """

    requested: Decimal = ZERO
    approved: Decimal | None = None
    issued: Decimal = ZERO
    received: Decimal = ZERO
    entry_count: int = 0

    def value_of(self, counter: Counter) -> Decimal | None:
        return {
            Counter.REQUESTED: self.requested,
            Counter.APPROVED: self.approved,
            Counter.ISSUED: self.issued,
            Counter.RECEIVED: self.received,
        }[counter]


def fold(transactions: Iterable[ItemTransaction]) -> LedgerTotals:
    """Replay ledger rows in the order given, starting from empty state."""
    requested = ZERO
    approved: Decimal | None = None
    issued = ZERO
    received = ZERO
    count = 0
    for txn in transactions:
        counter = txn.counter
        if counter is Counter.REQUESTED:
            requested += txn.quantity
        elif counter is Counter.APPROVED:
            approved = (approved if approved is not None else ZERO) + txn.quantity
        elif counter is Counter.ISSUED:
            issued += txn.quantity
        else:
            received += txn.quantity
        count += 1
    return LedgerTotals(
        requested=requested,
        approved=approved,
        issued=issued,
        received=received,
        entry_count=count,
    )


def next_sequence(transactions: Sequence[ItemTransaction]) -> int:
    if not transactions:
        return 1
    return max(t.sequence for t in transactions) + 1


@dataclass(frozen=True)
class CounterDrift:
    counter: Counter
    stored: Decimal | None
    replayed: Decimal | None


@dataclass(frozen=True)
class ReconciliationResult:
    """Per-item comparison of stored counters against the replayed ledger."""

    item_id: UUID
    replayed: LedgerTotals
    drift: tuple[CounterDrift, ...] = ()

    @property
    def is_reconciled(self) -> bool:
        return not self.drift

    def to_dict(self) -> dict:
        return {
            "item_id": str(self.item_id),
            "entry_count": self.replayed.entry_count,
            "drift": [
                {
                    "counter": d.counter.value,
                    "stored": None if d.stored is None else str(d.stored),
                    "replayed": None if d.replayed is None else str(d.replayed),
                }
                for d in self.drift
            ],
        }


def reconcile(item, transactions: Iterable[ItemTransaction]) -> ReconciliationResult:
    """Compare ``item``'s counters with the fold of ``transactions``.

    ``item`` is anything exposing ``id`` and the four ``*_quantity`` counters.
    """
    replayed = fold(transactions)
    drift: list[CounterDrift] = []
    for counter in Counter:
        stored = getattr(item, counter.value)
        expected = replayed.value_of(counter)
        if stored != expected:
            drift.append(CounterDrift(counter=counter, stored=stored, replayed=expected))
    return ReconciliationResult(item_id=item.id, replayed=replayed, drift=tuple(drift))


def assert_reconciled(request_id, results: Iterable[ReconciliationResult]) -> None:
    """Raise LedgerDriftError if any result shows drift."""
    drifted = [r.to_dict() for r in results if not r.is_reconciled]
    if drifted:
        raise LedgerDriftError(str(request_id), drifted)
