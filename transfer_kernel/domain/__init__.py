"""
Pure domain layer.

This package contains the store request aggregate, its state machine,
the quantity ledger and currency equivalence, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time
- I/O

All domain objects are immutable and deterministic.
"""

from transfer_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from transfer_kernel.domain.currency import (
    Currency,
    CurrencyResolver,
    ExchangeRate,
    RateTable,
)
from transfer_kernel.domain.ledger import (
    ItemTransaction,
    LedgerTotals,
    ReconciliationResult,
    TransactionType,
    assert_reconciled,
    fold,
    reconcile,
)
from transfer_kernel.domain.status import (
    ItemStatus,
    Priority,
    RequestPhase,
    RequestStatus,
    RequestType,
    TERMINAL_STATUSES,
    derive_line_status,
    derive_request_status,
)
from transfer_kernel.domain.transfer import (
    NewItem,
    StoreRequest,
    StoreRequestItem,
    TransferOutcome,
)

__all__ = [
    # Time
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Currency
    "Currency",
    "CurrencyResolver",
    "ExchangeRate",
    "RateTable",
    # Ledger
    "ItemTransaction",
    "LedgerTotals",
    "ReconciliationResult",
    "TransactionType",
    "assert_reconciled",
    "fold",
    "reconcile",
    # Status
    "ItemStatus",
    "Priority",
    "RequestPhase",
    "RequestStatus",
    "RequestType",
    "TERMINAL_STATUSES",
    "derive_line_status",
    "derive_request_status",
    # Aggregate
    "NewItem",
    "StoreRequest",
    "StoreRequestItem",
    "TransferOutcome",
]
