"""
Typed Exception Hierarchy for the Transfer Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure of a transfer operation is recoverable at the caller: the
workflow service turns it into a structured failure result and the caller
either retries (concurrency) or shows it to the user unmodified.  Callers
must therefore be able to tell failures apart without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.issue_request(request_id, {line_id: Decimal("50")}, actor_id)
    except QuantityInvariantViolationError as e:
        api_response(code=e.code, item=e.item_id, limit=e.limit)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StoreTransferError:

    StoreTransferError (base)
    |
    +-- InvalidTransitionError
    +-- QuantityInvariantViolationError
    +-- CurrencyError
    |   +-- NoApplicableRateError
    |   +-- InvalidExchangeRateError
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    +-- ValidationError
    |   +-- StoreNotEligibleError
    +-- StoreRequestNotFoundError
    +-- PermissionDeniedError
    +-- LedgerDriftError
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                          | When Raised
------------------------------|-----------------------------------------------
INVALID_TRANSITION            | Action not legal from the current status
QUANTITY_INVARIANT_VIOLATION  | Delta would break issued <= approved <= requested
                              | or received <= issued
NO_APPLICABLE_RATE            | No active rate effective on or before the date
INVALID_EXCHANGE_RATE         | Rate is zero or negative
CONCURRENT_MODIFICATION       | Version mismatch / stale write (retry)
VALIDATION_ERROR              | Malformed input
STORE_NOT_ELIGIBLE            | Store inactive or lacks transfer capability
STORE_REQUEST_NOT_FOUND       | Unknown request id
PERMISSION_DENIED             | Authorization policy refused the action
LEDGER_DRIFT                  | Ledger replay disagrees with stored counters
IMMUTABILITY_VIOLATION        | Attempt to rewrite a ledger row or frozen field

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain failures must be catchable
   as a group without also catching programming errors.

2. ``code`` is a class attribute so it is readable without instantiation.

3. ConcurrencyError is its own category so middleware can auto-retry it
   while surfacing everything else unmodified.
"""

from typing import Any


class StoreTransferError(Exception):
    """
    Base exception for all transfer kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STORE_TRANSFER_ERROR"

    def details(self) -> dict[str, Any]:
        """Public structured attributes (item_id, counter, field, ...)."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}


class InvalidTransitionError(StoreTransferError):
    """The requested action is not legal from the request's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, request_id: str, action: str, current_status: str, reason: str = ""):
        self.request_id = request_id
        self.action = action
        self.current_status = current_status
        self.reason = reason
        message = f"Cannot {action} store request {request_id} in status '{current_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class QuantityInvariantViolationError(StoreTransferError):
    """
    A quantity change would break a line's ordering invariant.

    Raised before any ledger entry is written; the aggregate is unchanged.
    """

    code: str = "QUANTITY_INVARIANT_VIOLATION"

    def __init__(
        self,
        item_id: str,
        counter: str,
        attempted: str,
        limit: str,
        reason: str,
    ):
        self.item_id = item_id
        self.counter = counter
        self.attempted = attempted
        self.limit = limit
        self.reason = reason
        super().__init__(
            f"Quantity invariant violated on item {item_id} ({counter}): "
            f"attempted {attempted}, limit {limit} - {reason}"
        )


# Currency-related exceptions


class CurrencyError(StoreTransferError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class NoApplicableRateError(CurrencyError):
    """No active exchange rate is effective for the pair on the given date."""

    code: str = "NO_APPLICABLE_RATE"

    def __init__(self, from_currency: str, to_currency: str, as_of: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of = as_of
        super().__init__(
            f"No applicable exchange rate for {from_currency}/{to_currency} as of {as_of}"
        )


class InvalidExchangeRateError(CurrencyError):
    """Exchange rate value is invalid (zero or negative)."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, rate: str, reason: str):
        self.rate = rate
        self.reason = reason
        super().__init__(f"Invalid exchange rate {rate}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(StoreTransferError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    The request was modified by another transaction.

    Callers retry with a fresh read.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        request_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        detail = ""
        if expected_version is not None:
            detail = f" (expected version {expected_version}, found {actual_version})"
        super().__init__(
            f"Store request {request_id} was modified by another transaction{detail}"
        )


# Validation exceptions


class ValidationError(StoreTransferError):
    """Malformed or inconsistent input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class StoreNotEligibleError(ValidationError):
    """A store may not take part in the transfer in the requested role."""

    code: str = "STORE_NOT_ELIGIBLE"

    def __init__(self, store_id: str, role: str, reason: str):
        self.store_id = store_id
        self.role = role
        super().__init__(field=f"{role}_store_id", reason=f"store {store_id} {reason}")


class StoreRequestNotFoundError(StoreTransferError):
    """Store request with given ID was not found."""

    code: str = "STORE_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Store request not found: {request_id}")


class PermissionDeniedError(StoreTransferError):
    """The acting user may not perform the action."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, permission: str):
        self.actor_id = actor_id
        self.permission = permission
        super().__init__(f"Actor {actor_id} lacks permission '{permission}'")


class LedgerDriftError(StoreTransferError):
    """Replaying an item's ledger does not reproduce its stored counters."""

    code: str = "LEDGER_DRIFT"

    def __init__(self, request_id: str, drifted_items: list[dict]):
        self.request_id = request_id
        self.drifted_items = drifted_items
        super().__init__(
            f"Ledger drift on store request {request_id}: "
            f"{len(drifted_items)} item(s) disagree with their ledger"
        )


class ImmutabilityViolationError(StoreTransferError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
