"""
ORM-level immutability enforcement for store requests and their ledger.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and refuse the
flush with ImmutabilityViolationError when a protected row would change:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() -----------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                        | When immutable              | Rule
------------------------------|-----------------------------|------------------------------
StoreRequestItemTransaction   | ALWAYS (from creation)      | Ledger rows are append-only
StoreRequestItemTransaction   | DELETE unless request draft | Only a whole draft may go
StoreRequest.reference_number | ALWAYS once assigned        | External identifier
StoreRequest header fields    | After leaving draft         | Stores, currency, rate, date, type
StoreRequest                  | DELETE after leaving draft  | Only drafts may be deleted
ExchangeRate                  | INSERT/UPDATE with rate<=0  | Rates must be positive

Audit metadata (updated_at, updated_by_id) and the optimistic ``version``
column may always change.
"""

from decimal import Decimal

from sqlalchemy import event, text
from sqlalchemy.orm import attributes

from transfer_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidExchangeRateError,
)
from transfer_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_FROZEN_AFTER_DRAFT = (
    "request_type",
    "request_date",
    "requesting_store_id",
    "issuing_store_id",
    "currency_id",
    "exchange_rate",
)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _phase_before_flush(target) -> str:
    """The phase the row had in the database before this flush."""
    history = attributes.get_history(target, "phase")
    if history.deleted:
        return history.deleted[0]
    return target.phase


def _check_transaction_update(mapper, connection, target):
    for attr in mapper.column_attrs:
        if attributes.get_history(target, attr.key).has_changes():
            raise _blocked(
                "StoreRequestItemTransaction", target.id, "UPDATE",
                f"Ledger rows are append-only; cannot modify '{attr.key}'",
                field=attr.key,
            )


def _check_transaction_delete(mapper, connection, target):
    phase = connection.execute(
        text(
            "SELECT r.phase FROM store_requests r "
            "JOIN store_request_items i ON i.request_id = r.id "
            "WHERE i.id = :item_id"
        ),
        {"item_id": str(target.item_id)},
    ).scalar_one_or_none()
    if phase != "draft":
        raise _blocked(
            "StoreRequestItemTransaction", target.id, "DELETE",
            "Ledger rows can only be removed together with a draft line",
        )


def _check_store_request_update(mapper, connection, target):
    ref_history = attributes.get_history(target, "reference_number")
    if ref_history.deleted and ref_history.deleted[0] is not None:
        raise _blocked(
            "StoreRequest", target.id, "UPDATE",
            "Reference number cannot change once assigned",
            field="reference_number",
        )

    if _phase_before_flush(target) == "draft":
        return
    for key in _FROZEN_AFTER_DRAFT:
        if attributes.get_history(target, key).deleted:
            raise _blocked(
                "StoreRequest", target.id, "UPDATE",
                f"Field '{key}' is frozen once the request has been submitted",
                field=key,
            )


def _check_store_request_delete(mapper, connection, target):
    if _phase_before_flush(target) != "draft":
        raise _blocked(
            "StoreRequest", target.id, "DELETE",
            "Only draft store requests can be deleted",
        )


def _check_item_delete(mapper, connection, target):
    phase = connection.execute(
        text("SELECT phase FROM store_requests WHERE id = :request_id"),
        {"request_id": str(target.request_id)},
    ).scalar_one_or_none()
    if phase != "draft":
        raise _blocked(
            "StoreRequestItem", target.id, "DELETE",
            "Lines can only be removed while the request is a draft",
        )


def _check_exchange_rate_value(mapper, connection, target):
    rate = target.rate
    if rate is None or Decimal(rate) <= 0:
        logger.error(
            "invalid_exchange_rate_blocked",
            extra={"rate_id": str(target.id), "rate": str(rate)},
        )
        raise InvalidExchangeRateError(str(rate), "rate must be positive")


def _listeners():
    from transfer_kernel.models.reference import ExchangeRateModel
    from transfer_kernel.models.store_request import (
        StoreRequestItemModel,
        StoreRequestItemTransactionModel,
        StoreRequestModel,
    )

    return (
        (StoreRequestItemTransactionModel, "before_update", _check_transaction_update),
        (StoreRequestItemTransactionModel, "before_delete", _check_transaction_delete),
        (StoreRequestModel, "before_update", _check_store_request_update),
        (StoreRequestModel, "before_delete", _check_store_request_delete),
        (StoreRequestItemModel, "before_delete", _check_item_delete),
        (ExchangeRateModel, "before_insert", _check_exchange_rate_value),
        (ExchangeRateModel, "before_update", _check_exchange_rate_value),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability listeners (idempotent).

    Call once at startup after the models are importable.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the listeners.

    WARNING: only for tests that deliberately corrupt data to exercise
    drift detection.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
