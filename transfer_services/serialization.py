"""
transfer_services.serialization -- the API boundary for store requests.

Responsibility:
    Converts domain objects and read models to plain snake_case dicts
    (decimals as strings, ISO dates, UUIDs as strings) and parses inbound
    payloads into the typed values the kernel expects.  No other module
    converts field names or parses wire values.

Architecture position:
    Services layer.  Used by the workflow service on the way in and on the
    way out.  Never imported by ``transfer_kernel``.

Failure modes:
    Every malformed value raises ValidationError naming the offending field.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping
from uuid import UUID

from transfer_kernel.domain.ledger import ItemTransaction, ReconciliationResult
from transfer_kernel.domain.status import Priority, RequestStatus, RequestType
from transfer_kernel.domain.transfer import (
    StoreRequest,
    StoreRequestItem,
    UPDATABLE_HEADER_FIELDS,
    NewItem,
)
from transfer_kernel.exceptions import StoreTransferError, ValidationError
from transfer_kernel.selectors.store_request_selector import (
    SORTABLE_FIELDS,
    HistoryEntry,
    Page,
    StatusStats,
    StoreRequestFilter,
    StoreRequestSummary,
)

# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------


def parse_decimal(field: str, value: Any) -> Decimal:
    """Strings, ints, floats and Decimals become a finite Decimal.

    Floats go through ``str()`` so ``0.1`` parses as ``Decimal("0.1")``.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, f"expected a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(field, f"'{value}' is not a number") from None
    else:
        raise ValidationError(field, f"expected a number, got {type(value).__name__}")
    if not result.is_finite():
        raise ValidationError(field, "must be a finite number")
    return result


def parse_optional_decimal(field: str, value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return parse_decimal(field, value)


def parse_date(field: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise ValidationError(field, f"'{value}' is not an ISO date") from None
    raise ValidationError(field, f"expected an ISO date, got {value!r}")


def parse_optional_date(field: str, value: Any) -> date | None:
    if value is None or value == "":
        return None
    return parse_date(field, value)


def parse_uuid(field: str, value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value.strip())
        except ValueError:
            raise ValidationError(field, f"'{value}' is not a valid id") from None
    raise ValidationError(field, f"expected an id, got {value!r}")


def _parse_choice(field: str, value: Any, enum_cls):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field, f"'{value}' is not one of: {allowed}") from None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateRequestInput:
    """Parsed create payload.  Absent optional fields stay None."""

    request_type: RequestType
    request_date: date
    requesting_store_id: str
    issuing_store_id: str
    items: tuple[NewItem, ...]
    currency_id: str | None = None
    exchange_rate: Decimal | None = None
    priority: Priority | None = None
    expected_delivery_date: date | None = None
    notes: str | None = None
    reference_number: str | None = None


def parse_new_item(payload: Mapping[str, Any], position: int = 0) -> NewItem:
    if not isinstance(payload, Mapping):
        raise ValidationError("items", f"item {position} must be an object")
    product_id = _optional_str(payload.get("product_id"))
    if product_id is None:
        raise ValidationError("product_id", f"is required on item {position}")
    raw_id = payload.get("id")
    return NewItem(
        product_id=product_id,
        requested_quantity=parse_decimal(
            "requested_quantity", payload.get("requested_quantity"),
        ),
        unit_cost=parse_decimal("unit_cost", payload.get("unit_cost", 0)),
        currency_id=_optional_str(payload.get("currency_id")),
        exchange_rate=parse_optional_decimal("exchange_rate", payload.get("exchange_rate")),
        notes=payload.get("notes"),
        id=parse_uuid("id", raw_id) if raw_id not in (None, "") else None,
    )


def parse_new_items(value: Any) -> tuple[NewItem, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError("items", "must be a list")
    return tuple(parse_new_item(item, i) for i, item in enumerate(value))


def parse_create_request(payload: Mapping[str, Any]) -> CreateRequestInput:
    for name in ("request_date", "requesting_store_id", "issuing_store_id"):
        if payload.get(name) in (None, ""):
            raise ValidationError(name, "is required")
    if "items" not in payload:
        raise ValidationError("items", "at least one item is required")

    priority = payload.get("priority")
    return CreateRequestInput(
        request_type=_parse_choice(
            "request_type", payload.get("request_type", RequestType.REQUEST.value), RequestType,
        ),
        request_date=parse_date("request_date", payload["request_date"]),
        requesting_store_id=str(payload["requesting_store_id"]),
        issuing_store_id=str(payload["issuing_store_id"]),
        items=parse_new_items(payload["items"]),
        currency_id=_optional_str(payload.get("currency_id")),
        exchange_rate=parse_optional_decimal("exchange_rate", payload.get("exchange_rate")),
        priority=_parse_choice("priority", priority, Priority) if priority else None,
        expected_delivery_date=parse_optional_date(
            "expected_delivery_date", payload.get("expected_delivery_date"),
        ),
        notes=payload.get("notes"),
        reference_number=_optional_str(payload.get("reference_number")),
    )


def parse_update_request(
    payload: Mapping[str, Any],
) -> tuple[dict[str, Any], tuple[NewItem, ...] | None]:
    """Split an update payload into header changes and an optional line set.

    Only keys present in the payload are changed.  ``items`` absent (or
    None) keeps the existing lines.
    """
    changes: dict[str, Any] = {}
    for key, value in payload.items():
        if key == "items":
            continue
        if key not in UPDATABLE_HEADER_FIELDS:
            raise ValidationError(key, "cannot be changed on a store request")
        if key == "request_date":
            changes[key] = parse_date(key, value)
        elif key == "expected_delivery_date":
            changes[key] = parse_optional_date(key, value)
        elif key == "exchange_rate":
            changes[key] = parse_optional_decimal(key, value)
        elif key == "priority":
            changes[key] = _parse_choice(key, value, Priority)
        elif key in ("requesting_store_id", "issuing_store_id", "currency_id"):
            changes[key] = _optional_str(value)
        else:
            changes[key] = value

    raw_items = payload.get("items")
    items = parse_new_items(raw_items) if raw_items is not None else None
    return changes, items


_QUANTITY_KEYS = ("quantity", "approved_quantity", "issued_quantity", "received_quantity")


def parse_quantities(value: Any) -> dict[UUID, Decimal]:
    """Per-line quantities from ``{item_id: qty}`` or ``[{item_id, quantity}]``.

    In the list form the quantity may also be given as ``approved_quantity``,
    ``issued_quantity`` or ``received_quantity``.  An id listed twice is an
    error.
    """
    pairs: list[tuple[Any, Any]] = []
    if isinstance(value, Mapping):
        pairs = list(value.items())
    elif isinstance(value, (list, tuple)):
        for i, entry in enumerate(value):
            if not isinstance(entry, Mapping) or "item_id" not in entry:
                raise ValidationError("items", f"entry {i} must have an item_id")
            key = next((k for k in _QUANTITY_KEYS if k in entry), None)
            if key is None:
                raise ValidationError("items", f"entry {i} has no quantity")
            pairs.append((entry["item_id"], entry[key]))
    else:
        raise ValidationError("items", "expected a mapping or a list of item quantities")

    result: dict[UUID, Decimal] = {}
    for raw_id, raw_qty in pairs:
        item_id = parse_uuid("item_id", raw_id)
        if item_id in result:
            raise ValidationError("items", f"item {item_id} is listed twice")
        result[item_id] = parse_decimal("quantity", raw_qty)
    return result


def _csv(value: Any) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        parts: Iterable[str] = value.split(",")
    else:
        parts = (str(v) for v in value)
    return tuple(p.strip() for p in parts if p.strip())


def parse_filter(params: Mapping[str, Any] | None) -> StoreRequestFilter:
    """Listing filters from query-style params.

    ``status`` and ``exclude_status`` accept a comma separated list.
    """
    params = params or {}
    statuses = _csv(params.get("status"))
    excluded = _csv(params.get("exclude_status"))
    for name in statuses + excluded:
        _parse_choice("status", name, RequestStatus)
    priority = _optional_str(params.get("priority"))
    if priority is not None:
        _parse_choice("priority", priority, Priority)
    request_type = _optional_str(params.get("request_type"))
    if request_type is not None:
        _parse_choice("request_type", request_type, RequestType)
    return StoreRequestFilter(
        search=_optional_str(params.get("search")),
        statuses=statuses,
        exclude_statuses=excluded,
        priority=priority,
        request_type=request_type,
        requesting_store_id=_optional_str(params.get("requesting_store_id")),
        issuing_store_id=_optional_str(params.get("issuing_store_id")),
        store_id=_optional_str(params.get("store_id")),
        date_from=parse_optional_date("date_from", params.get("date_from")),
        date_to=parse_optional_date("date_to", params.get("date_to")),
    )


def parse_paging(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """``sort_by``, ``sort_order`` (asc/desc), ``page`` and ``page_size``."""
    params = params or {}
    order = str(params.get("sort_order", "desc")).lower()
    if order not in ("asc", "desc"):
        raise ValidationError("sort_order", "must be 'asc' or 'desc'")
    try:
        page = int(params.get("page", 1))
        page_size = int(params.get("page_size", 20))
    except (TypeError, ValueError):
        raise ValidationError("page", "page and page_size must be integers") from None
    sort_by = str(params.get("sort_by", "created_at"))
    if sort_by not in SORTABLE_FIELDS:
        allowed = ", ".join(sorted(SORTABLE_FIELDS))
        raise ValidationError("sort_by", f"'{sort_by}' is not one of: {allowed}")
    if page < 1:
        raise ValidationError("page", "must be at least 1")
    if page_size < 1:
        raise ValidationError("page_size", "must be at least 1")
    return {
        "sort_by": sort_by,
        "descending": order == "desc",
        "page": page,
        "page_size": page_size,
    }


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _iso(value: date | datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def transaction_to_dict(txn: ItemTransaction) -> dict[str, Any]:
    return {
        "id": str(txn.id),
        "item_id": str(txn.item_id),
        "sequence": txn.sequence,
        "transaction_type": txn.transaction_type.value,
        "quantity": _dec(txn.quantity),
        "previous_quantity": _dec(txn.previous_quantity),
        "new_quantity": _dec(txn.new_quantity),
        "performed_by": txn.performed_by,
        "performed_at": _iso(txn.performed_at),
        "notes": txn.notes,
        "reason": txn.reason,
    }


def item_to_dict(
    request: StoreRequest,
    item: StoreRequestItem,
    line_number: int,
    include_transactions: bool = True,
) -> dict[str, Any]:
    data = {
        "id": str(item.id),
        "line_number": line_number,
        "product_id": item.product_id,
        "status": request.item_status(item).value,
        "requested_quantity": _dec(item.requested_quantity),
        "approved_quantity": _dec(item.approved_quantity),
        "issued_quantity": _dec(item.issued_quantity),
        "received_quantity": _dec(item.received_quantity),
        "fulfilled_quantity": _dec(item.fulfilled_quantity),
        "remaining_quantity": _dec(item.remaining_quantity),
        "remaining_receiving_quantity": _dec(item.remaining_receiving_quantity),
        "unit_cost": _dec(item.unit_cost),
        "currency_id": item.currency_id,
        "exchange_rate": _dec(item.exchange_rate),
        "total_cost": _dec(item.total_cost),
        "equivalent_amount": _dec(item.equivalent_amount),
        "notes": item.notes,
    }
    if include_transactions:
        data["transactions"] = [transaction_to_dict(t) for t in item.transactions]
    return data


def request_to_dict(request: StoreRequest, include_transactions: bool = True) -> dict[str, Any]:
    summary = request.value_summary
    return {
        "id": str(request.id),
        "reference_number": request.reference_number,
        "request_type": request.request_type.value,
        "request_date": _iso(request.request_date),
        "requesting_store_id": request.requesting_store_id,
        "issuing_store_id": request.issuing_store_id,
        "status": request.status.value,
        "priority": request.priority.value,
        "currency_id": request.currency_id,
        "exchange_rate": _dec(request.exchange_rate),
        "total_items": summary.total_items,
        "total_value": _dec(summary.total_value),
        "total_value_currency_id": summary.currency_id,
        "expected_delivery_date": _iso(request.expected_delivery_date),
        "actual_delivery_date": _iso(request.actual_delivery_date),
        "notes": request.notes,
        "rejection_reason": request.rejection_reason,
        "cancellation_reason": request.cancellation_reason,
        "created_by": request.created_by,
        "created_at": _iso(request.created_at),
        "updated_by": request.updated_by,
        "updated_at": _iso(request.updated_at),
        "submitted_by": request.submitted_by,
        "submitted_at": _iso(request.submitted_at),
        "approved_by": request.approved_by,
        "approved_at": _iso(request.approved_at),
        "rejected_by": request.rejected_by,
        "rejected_at": _iso(request.rejected_at),
        "fulfilled_by": request.fulfilled_by,
        "fulfilled_at": _iso(request.fulfilled_at),
        "received_by": request.received_by,
        "received_at": _iso(request.received_at),
        "cancelled_by": request.cancelled_by,
        "cancelled_at": _iso(request.cancelled_at),
        "version": request.version,
        "items": [
            item_to_dict(request, item, n, include_transactions)
            for n, item in enumerate(request.items, start=1)
        ],
    }


def summary_to_dict(summary: StoreRequestSummary) -> dict[str, Any]:
    return {
        "id": str(summary.id),
        "reference_number": summary.reference_number,
        "request_type": summary.request_type,
        "request_date": _iso(summary.request_date),
        "requesting_store_id": summary.requesting_store_id,
        "issuing_store_id": summary.issuing_store_id,
        "priority": summary.priority,
        "status": summary.status,
        "currency_id": summary.currency_id,
        "total_items": summary.total_items,
        "total_value": _dec(summary.total_value),
        "expected_delivery_date": _iso(summary.expected_delivery_date),
        "created_at": _iso(summary.created_at),
        "version": summary.version,
    }


def page_to_dict(page: Page) -> dict[str, Any]:
    return {
        "items": [summary_to_dict(s) for s in page.items],
        "total": page.total,
        "page": page.page,
        "page_size": page.page_size,
        "total_pages": page.total_pages,
    }


def stats_to_dict(stats: StatusStats) -> dict[str, Any]:
    counts = {status.value: 0 for status in RequestStatus}
    counts.update(stats.counts)
    return {"total": stats.total, "by_status": counts}


def history_to_list(entries: Iterable[HistoryEntry]) -> list[dict[str, Any]]:
    return [
        {
            **transaction_to_dict(entry.transaction),
            "product_id": entry.product_id,
            "line_number": entry.line_number,
        }
        for entry in entries
    ]


def reconciliation_to_dict(
    request_id: UUID,
    results: Iterable[ReconciliationResult],
) -> dict[str, Any]:
    results = list(results)
    return {
        "request_id": str(request_id),
        "reconciled": all(r.is_reconciled for r in results),
        "items": [{**r.to_dict(), "reconciled": r.is_reconciled} for r in results],
    }


def error_details(exc: StoreTransferError) -> dict[str, Any]:
    """Public structured attributes of a kernel error, JSON-safe."""
    details: dict[str, Any] = {}
    for key, value in exc.details().items():
        if isinstance(value, (Decimal, UUID)):
            value = str(value)
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        details[key] = value
    return details
