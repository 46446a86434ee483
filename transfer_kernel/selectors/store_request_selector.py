"""
StoreRequestSelector -- read models for store requests.

Responsibility:
    Lists store requests with filters, sorting and pagination, counts them
    per status, returns full aggregates and a request's ledger history.

Architecture position:
    Kernel > Selectors -- read-only, no locks.  Filtering on status uses the
    ``status`` projection column written by the repository.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from transfer_kernel.domain.ledger import ItemTransaction
from transfer_kernel.models.store_request import (
    StoreRequestItemModel,
    StoreRequestItemTransactionModel,
    StoreRequestModel,
)
from transfer_kernel.selectors.base import BaseSelector

SORTABLE_FIELDS = {
    "request_date": StoreRequestModel.request_date,
    "created_at": StoreRequestModel.created_at,
    "reference_number": StoreRequestModel.reference_number,
    "priority": StoreRequestModel.priority,
    "status": StoreRequestModel.status,
    "total_value": StoreRequestModel.total_value,
    "expected_delivery_date": StoreRequestModel.expected_delivery_date,
}


@dataclass(frozen=True)
class StoreRequestFilter:
    """Listing filters; every field is optional and they combine with AND."""

    search: str | None = None
    statuses: tuple[str, ...] = ()
    exclude_statuses: tuple[str, ...] = ()
    priority: str | None = None
    request_type: str | None = None
    requesting_store_id: str | None = None
    issuing_store_id: str | None = None
    store_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None


@dataclass(frozen=True)
class StoreRequestSummary:
    """Header-only read model for list views."""

    id: UUID
    reference_number: str
    request_type: str
    request_date: date
    requesting_store_id: str
    issuing_store_id: str
    priority: str
    status: str
    currency_id: str
    total_items: int
    total_value: Decimal
    expected_delivery_date: date | None
    created_at: datetime
    version: int


@dataclass(frozen=True)
class Page:
    items: tuple[StoreRequestSummary, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class HistoryEntry:
    """One ledger row with the line it belongs to."""

    transaction: ItemTransaction
    product_id: str
    line_number: int


@dataclass(frozen=True)
class StatusStats:
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _summary(model: StoreRequestModel) -> StoreRequestSummary:
    return StoreRequestSummary(
        id=model.id,
        reference_number=model.reference_number,
        request_type=model.request_type,
        request_date=model.request_date,
        requesting_store_id=model.requesting_store_id,
        issuing_store_id=model.issuing_store_id,
        priority=model.priority,
        status=model.status,
        currency_id=model.currency_id,
        total_items=model.total_items,
        total_value=model.total_value,
        expected_delivery_date=model.expected_delivery_date,
        created_at=model.created_at,
        version=model.version,
    )


class StoreRequestSelector(BaseSelector[StoreRequestModel]):
    """Read-only queries over store requests."""

    def get(self, request_id: UUID):
        """Full aggregate (lines and ledger) or None."""
        model = self.session.execute(
            select(StoreRequestModel)
            .where(StoreRequestModel.id == request_id)
            .options(
                selectinload(StoreRequestModel.items).selectinload(
                    StoreRequestItemModel.transactions
                )
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def reference_exists(self, reference_number: str) -> bool:
        return self.session.execute(
            select(StoreRequestModel.id)
            .where(StoreRequestModel.reference_number == reference_number)
        ).first() is not None

    def _apply_filter(self, stmt, flt: StoreRequestFilter):
        if flt.search:
            pattern = f"%{flt.search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(StoreRequestModel.reference_number).like(pattern),
                    func.lower(StoreRequestModel.notes).like(pattern),
                )
            )
        if flt.statuses:
            stmt = stmt.where(StoreRequestModel.status.in_(flt.statuses))
        if flt.exclude_statuses:
            stmt = stmt.where(StoreRequestModel.status.not_in(flt.exclude_statuses))
        if flt.priority:
            stmt = stmt.where(StoreRequestModel.priority == flt.priority)
        if flt.request_type:
            stmt = stmt.where(StoreRequestModel.request_type == flt.request_type)
        if flt.requesting_store_id:
            stmt = stmt.where(StoreRequestModel.requesting_store_id == flt.requesting_store_id)
        if flt.issuing_store_id:
            stmt = stmt.where(StoreRequestModel.issuing_store_id == flt.issuing_store_id)
        if flt.store_id:
            stmt = stmt.where(
                or_(
                    StoreRequestModel.requesting_store_id == flt.store_id,
                    StoreRequestModel.issuing_store_id == flt.store_id,
                )
            )
        if flt.date_from:
            stmt = stmt.where(StoreRequestModel.request_date >= flt.date_from)
        if flt.date_to:
            stmt = stmt.where(StoreRequestModel.request_date <= flt.date_to)
        return stmt

    def list(
        self,
        flt: StoreRequestFilter | None = None,
        *,
        sort_by: str = "created_at",
        descending: bool = True,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        """
        One page of request summaries.

        Raises:
            ValueError: for an unknown sort field or a page / page_size < 1.
        """
        flt = flt or StoreRequestFilter()
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by '{sort_by}'")
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        total = self.session.execute(
            self._apply_filter(select(func.count(StoreRequestModel.id)), flt)
        ).scalar_one()

        column = SORTABLE_FIELDS[sort_by]
        order = column.desc() if descending else column.asc()
        rows = self.session.execute(
            self._apply_filter(select(StoreRequestModel), flt)
            .order_by(order, StoreRequestModel.reference_number)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()

        return Page(
            items=tuple(_summary(row) for row in rows),
            total=total,
            page=page,
            page_size=page_size,
        )

    def stats(self, flt: StoreRequestFilter | None = None) -> StatusStats:
        """Count of requests per derived status."""
        flt = flt or StoreRequestFilter()
        stmt = self._apply_filter(
            select(StoreRequestModel.status, func.count(StoreRequestModel.id)),
            flt,
        ).group_by(StoreRequestModel.status)
        return StatusStats(counts={status: count for status, count in self.session.execute(stmt)})

    def history(self, request_id: UUID) -> list[HistoryEntry]:
        """Every ledger row on the request, oldest first."""
        rows = self.session.execute(
            select(StoreRequestItemTransactionModel, StoreRequestItemModel)
            .join(
                StoreRequestItemModel,
                StoreRequestItemModel.id == StoreRequestItemTransactionModel.item_id,
            )
            .where(StoreRequestItemModel.request_id == request_id)
            .order_by(
                StoreRequestItemTransactionModel.performed_at,
                StoreRequestItemModel.line_number,
                StoreRequestItemTransactionModel.sequence,
            )
        ).all()
        return [
            HistoryEntry(
                transaction=txn.to_dto(),
                product_id=item.product_id,
                line_number=item.line_number,
            )
            for txn, item in rows
        ]
