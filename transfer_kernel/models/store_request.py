"""
Module: transfer_kernel.models.store_request
Responsibility: ORM persistence for store requests, their lines and the
    per-line quantity ledger.  Maps the frozen aggregate in
    ``transfer_kernel.domain.transfer`` to three tables.

Architecture position: Kernel > Models.  Inherits from db/base.py.  Stores,
    products and currencies are external identifiers with NO foreign keys.

Invariants enforced:
    - Quantities, costs and rates are exact decimals -- NEVER float.
    - ``phase`` is the only stored lifecycle field the domain reads back;
      ``status`` columns are write-time projections for filtering.
    - Header carries an optimistic ``version`` (SQLAlchemy version_id_col).
    - Ledger rows are unique per (item_id, sequence) and append-only
      (db/immutability.py).

Failure modes:
    - StaleDataError on flush when another transaction bumped ``version``.
    - IntegrityError on duplicate reference number or ledger sequence.

Audit relevance:
    ``store_request_item_transactions`` is the authoritative history of
    every quantity; item counters are rebuilt from it by reconciliation.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from transfer_kernel.db.base import Base, TrackedBase, UUIDString
from transfer_kernel.db.types import PreciseDecimal, UTCDateTime


class StoreRequestModel(TrackedBase):
    """
    ORM model for a store request header.

    Maps to: transfer_kernel.domain.transfer.StoreRequest (frozen dataclass).
    """

    __tablename__ = "store_requests"

    __table_args__ = (
        Index("idx_store_request_status", "status"),
        Index("idx_store_request_phase", "phase"),
        Index("idx_store_request_date", "request_date"),
        Index("idx_store_request_requesting", "requesting_store_id"),
        Index("idx_store_request_issuing", "issuing_store_id"),
    )

    reference_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)

    requesting_store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    issuing_store_id: Mapped[str] = mapped_column(String(100), nullable=False)

    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    currency_id: Mapped[str] = mapped_column(String(100), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 18), nullable=False)

    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Lifecycle: phase is stored, status is a projection
    phase: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="draft")

    submitted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    fulfilled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    received_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Derived totals (projection)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_value: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False, default=Decimal("0"))

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    items: Mapped[list["StoreRequestItemModel"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="StoreRequestItemModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert to the frozen StoreRequest aggregate (lines and ledger included)."""
        from transfer_kernel.domain.status import Priority, RequestPhase, RequestType
        from transfer_kernel.domain.transfer import StoreRequest

        return StoreRequest(
            id=self.id,
            reference_number=self.reference_number,
            request_type=RequestType(self.request_type),
            request_date=self.request_date,
            requesting_store_id=self.requesting_store_id,
            issuing_store_id=self.issuing_store_id,
            currency_id=self.currency_id,
            exchange_rate=self.exchange_rate,
            items=tuple(item.to_dto() for item in self.items),
            created_by=self.created_by_id,
            created_at=self.created_at,
            phase=RequestPhase(self.phase),
            priority=Priority(self.priority),
            expected_delivery_date=self.expected_delivery_date,
            actual_delivery_date=self.actual_delivery_date,
            notes=self.notes,
            rejection_reason=self.rejection_reason,
            cancellation_reason=self.cancellation_reason,
            updated_by=self.updated_by_id,
            updated_at=self.updated_at,
            submitted_by=self.submitted_by,
            submitted_at=self.submitted_at,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            fulfilled_by=self.fulfilled_by,
            fulfilled_at=self.fulfilled_at,
            received_by=self.received_by,
            received_at=self.received_at,
            cancelled_by=self.cancelled_by,
            cancelled_at=self.cancelled_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto) -> "StoreRequestModel":
        """Create the header row from a new aggregate; lines are synced separately."""
        model = cls(
            id=dto.id,
            reference_number=dto.reference_number,
            request_type=dto.request_type.value,
            created_by_id=dto.created_by,
            created_at=dto.created_at,
            updated_at=dto.created_at,
        )
        model.apply_header(dto)
        return model

    def apply_header(self, dto) -> None:
        """Copy mutable header state and projections from the aggregate."""
        summary = dto.value_summary
        self.request_date = dto.request_date
        self.requesting_store_id = dto.requesting_store_id
        self.issuing_store_id = dto.issuing_store_id
        self.priority = dto.priority.value
        self.currency_id = dto.currency_id
        self.exchange_rate = dto.exchange_rate
        self.expected_delivery_date = dto.expected_delivery_date
        self.actual_delivery_date = dto.actual_delivery_date
        self.notes = dto.notes
        self.rejection_reason = dto.rejection_reason
        self.cancellation_reason = dto.cancellation_reason
        self.phase = dto.phase.value
        self.status = dto.status.value
        self.submitted_by = dto.submitted_by
        self.submitted_at = dto.submitted_at
        self.approved_by = dto.approved_by
        self.approved_at = dto.approved_at
        self.rejected_by = dto.rejected_by
        self.rejected_at = dto.rejected_at
        self.fulfilled_by = dto.fulfilled_by
        self.fulfilled_at = dto.fulfilled_at
        self.received_by = dto.received_by
        self.received_at = dto.received_at
        self.cancelled_by = dto.cancelled_by
        self.cancelled_at = dto.cancelled_at
        self.total_items = summary.total_items
        self.total_value = summary.total_value
        if dto.updated_at is not None:
            self.updated_at = dto.updated_at
            self.updated_by_id = dto.updated_by

    def __repr__(self) -> str:
        return (
            f"<StoreRequestModel {self.reference_number} "
            f"phase={self.phase} status={self.status} v{self.version}>"
        )


class StoreRequestItemModel(Base):
    """
    ORM model for one line of a store request.

    Maps to: transfer_kernel.domain.transfer.StoreRequestItem.
    """

    __tablename__ = "store_request_items"

    __table_args__ = (
        Index("idx_store_request_item_request", "request_id"),
        Index("idx_store_request_item_product", "product_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("store_requests.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    requested_quantity: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)
    approved_quantity: Mapped[Decimal | None] = mapped_column(PreciseDecimal(38, 9), nullable=True)
    issued_quantity: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)
    currency_id: Mapped[str] = mapped_column(String(100), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 18), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Projections
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="pending")
    equivalent_amount: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)

    request: Mapped[StoreRequestModel] = relationship(back_populates="items")
    transactions: Mapped[list["StoreRequestItemTransactionModel"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="StoreRequestItemTransactionModel.sequence",
    )

    def to_dto(self):
        from transfer_kernel.domain.transfer import StoreRequestItem

        return StoreRequestItem(
            id=self.id,
            product_id=self.product_id,
            requested_quantity=self.requested_quantity,
            unit_cost=self.unit_cost,
            currency_id=self.currency_id,
            exchange_rate=self.exchange_rate,
            approved_quantity=self.approved_quantity,
            issued_quantity=self.issued_quantity,
            received_quantity=self.received_quantity,
            notes=self.notes,
            transactions=tuple(t.to_dto() for t in self.transactions),
        )

    def apply(self, dto, line_number: int, status: str) -> None:
        """Copy line state and projections from the aggregate."""
        self.line_number = line_number
        self.product_id = dto.product_id
        self.requested_quantity = dto.requested_quantity
        self.approved_quantity = dto.approved_quantity
        self.issued_quantity = dto.issued_quantity
        self.received_quantity = dto.received_quantity
        self.unit_cost = dto.unit_cost
        self.currency_id = dto.currency_id
        self.exchange_rate = dto.exchange_rate
        self.notes = dto.notes
        self.status = status
        self.equivalent_amount = dto.equivalent_amount

    def __repr__(self) -> str:
        return (
            f"<StoreRequestItemModel {self.id} product={self.product_id} "
            f"req={self.requested_quantity} appr={self.approved_quantity} "
            f"iss={self.issued_quantity} rec={self.received_quantity}>"
        )


class StoreRequestItemTransactionModel(Base):
    """
    Append-only ledger row for one quantity movement on one line.

    Maps to: transfer_kernel.domain.ledger.ItemTransaction.
    """

    __tablename__ = "store_request_item_transactions"

    __table_args__ = (
        UniqueConstraint("item_id", "sequence", name="uq_item_transaction_sequence"),
        Index("idx_item_transaction_item", "item_id"),
        Index("idx_item_transaction_performed_at", "performed_at"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("store_request_items.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)
    previous_quantity: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)
    new_quantity: Mapped[Decimal] = mapped_column(PreciseDecimal(38, 9), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    item: Mapped[StoreRequestItemModel] = relationship(back_populates="transactions")

    def to_dto(self):
        from transfer_kernel.domain.ledger import ItemTransaction, TransactionType

        return ItemTransaction(
            id=self.id,
            item_id=self.item_id,
            sequence=self.sequence,
            transaction_type=TransactionType(self.transaction_type),
            quantity=self.quantity,
            previous_quantity=self.previous_quantity,
            new_quantity=self.new_quantity,
            performed_by=self.performed_by,
            performed_at=self.performed_at,
            notes=self.notes,
            reason=self.reason,
        )

    @classmethod
    def from_dto(cls, dto) -> "StoreRequestItemTransactionModel":
        return cls(
            id=dto.id,
            item_id=dto.item_id,
            sequence=dto.sequence,
            transaction_type=dto.transaction_type.value,
            quantity=dto.quantity,
            previous_quantity=dto.previous_quantity,
            new_quantity=dto.new_quantity,
            performed_by=dto.performed_by,
            performed_at=dto.performed_at,
            notes=dto.notes,
            reason=dto.reason,
        )

    def __repr__(self) -> str:
        return (
            f"<StoreRequestItemTransactionModel item={self.item_id} "
            f"#{self.sequence} {self.transaction_type} {self.quantity}>"
        )
