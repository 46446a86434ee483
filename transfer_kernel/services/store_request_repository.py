"""
StoreRequestRepository -- locked load and atomic write-back of the aggregate.

Responsibility:
    Loads a store request with its lines and ledger under a row lock on the
    header, checks the caller's expected version, and writes a
    ``TransferOutcome`` back: header projection, line changes and the new
    ledger rows, in one flush.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits.

Invariants enforced:
    - Mutations load the header with SELECT ... FOR UPDATE.
    - Every write bumps the header ``version`` (version_id_col), even when
      only lines changed, so concurrent writers always conflict.
    - Ledger rows are only ever inserted here, never updated.

Failure modes:
    - StoreRequestNotFoundError for an unknown id.
    - ConcurrentModificationError on version mismatch, stale flush or a
      duplicate ledger sequence.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from transfer_kernel.exceptions import (
    ConcurrentModificationError,
    StoreRequestNotFoundError,
)
from transfer_kernel.logging_config import get_logger
from transfer_kernel.models.store_request import (
    StoreRequestItemModel,
    StoreRequestItemTransactionModel,
    StoreRequestModel,
)
from transfer_kernel.services.base import BaseService

logger = get_logger("services.store_request_repository")


class StoreRequestRepository(BaseService[StoreRequestModel]):
    """Persistence for the store request aggregate."""

    def load(
        self,
        request_id: UUID,
        *,
        for_update: bool = True,
        expected_version: int | None = None,
    ) -> StoreRequestModel:
        stmt = (
            select(StoreRequestModel)
            .where(StoreRequestModel.id == request_id)
            .options(
                selectinload(StoreRequestModel.items).selectinload(
                    StoreRequestItemModel.transactions
                )
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise StoreRequestNotFoundError(str(request_id))

        if expected_version is not None and model.version != expected_version:
            logger.warning(
                "store_request_version_mismatch",
                extra={
                    "request_id": str(request_id),
                    "expected_version": expected_version,
                    "actual_version": model.version,
                },
            )
            raise ConcurrentModificationError(
                str(request_id), expected_version, model.version,
            )
        return model

    def add(self, outcome) -> StoreRequestModel:
        """Insert a newly created aggregate with its opening ledger rows."""
        request = outcome.request
        model = StoreRequestModel.from_dto(request)
        self._sync_items(model, request, outcome)
        self.session.add(model)
        self._flush(request.id)
        logger.debug(
            "store_request_inserted",
            extra={
                "request_id": str(request.id),
                "reference_number": request.reference_number,
                "ledger_rows": len(outcome.entries),
            },
        )
        return model

    def save(self, model: StoreRequestModel, outcome) -> StoreRequestModel:
        """Write an operation's outcome onto a loaded (locked) model."""
        request = outcome.request
        model.apply_header(request)
        self._sync_items(model, request, outcome)
        flag_modified(model, "updated_at")
        self._flush(request.id)
        return model

    def delete(self, model: StoreRequestModel) -> None:
        request_id = model.id
        self.session.delete(model)
        self._flush(request_id)

    def _sync_items(self, model: StoreRequestModel, request, outcome) -> None:
        if outcome.removed_item_ids:
            removed = set(outcome.removed_item_ids)
            for item_model in [i for i in model.items if i.id in removed]:
                model.items.remove(item_model)
                self.session.delete(item_model)

        by_id = {item.id: item for item in model.items}
        for line_number, item in enumerate(request.items, start=1):
            item_model = by_id.get(item.id)
            if item_model is None:
                item_model = StoreRequestItemModel(id=item.id)
                model.items.append(item_model)
                by_id[item.id] = item_model
            item_model.apply(item, line_number, request.item_status(item).value)

        for entry in outcome.entries:
            by_id[entry.item_id].transactions.append(
                StoreRequestItemTransactionModel.from_dto(entry)
            )

    def _flush(self, request_id: UUID) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError(str(request_id)) from exc
        except IntegrityError as exc:
            message = str(exc.orig)
            if (
                "uq_item_transaction_sequence" in message
                or "store_request_item_transactions" in message
            ):
                raise ConcurrentModificationError(str(request_id)) from exc
            raise
