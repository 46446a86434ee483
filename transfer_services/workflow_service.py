"""
StoreRequestWorkflowService -- the public entry point for store transfers.

Responsibility:
    One method per workflow operation.  Each call checks the actor's
    permission, loads the aggregate under a row lock, runs the pure kernel
    operation, writes the outcome back and commits, then returns a
    ``TransferResult`` carrying the serialized aggregate or a structured
    error.

Architecture position:
    Services layer -- imperative shell around ``transfer_kernel``.  Inputs
    and outputs cross ``transfer_services.serialization``; reference data
    comes from an ``ExchangeRateSource``, store eligibility from a
    ``StoreDirectory`` and permissions from an ``AuthorizationPolicy``.

Transaction boundary:
    The service owns the session boundary: ``commit`` on success,
    ``rollback`` on any failure.  Kernel services only flush.

Failure modes:
    - StoreTransferError subclasses: session rolled back, logged, returned
      as ``TransferResult.failure`` with ``error_code`` and ``details``.
    - Anything else: session rolled back, exception re-raised.

Audit relevance:
    Every transition emits a ``workflow_transition`` record (action, from /
    to status, outcome, duration) plus an operation event such as
    ``store_request_issued``.  Ledger rows carry actor and time.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from transfer_config import TransferConfig, get_active_config
from transfer_kernel.domain import state_machine as sm
from transfer_kernel.domain import transfer
from transfer_kernel.domain.clock import Clock, SystemClock
from transfer_kernel.domain.currency import CurrencyResolver
from transfer_kernel.domain.ledger import assert_reconciled, reconcile
from transfer_kernel.domain.status import Priority, RequestType
from transfer_kernel.domain.transfer import StoreRequest, TransferOutcome
from transfer_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    StoreRequestNotFoundError,
    StoreTransferError,
    ValidationError,
)
from transfer_kernel.logging_config import LogContext, configure_logging, get_logger
from transfer_kernel.selectors.store_request_selector import StoreRequestSelector
from transfer_kernel.services.reference_data_loader import ReferenceDataLoader
from transfer_kernel.services.sequence_service import SequenceService
from transfer_kernel.services.store_request_repository import StoreRequestRepository
from transfer_services.authority import AllowAllPolicy, AuthorizationPolicy, require_permission
from transfer_services.rate_source import ExchangeRateSource
from transfer_services.serialization import (
    CreateRequestInput,
    error_details,
    history_to_list,
    page_to_dict,
    parse_create_request,
    parse_decimal,
    parse_filter,
    parse_paging,
    parse_quantities,
    parse_update_request,
    parse_uuid,
    reconciliation_to_dict,
    request_to_dict,
    stats_to_dict,
)
from transfer_services.store_directory import StoreDirectory, check_transfer_eligibility

logger = get_logger("services.workflow")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"

READ = "read"

# Actions whose calls emit workflow_transition records.
_TRANSITION_ACTIONS = frozenset({
    transfer.CREATE, sm.UPDATE, sm.DELETE, sm.SUBMIT, sm.APPROVE,
    sm.REJECT, sm.ISSUE, sm.RECEIVE, sm.CANCEL,
})


@dataclass(frozen=True)
class TransferResult:
    """Outcome of one service call.

    ``data`` is the serialized (snake_case) payload on success.  On failure
    ``error_code`` is the exception's ``code`` and ``details`` its
    structured attributes.  ``request`` is the domain aggregate, when the
    call produced one, for in-process callers.
    """

    success: bool
    data: Any = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    request: StoreRequest | None = None

    @property
    def is_conflict(self) -> bool:
        return self.error_code == ConcurrentModificationError.code

    @classmethod
    def ok(cls, data: Any = None, request: StoreRequest | None = None) -> "TransferResult":
        return cls(success=True, data=data, request=request)

    @classmethod
    def failure(cls, exc: StoreTransferError) -> "TransferResult":
        return cls(
            success=False,
            error_code=exc.code,
            message=str(exc),
            details=error_details(exc),
        )


def _emit_workflow_trace(
    action: str,
    request_id: UUID | str | None,
    from_state: str | None,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
    writes_ledger: bool = False,
) -> None:
    """Emit a structured workflow transition record."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "workflow": sm.TRANSFER_WORKFLOW.name,
        "action": action,
        "entity_type": "store_request",
        "entity_id": None if request_id is None else str(request_id),
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
        "writes_ledger": writes_ledger,
    }
    if to_state is not None:
        record["to_state"] = to_state
    logger.info("workflow_transition", extra=record)


def retry_on_conflict(
    operation: Callable[[], TransferResult],
    attempts: int,
) -> TransferResult:
    """Run ``operation`` again while it fails with a concurrent modification.

    Each attempt reloads the aggregate, so the operation must not pin an
    ``expected_version``.  Returns the last result.
    """
    result = operation()
    attempt = 1
    while result.is_conflict and attempt < attempts:
        attempt += 1
        logger.info(
            "store_request_conflict_retry",
            extra={"attempt": attempt, "max_attempts": attempts},
        )
        result = operation()
    return result


class StoreRequestWorkflowService:
    """
    Workflow operations on store requests.

    Every public method takes the acting user's id and returns a
    ``TransferResult``; mutating methods accept an optional
    ``expected_version`` for optimistic concurrency.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        rate_source: ExchangeRateSource | None = None,
        store_directory: StoreDirectory | None = None,
        authorization_policy: AuthorizationPolicy | None = None,
        config: TransferConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._rates = rate_source or ReferenceDataLoader(session)
        self._stores = store_directory
        self._policy = authorization_policy or AllowAllPolicy()
        self._config = config or get_active_config()
        configure_logging(level=self._config.log_level)
        self._repository = StoreRequestRepository(session)
        self._selector = StoreRequestSelector(session)
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        action: str,
        actor_id: str,
        request_id: Any,
        body: Callable[[], TransferResult],
        permission_action: str | None = None,
    ) -> TransferResult:
        started = time.monotonic()
        with LogContext.bind(
            request_id=None if request_id is None else str(request_id),
            actor_id=actor_id,
            action=action,
        ):
            try:
                require_permission(self._policy, actor_id, permission_action or action)
                result = body()
                self._session.commit()
                return result
            except StoreTransferError as exc:
                self._session.rollback()
                logger.warning("store_request_operation_failed", exc_info=exc)
                if action in _TRANSITION_ACTIONS:
                    _emit_workflow_trace(
                        action=action,
                        request_id=request_id,
                        from_state=(
                            exc.current_status
                            if isinstance(exc, InvalidTransitionError) else None
                        ),
                        outcome=OUTCOME_FAILED,
                        reason=str(exc),
                        duration_ms=(time.monotonic() - started) * 1000,
                    )
                return TransferResult.failure(exc)
            except Exception:
                self._session.rollback()
                logger.exception("store_request_operation_error")
                raise

    def _finish(
        self,
        outcome: TransferOutcome,
        version: int,
        started: float,
        event: str,
    ) -> TransferResult:
        saved = replace(outcome.request, version=version)
        _emit_workflow_trace(
            action=outcome.action,
            request_id=saved.id,
            from_state=None if outcome.from_status is None else outcome.from_status.value,
            outcome=OUTCOME_SUCCESS,
            reason="",
            duration_ms=(time.monotonic() - started) * 1000,
            to_state=outcome.to_status.value,
            writes_ledger=bool(outcome.entries),
        )
        logger.info(
            event,
            extra={
                "request_id": str(saved.id),
                "reference_number": saved.reference_number,
                "from_status": None if outcome.from_status is None else outcome.from_status.value,
                "to_status": outcome.to_status.value,
                "ledger_rows": len(outcome.entries),
                "version": version,
            },
        )
        return TransferResult.ok(request_to_dict(saved), request=saved)

    def _mutate(
        self,
        action: str,
        request_id: Any,
        actor_id: str,
        apply: Callable[[StoreRequest, datetime], TransferOutcome],
        event: str,
        expected_version: int | None = None,
        permission_action: str | None = None,
    ) -> TransferResult:
        def body() -> TransferResult:
            started = time.monotonic()
            model = self._repository.load(
                parse_uuid("request_id", request_id),
                expected_version=expected_version,
            )
            LogContext.set(reference_number=model.reference_number)
            outcome = apply(model.to_dto(), self._clock.now())
            self._repository.save(model, outcome)
            return self._finish(outcome, model.version, started, event)

        return self._run(action, actor_id, request_id, body, permission_action)

    def _resolver(self) -> CurrencyResolver:
        return CurrencyResolver(self._rates.rate_table())

    def _check_stores(self, requesting_store_id: str, issuing_store_id: str) -> None:
        if self._stores is not None:
            check_transfer_eligibility(self._stores, requesting_store_id, issuing_store_id)

    def _reference_for(self, data: CreateRequestInput) -> str:
        if data.reference_number:
            if self._selector.reference_exists(data.reference_number):
                raise ValidationError(
                    "reference_number", f"'{data.reference_number}' is already in use",
                )
            return data.reference_number

        numbers = self._config.reference_numbers
        if data.request_type is RequestType.ISSUE:
            name, prefix = SequenceService.STORE_ISSUE, numbers.issue_prefix
        else:
            name, prefix = SequenceService.STORE_REQUEST, numbers.request_prefix
        reference = self._sequences.next_reference(name, prefix, numbers.width)
        # skip numbers taken by caller-supplied references
        while self._selector.reference_exists(reference):
            reference = self._sequences.next_reference(name, prefix, numbers.width)
        return reference

    def retry(self, operation: Callable[[], TransferResult]) -> TransferResult:
        """``retry_on_conflict`` with the configured number of attempts."""
        return retry_on_conflict(operation, self._config.workflow.conflict_retry_attempts)

    # ------------------------------------------------------------------
    # Draft lifecycle
    # ------------------------------------------------------------------

    def create_request(self, payload: Mapping[str, Any], actor_id: str) -> TransferResult:
        """Create a draft from a header + items payload.

        The reference number comes from the request-type sequence unless the
        payload supplies an unused one.  A missing currency falls back to the
        configured default, then to the rate table's default currency.
        """

        def body() -> TransferResult:
            started = time.monotonic()
            data = parse_create_request(payload)
            self._check_stores(data.requesting_store_id, data.issuing_store_id)

            table = self._rates.rate_table()
            currency_id = (
                data.currency_id
                or self._config.workflow.default_currency_id
                or table.default_currency_id
            )
            if not currency_id:
                raise ValidationError("currency_id", "is required")

            outcome = transfer.create_request(
                reference_number=self._reference_for(data),
                request_type=data.request_type,
                request_date=data.request_date,
                requesting_store_id=data.requesting_store_id,
                issuing_store_id=data.issuing_store_id,
                currency_id=currency_id,
                items=data.items,
                created_by=actor_id,
                created_at=self._clock.now(),
                resolver=CurrencyResolver(table),
                exchange_rate=data.exchange_rate,
                priority=data.priority or Priority(self._config.workflow.default_priority),
                expected_delivery_date=data.expected_delivery_date,
                notes=data.notes,
            )
            LogContext.set(
                request_id=outcome.request.id,
                reference_number=outcome.request.reference_number,
            )
            model = self._repository.add(outcome)
            return self._finish(outcome, model.version, started, "store_request_created")

        return self._run(transfer.CREATE, actor_id, None, body)

    def update_request(
        self,
        request_id: Any,
        payload: Mapping[str, Any],
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransferResult:
        """Edit a draft.  ``items`` in the payload replaces the whole line set."""

        def apply(request: StoreRequest, now: datetime) -> TransferOutcome:
            changes, items = parse_update_request(payload)
            if "requesting_store_id" in changes or "issuing_store_id" in changes:
                self._check_stores(
                    changes.get("requesting_store_id") or request.requesting_store_id,
                    changes.get("issuing_store_id") or request.issuing_store_id,
                )
            return transfer.update_draft(
                request, changes, items,
                actor_id=actor_id, at=now, resolver=self._resolver(),
            )

        return self._mutate(
            sm.UPDATE, request_id, actor_id, apply, "store_request_updated", expected_version,
        )

    def delete_request(
        self,
        request_id: Any,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransferResult:
        def body() -> TransferResult:
            started = time.monotonic()
            model = self._repository.load(
                parse_uuid("request_id", request_id),
                expected_version=expected_version,
            )
            LogContext.set(reference_number=model.reference_number)
            request = model.to_dto()
            transfer.check_deletable(request)
            self._repository.delete(model)
            _emit_workflow_trace(
                action=sm.DELETE,
                request_id=request.id,
                from_state=request.status.value,
                outcome=OUTCOME_SUCCESS,
                reason="",
                duration_ms=(time.monotonic() - started) * 1000,
            )
            logger.info(
                "store_request_deleted",
                extra={
                    "request_id": str(request.id),
                    "reference_number": request.reference_number,
                },
            )
            return TransferResult.ok({"id": str(request.id), "deleted": True})

        return self._run(sm.DELETE, actor_id, request_id, body)

    def submit_request(
        self,
        request_id: Any,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransferResult:
        return self._mutate(
            sm.SUBMIT, request_id, actor_id,
            lambda request, now: transfer.submit(request, actor_id=actor_id, at=now),
            "store_request_submitted", expected_version,
        )

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def approve_request(
        self,
        request_id: Any,
        quantities: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        """Approve per-line quantities (``{item_id: qty}`` or a list of entries)."""
        return self._mutate(
            sm.APPROVE, request_id, actor_id,
            lambda request, now: transfer.approve(
                request, parse_quantities(quantities), actor_id=actor_id, at=now, notes=notes,
            ),
            "store_request_approved", expected_version,
        )

    def approve_item(
        self,
        request_id: Any,
        item_id: Any,
        quantity: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        def apply(request: StoreRequest, now: datetime) -> TransferOutcome:
            line_id = parse_uuid("item_id", item_id)
            LogContext.set(item_id=line_id)
            quantities = {line_id: parse_decimal("approved_quantity", quantity)}
            return transfer.approve(request, quantities, actor_id=actor_id, at=now, notes=notes)

        return self._mutate(
            sm.APPROVE, request_id, actor_id, apply, "store_request_item_approved",
            expected_version,
        )

    def approve_all(
        self,
        request_id: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        """Approve every still-pending line at its requested quantity."""
        return self._mutate(
            sm.APPROVE, request_id, actor_id,
            lambda request, now: transfer.approve(
                request, transfer.pending_approval_quantities(request),
                actor_id=actor_id, at=now, notes=notes,
            ),
            "store_request_approved", expected_version,
        )

    def reject_item(
        self,
        request_id: Any,
        item_id: Any,
        reason: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransferResult:
        def apply(request: StoreRequest, now: datetime) -> TransferOutcome:
            line_id = parse_uuid("item_id", item_id)
            LogContext.set(item_id=line_id)
            return transfer.reject_item(request, line_id, reason, actor_id=actor_id, at=now)

        return self._mutate(
            sm.APPROVE, request_id, actor_id, apply,
            "store_request_item_rejected", expected_version,
            permission_action=sm.REJECT,
        )

    def reject_request(
        self,
        request_id: Any,
        reason: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransferResult:
        return self._mutate(
            sm.REJECT, request_id, actor_id,
            lambda request, now: transfer.reject(request, reason, actor_id=actor_id, at=now),
            "store_request_rejected", expected_version,
        )

    # ------------------------------------------------------------------
    # Movement
    # ------------------------------------------------------------------

    def issue_request(
        self,
        request_id: Any,
        quantities: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        """Issue per-line quantities from the issuing store."""
        return self._mutate(
            sm.ISSUE, request_id, actor_id,
            lambda request, now: transfer.issue(
                request, parse_quantities(quantities), actor_id=actor_id, at=now, notes=notes,
            ),
            "store_request_issued", expected_version,
        )

    def issue_all(
        self,
        request_id: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        return self._mutate(
            sm.ISSUE, request_id, actor_id,
            lambda request, now: transfer.issue(
                request, transfer.remaining_issue_quantities(request),
                actor_id=actor_id, at=now, notes=notes,
            ),
            "store_request_issued", expected_version,
        )

    def receive_request(
        self,
        request_id: Any,
        quantities: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        """Receive per-line quantities at the requesting store."""
        return self._mutate(
            sm.RECEIVE, request_id, actor_id,
            lambda request, now: transfer.receive(
                request, parse_quantities(quantities), actor_id=actor_id, at=now, notes=notes,
            ),
            "store_request_received", expected_version,
        )

    def receive_all(
        self,
        request_id: Any,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransferResult:
        return self._mutate(
            sm.RECEIVE, request_id, actor_id,
            lambda request, now: transfer.receive(
                request, transfer.remaining_receipt_quantities(request),
                actor_id=actor_id, at=now, notes=notes,
            ),
            "store_request_received", expected_version,
        )

    def cancel_request(
        self,
        request_id: Any,
        reason: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransferResult:
        """Cancel; issued and received quantities are kept as they are."""
        return self._mutate(
            sm.CANCEL, request_id, actor_id,
            lambda request, now: transfer.cancel(request, reason, actor_id=actor_id, at=now),
            "store_request_cancelled", expected_version,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get(self, request_id: Any) -> StoreRequest:
        request = self._selector.get(parse_uuid("request_id", request_id))
        if request is None:
            raise StoreRequestNotFoundError(str(request_id))
        return request

    def get_request(self, request_id: Any, actor_id: str) -> TransferResult:
        def body() -> TransferResult:
            request = self._get(request_id)
            return TransferResult.ok(request_to_dict(request), request=request)

        return self._run("get", actor_id, request_id, body, permission_action=READ)

    def list_requests(
        self,
        actor_id: str,
        params: Mapping[str, Any] | None = None,
    ) -> TransferResult:
        """Filtered, sorted page of request summaries.

        ``params`` takes the filters of ``parse_filter`` plus ``sort_by``,
        ``sort_order``, ``page`` and ``page_size``.
        """

        def body() -> TransferResult:
            flt = parse_filter(params)
            page = self._selector.list(flt, **parse_paging(params))
            return TransferResult.ok(page_to_dict(page))

        return self._run("list", actor_id, None, body, permission_action=READ)

    def request_stats(
        self,
        actor_id: str,
        params: Mapping[str, Any] | None = None,
    ) -> TransferResult:
        def body() -> TransferResult:
            return TransferResult.ok(stats_to_dict(self._selector.stats(parse_filter(params))))

        return self._run("stats", actor_id, None, body, permission_action=READ)

    def request_history(self, request_id: Any, actor_id: str) -> TransferResult:
        """Every ledger row on the request, oldest first."""

        def body() -> TransferResult:
            request = self._get(request_id)
            return TransferResult.ok(history_to_list(self._selector.history(request.id)))

        return self._run("history", actor_id, request_id, body, permission_action=READ)

    def reconcile_request(
        self,
        request_id: Any,
        actor_id: str,
        strict: bool = False,
    ) -> TransferResult:
        """Replay each line's ledger against its stored counters.

        With ``strict`` any drift fails the call with LedgerDriftError;
        otherwise drift is reported in the result.
        """

        def body() -> TransferResult:
            request = self._get(request_id)
            results = [reconcile(item, item.transactions) for item in request.items]
            drifted = [r for r in results if not r.is_reconciled]
            if drifted:
                logger.error(
                    "store_request_ledger_drift",
                    extra={
                        "request_id": str(request.id),
                        "drifted_items": [r.to_dict() for r in drifted],
                    },
                )
            if strict:
                assert_reconciled(request.id, results)
            return TransferResult.ok(reconciliation_to_dict(request.id, results))

        return self._run("reconcile", actor_id, request_id, body, permission_action=READ)
