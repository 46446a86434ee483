"""
Structured logging: record shape, request context scoping, how kernel
refusals render, and the records a workflow call leaves behind.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from transfer_kernel.domain.status import RequestStatus
from transfer_kernel.exceptions import QuantityInvariantViolationError, ValidationError
from transfer_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)

from tests.conftest import TEST_ACTOR_ID


@pytest.fixture
def json_lines():
    """Route transfer_kernel logs into a buffer; returns a reader of parsed lines."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("transfer_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines() if line]
    root.removeHandler(handler)
    root.setLevel(previous_level)


log = get_logger("tests.logging")


# ---------------------------------------------------------------------------
# Record shape
# ---------------------------------------------------------------------------


class TestRecordShape:
    def test_domain_values_are_json_safe(self, json_lines):
        item_id = uuid4()
        log.info(
            "store_request_issued",
            extra={
                "item_id": item_id,
                "issued_quantity": Decimal("12.500"),
                "to_status": RequestStatus.PARTIAL_ISSUED,
                "request_date": date(2024, 1, 1),
                "statuses": ("draft", "submitted"),
            },
        )
        record = json_lines()[0]
        assert record["message"] == "store_request_issued"
        assert record["logger"] == "transfer_kernel.tests.logging"
        assert record["item_id"] == str(item_id)
        assert record["issued_quantity"] == "12.500"
        assert record["to_status"] == "partial_issued"
        assert record["request_date"] == "2024-01-01"
        assert record["statuses"] == ["draft", "submitted"]

    def test_context_wins_over_extra(self, json_lines):
        with LogContext.bind(request_id="r-1"):
            log.info("store_request_submitted", extra={"request_id": "other", "version": 2})
        record = json_lines()[0]
        assert record["request_id"] == "r-1"
        assert record["version"] == 2


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_bind_is_scoped(self):
        with LogContext.bind(request_id="r-1", action="issue"):
            assert LogContext.get_all() == {"request_id": "r-1", "action": "issue"}
        assert LogContext.get_all() == {}

    def test_set_inside_bind_does_not_leak(self):
        with LogContext.bind(request_id="r-1"):
            LogContext.set(reference_number="SR-000007", item_id=uuid4())
            assert set(LogContext.get_all()) == {"request_id", "reference_number", "item_id"}
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer_values(self):
        with LogContext.bind(action="approve", actor_id="ann"):
            with LogContext.bind(action="reject"):
                assert LogContext.get_all()["action"] == "reject"
            assert LogContext.get_all() == {"action": "approve", "actor_id": "ann"}

    def test_none_removes_a_field(self):
        LogContext.set(request_id="r-1", item_id="i-1")
        LogContext.set(item_id=None)
        assert LogContext.get_all() == {"request_id": "r-1"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="warehouse"):
            LogContext.set(warehouse="W1")

    def test_fields_cover_a_transfer_line(self):
        assert {"request_id", "reference_number", "item_id", "actor_id", "action"} <= set(
            CONTEXT_FIELDS
        )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrorRendering:
    def test_refusal_has_fields_but_no_traceback(self, json_lines):
        err = QuantityInvariantViolationError(
            "item-1", "issued_quantity", "70", "60", "exceeds remaining",
        )
        log.warning("store_request_operation_failed", exc_info=err)
        record = json_lines()[0]
        assert record["exc_code"] == "QUANTITY_INVARIANT_VIOLATION"
        assert record["exc_item_id"] == "item-1"
        assert record["exc_counter"] == "issued_quantity"
        assert record["exc_limit"] == "60"
        assert "traceback" not in record

    def test_validation_error_names_field(self, json_lines):
        err = ValidationError("received_quantity", "must be greater than zero")
        log.warning("store_request_operation_failed", exc_info=err)
        record = json_lines()[0]
        assert record["exc_code"] == "VALIDATION_ERROR"
        assert record["exc_field"] == "received_quantity"

    def test_unexpected_error_keeps_traceback(self, json_lines):
        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            log.exception("store_request_operation_error")
        record = json_lines()[0]
        assert record["exc_type"] == "RuntimeError"
        assert "exc_code" not in record
        assert "disk full" in record["traceback"]


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _fresh(self):
        reset_logging()
        yield
        reset_logging()

    def test_configured_level_name_accepted(self):
        stream = StringIO()
        assert configure_logging(level="debug", stream=stream) is True
        get_logger("x").debug("sequence_allocated")
        assert json.loads(stream.getvalue())["level"] == "DEBUG"

    def test_first_call_wins(self):
        assert configure_logging(stream=StringIO()) is True
        assert configure_logging(level="ERROR", stream=StringIO()) is False
        root = logging.getLogger("transfer_kernel")
        assert len(root.handlers) == 1
        assert root.level == logging.INFO


# ---------------------------------------------------------------------------
# What a workflow call logs
# ---------------------------------------------------------------------------


class TestWorkflowRecords:
    @pytest.fixture
    def approved_request(self, service, create_payload):
        data = service.create_request(create_payload(), TEST_ACTOR_ID).data
        service.submit_request(data["id"], TEST_ACTOR_ID)
        quantities = {item["id"]: "5" for item in data["items"]}
        return service.approve_request(data["id"], quantities, "approver").data

    def test_records_carry_reference_number(self, service, approved_request, captured_logs):
        item_id = approved_request["items"][0]["id"]
        service.issue_request(approved_request["id"], {item_id: "2"}, "keeper")
        records = [
            r for r in captured_logs()
            if r["message"] in ("workflow_transition", "store_request_issued")
            and r["action"] == "issue"
        ]
        assert len(records) == 2
        for record in records:
            assert record["reference_number"] == approved_request["reference_number"]
            assert record["request_id"] == approved_request["id"]
            assert record["actor_id"] == "keeper"
            assert record["action"] == "issue"

    def test_refused_issue_logs_line_and_counter(self, service, approved_request, captured_logs):
        item_id = approved_request["items"][0]["id"]
        service.issue_request(approved_request["id"], {item_id: "6"}, "keeper")
        failed = [r for r in captured_logs() if r["message"] == "store_request_operation_failed"]
        assert len(failed) == 1
        assert failed[0]["level"] == "WARNING"
        assert failed[0]["exc_code"] == "QUANTITY_INVARIANT_VIOLATION"
        assert failed[0]["exc_item_id"] == item_id
        assert failed[0]["exc_counter"] == "issued_quantity"
        assert failed[0]["reference_number"] == approved_request["reference_number"]
        assert "traceback" not in failed[0]

    def test_single_line_operations_bind_item(self, service, create_payload, captured_logs):
        data = service.create_request(create_payload(), TEST_ACTOR_ID).data
        service.submit_request(data["id"], TEST_ACTOR_ID)
        item_id = data["items"][0]["id"]
        service.reject_item(data["id"], item_id, "not stocked", "approver")
        trace = [r for r in captured_logs() if r["message"] == "workflow_transition"][-1]
        assert trace["item_id"] == item_id
        assert trace["outcome"] == "success"
        assert LogContext.get_all() == {}
