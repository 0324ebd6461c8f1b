"""
Structured JSON logging and LogContext propagation.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

from backoffice_kernel.exceptions import GuardFailedError
from backoffice_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_fn):
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = get_logger("tests.structured")
    logger.addHandler(handler)
    try:
        record_fn(logger)
    finally:
        logger.removeHandler(handler)
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredFormatter:

    def test_one_json_object_per_line(self):
        records = _format(lambda log: log.info("document_created", extra={"document_code": "CA-2025-0001"}))
        assert records[0]["message"] == "document_created"
        assert records[0]["document_code"] == "CA-2025-0001"
        assert records[0]["level"] == "INFO"
        assert records[0]["logger"] == "backoffice.tests.structured"

    def test_decimal_and_date_serialized(self):
        records = _format(
            lambda log: log.info("balance", extra={"remaining": Decimal("600000.00"), "day": date(2025, 3, 3)})
        )
        assert records[0]["remaining"] == "600000.00"
        assert records[0]["day"] == "2025-03-03"

    def test_context_fields_included(self):
        def emit(log):
            with LogContext.bind(correlation_id="req-1", actor_code="EMP001"):
                log.info("inside")
            log.info("outside")

        inside, outside = _format(emit)
        assert inside["correlation_id"] == "req-1"
        assert inside["actor_code"] == "EMP001"
        assert "correlation_id" not in outside

    def test_exception_fields(self):
        def emit(log):
            try:
                raise GuardFailedError("reason_provided", "A rejection reason is required")
            except GuardFailedError:
                log.warning("guard_failed", exc_info=True)

        record = _format(emit)[0]
        assert record["exc_type"] == "GuardFailedError"
        assert record["exc_kind"] == "validation_failed"
        assert record["exc_code"] == "GUARD_FAILED"
        assert record["exc_guard_name"] == "reason_provided"
        assert "traceback" in record


class TestLogContext:

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_code="EMP001")
        with LogContext.bind(actor_code="MGR001", document_code="CA-2025-0001"):
            assert LogContext.get_all()["actor_code"] == "MGR001"
        assert LogContext.get_all() == {"actor_code": "EMP001"}

