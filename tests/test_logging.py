"""
Tests for the kernel's structured log records.

Records are read back as parsed JSON: the event name in ``message``, the
bound ledger context, fixed-point quantities, and kernel errors flattened
into ``error_*`` fields.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from apurement_kernel.exceptions import QuotaExceededError, SaNotFoundError
from apurement_kernel.logging_config import (
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start from an unconfigured kernel logger, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def kernel_log():
    """Configure the kernel logger on a fresh stream and return a reader of its records."""
    stream = StringIO()
    configure_logging(stream=stream)

    def records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return records


def _quota_error() -> QuotaExceededError:
    return QuotaExceededError(
        sa_id="sa-1",
        new_total=Decimal("110.000"),
        quantity_initial=Decimal("100.000"),
        current_allocated=Decimal("60.000"),
        requested=Decimal("50.000"),
    )


class TestRecordShape:

    def test_event_record(self, kernel_log):
        get_logger("services.allocation_ledger").info(
            "allocation_created", extra={"seq": 7, "status": "PARTIALLY_APURED"}
        )

        (record,) = kernel_log()
        assert record["message"] == "allocation_created"
        assert record["level"] == "INFO"
        assert record["logger"] == "apurement_kernel.services.allocation_ledger"
        assert record["seq"] == 7
        assert record["status"] == "PARTIALLY_APURED"
        assert "ts" in record

    def test_quantities_rendered_fixed_point(self, kernel_log):
        get_logger("test").info(
            "allocation_created",
            extra={
                "quantity": Decimal("10.526"),
                "new_total": Decimal("1E+2"),
                "scrap_rate": Decimal("0.05"),
            },
        )

        (record,) = kernel_log()
        assert record["quantity"] == "10.526"
        assert record["new_total"] == "100"
        assert record["scrap_rate"] == "0.05"

    def test_ids_and_dates_rendered_as_strings(self, kernel_log):
        allocation_id = uuid4()
        get_logger("test").info(
            "allocation_created",
            extra={"allocation_id": allocation_id, "export_date": date(2025, 2, 1)},
        )

        (record,) = kernel_log()
        assert record["allocation_id"] == str(allocation_id)
        assert record["export_date"] == "2025-02-01"

    def test_debug_filtered_at_default_level(self, kernel_log):
        logger = get_logger("test")
        logger.debug("sequence_allocated")
        logger.warning("allocation_quota_exceeded")

        assert [r["message"] for r in kernel_log()] == ["allocation_quota_exceeded"]


class TestKernelErrors:

    def test_error_extra_flattened(self, kernel_log):
        get_logger("test").warning(
            "allocation_rejected", extra={"error": _quota_error(), "duration_ms": 1.5}
        )

        (record,) = kernel_log()
        assert record["error_code"] == "QUOTA_EXCEEDED"
        assert record["error_category"] == "VALIDATION"
        assert record["error_type"] == "QuotaExceededError"
        assert record["error_new_total"] == "110.000"
        assert record["error_requested"] == "50.000"
        assert record["duration_ms"] == 1.5
        assert "error" not in record
        assert "traceback" not in record

    def test_exc_info_kernel_error(self, kernel_log):
        try:
            raise SaNotFoundError("sa-404")
        except SaNotFoundError:
            get_logger("test").error("allocation_failed", exc_info=True)

        (record,) = kernel_log()
        assert record["error_code"] == "SA_NOT_FOUND"
        assert record["error_category"] == "NOT_FOUND"
        assert record["error_sa_id"] == "sa-404"
        assert "SaNotFoundError" in record["traceback"]

    def test_exc_info_other_error(self, kernel_log):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("test").error("allocation_failed", exc_info=True)

        (record,) = kernel_log()
        assert record["error_type"] == "RuntimeError"
        assert record["error_message"] == "boom"
        assert "error_code" not in record
        assert "traceback" in record


class TestLogContext:

    def test_bound_fields_stamped(self, kernel_log):
        sa_id, actor_id = uuid4(), uuid4()
        with LogContext.bind(correlation_id="c-1", actor_id=actor_id, sa_id=sa_id):
            get_logger("test").info("allocation_started")
        get_logger("test").info("after")

        inside, after = kernel_log()
        assert inside["correlation_id"] == "c-1"
        assert inside["sa_id"] == str(sa_id)
        assert inside["actor_id"] == str(actor_id)
        assert "sa_id" not in after

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(correlation_id="outer", sa_id="sa-1"):
            with LogContext.bind(correlation_id="inner", ea_id="ea-1"):
                assert LogContext.current() == {
                    "correlation_id": "inner",
                    "sa_id": "sa-1",
                    "ea_id": "ea-1",
                }
            assert LogContext.current() == {"correlation_id": "outer", "sa_id": "sa-1"}
        assert LogContext.current() == {}

    def test_none_keeps_outer_value(self):
        with LogContext.bind(sa_id="sa-1"):
            with LogContext.bind(sa_id=None, ea_id="ea-1"):
                assert LogContext.current()["sa_id"] == "sa-1"

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="allocation"):
            with LogContext.bind(allocation="x"):
                pass

    def test_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(sa_id="sa-1"):
                raise RuntimeError("boom")
        assert LogContext.current() == {}

    def test_clear(self):
        with LogContext.bind(sa_id="sa-1"):
            LogContext.clear()
            assert LogContext.current() == {}


class TestConfigureLogging:

    def test_reconfigure_replaces_kernel_handler(self):
        first = logging.StreamHandler(StringIO())
        second = logging.StreamHandler(StringIO())

        configure_logging(handler=first)
        configure_logging(handler=second)

        handlers = logging.getLogger("apurement_kernel").handlers
        assert second in handlers
        assert first not in handlers

    def test_keep_existing_handler(self):
        first = configure_logging(handler=logging.StreamHandler(StringIO()), level=logging.DEBUG)

        kept = configure_logging(replace=False)

        kernel_logger = logging.getLogger("apurement_kernel")
        assert kept is first
        assert first in kernel_logger.handlers
        assert kernel_logger.level == logging.DEBUG

    def test_foreign_handlers_left_alone(self):
        foreign = logging.StreamHandler(StringIO())
        kernel_logger = logging.getLogger("apurement_kernel")
        kernel_logger.addHandler(foreign)
        try:
            configure_logging()
            configure_logging()
            reset_logging()
            assert foreign in kernel_logger.handlers
        finally:
            kernel_logger.removeHandler(foreign)

    def test_level_kept_when_not_given(self):
        configure_logging(level=logging.WARNING)
        configure_logging()

        assert logging.getLogger("apurement_kernel").level == logging.WARNING

    def test_kernel_records_do_not_propagate(self):
        configure_logging()

        assert logging.getLogger("apurement_kernel").propagate is False

    def test_default_handler_follows_stderr(self, capsys):
        configure_logging()

        get_logger("test").warning("allocation_quota_exceeded")

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["message"] == "allocation_quota_exceeded"

    def test_get_logger_namespace(self):
        logger = get_logger("services.allocation_ledger")
        assert logger.name == "apurement_kernel.services.allocation_ledger"
