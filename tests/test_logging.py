"""Tests for JSON log lines and LogContext (backoffice_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from backoffice_kernel.exceptions import InsufficientFloatBalanceError, MissingFieldError
from backoffice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from backoffice_kernel.models.transactions import TransactionStatus


@pytest.fixture
def stream():
    """Route the kernel logger into a buffer for the duration of one test."""
    reset_logging()
    LogContext.clear()
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    configure_logging(handler=handler)
    yield buffer
    LogContext.clear()
    reset_logging()


def _lines(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestLogLines:
    """Shape of each emitted line."""

    def test_envelope_keys(self, stream):
        get_logger("services.power").info("power_sale_recorded")

        (line,) = _lines(stream)
        assert line["level"] == "INFO"
        assert line["message"] == "power_sale_recorded"
        assert line["logger"] == "backoffice_kernel.services.power"
        assert line["ts"].endswith("+00:00")

    def test_extras_serialized(self, stream):
        account_id = uuid4()
        get_logger("services.float").info(
            "float_balance_adjusted",
            extra={
                "float_account_id": account_id,
                "delta": Decimal("-50.00"),
                "status": TransactionStatus.COMPLETED,
                "business_day": date(2024, 1, 1),
                "movements": 2,
            },
        )

        (line,) = _lines(stream)
        assert line["float_account_id"] == str(account_id)
        assert line["delta"] == "-50.00"
        assert line["status"] == "completed"
        assert line["business_day"] == "2024-01-01"
        assert line["movements"] == 2

    def test_debug_dropped_at_info(self, stream):
        logger = get_logger("services.jumia")
        logger.debug("package_lookup")
        logger.warning("pod_duplicate_rejected", extra={"tracking_id": "JUM-1"})

        assert [line["message"] for line in _lines(stream)] == ["pod_duplicate_rejected"]


class TestExceptionFields:
    """Exceptions logged with exc_info."""

    def test_kernel_error_attributes(self, stream):
        try:
            raise InsufficientFloatBalanceError("acct-1", Decimal("10.00"), Decimal("25.00"))
        except InsufficientFloatBalanceError:
            get_logger("services.expense").error("expense_approval_failed", exc_info=True)

        (line,) = _lines(stream)
        assert line["exc_type"] == "InsufficientFloatBalanceError"
        assert line["exc_code"] == "INSUFFICIENT_FLOAT_BALANCE"
        assert line["exc_account_id"] == "acct-1"
        assert line["exc_balance"] == "10.00"
        assert line["exc_requested"] == "25.00"
        assert "Traceback" in line["traceback"]

    def test_field_name_carried(self, stream):
        try:
            raise MissingFieldError("tracking_id")
        except MissingFieldError:
            get_logger("services.jumia").warning("pod_rejected", exc_info=True)

        (line,) = _lines(stream)
        assert line["exc_code"] == MissingFieldError.code
        assert line["exc_field"] == "tracking_id"

    def test_plain_exception(self, stream):
        try:
            raise RuntimeError("sms gateway down")
        except RuntimeError:
            get_logger("services.notification").warning("sms_failed", exc_info=True)

        (line,) = _lines(stream)
        assert line["exc_message"] == "sms gateway down"
        assert "exc_code" not in line


class TestLogContext:
    """Request-scoped fields."""

    def test_bound_fields_on_every_line(self, stream):
        logger = get_logger("services.recorder")
        with LogContext.bind(source_module="power", transaction_id="txn-1"):
            logger.info("movements_applied")
            logger.info("gl_linked")
        logger.info("after")

        first, second, after = _lines(stream)
        assert first["source_module"] == second["source_module"] == "power"
        assert second["transaction_id"] == "txn-1"
        assert "source_module" not in after

    def test_nested_bind_restores_outer(self):
        LogContext.set(source_module="expenses")
        with LogContext.bind(source_module="float_operations"):
            assert LogContext.get_all()["source_module"] == "float_operations"
        assert LogContext.get_all() == {"source_module": "expenses"}
        LogContext.clear()

    def test_none_and_unknown_ignored(self):
        LogContext.set(branch_id=None, meter_number="0123456789")
        assert LogContext.get_all() == {}

    def test_values_stringified(self):
        actor = uuid4()
        LogContext.set(actor_id=actor)
        assert LogContext.get_all() == {"actor_id": str(actor)}
        LogContext.clear()


class TestConfigureLogging:
    """Handler setup."""

    def test_second_call_is_noop(self, stream):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("backoffice_kernel").handlers) == 1

    def test_formatter_installed(self, stream):
        handler = logging.getLogger("backoffice_kernel").handlers[0]
        assert isinstance(handler.formatter, StructuredFormatter)
