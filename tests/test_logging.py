"""Tests for the structured logging system (disbursement_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from disbursement_kernel.domain.types import RequestStatus
from disbursement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "disbursement_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("transition_applied", extra={"to_status": "APPROVED", "seq": 3})

        record = _parse_log(stream)
        assert record["to_status"] == "APPROVED"
        assert record["seq"] == 3

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", request_id="REQ007")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["request_id"] == "REQ007"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_disbursement_exception_code_extracted(self):
        """Kernel exceptions carry a .code and structured attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from disbursement_kernel.exceptions import AlreadyTerminalError

        try:
            raise AlreadyTerminalError("REQ003", "PAID")
        except AlreadyTerminalError:
            logger.error("action_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "ALREADY_TERMINAL"
        assert record["exc_type"] == "AlreadyTerminalError"
        assert record["exc_request_id"] == "REQ003"
        assert record["exc_status"] == "PAID"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "request_id" not in record

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        get_logger("test").info(
            "with_values",
            extra={
                "event_id": uid,
                "amount": Decimal("25000.50"),
                "status": RequestStatus.PENDING_CEO,
                "at": at,
                "roles": frozenset({"CEO"}),
            },
        )

        record = _parse_log(stream)
        assert record["event_id"] == str(uid)
        assert record["amount"] == "25000.50"
        assert record["status"] == "PENDING_CEO"
        assert record["at"] == at.isoformat()
        assert record["roles"] == ["CEO"]

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="20")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "20"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(request_id="outer")
        with LogContext.bind(request_id="inner"):
            assert LogContext.get_all()["request_id"] == "inner"
        assert LogContext.get_all()["request_id"] == "outer"

    def test_bind_restores_none(self):
        assert "action" not in LogContext.get_all()
        with LogContext.bind(action="APPROVE"):
            assert LogContext.get_all()["action"] == "APPROVE"
        assert "action" not in LogContext.get_all()

    def test_bind_stringifies_and_skips_none(self):
        with LogContext.bind(actor_id=20, request_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"actor_id": "20"}

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(not_a_field="x", action="REJECT"):
            assert LogContext.get_all() == {"action": "REJECT"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        handler, stream = _make_handler()
        second = logging.StreamHandler(StringIO())
        configure_logging(handler=handler)
        configure_logging(handler=second)

        root = logging.getLogger("disbursement_kernel")
        assert handler in root.handlers
        assert second not in root.handlers

        get_logger("test").info("once")
        assert len(_parse_all_logs(stream)) == 1

    def test_level_respected(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]

    def test_reset_allows_reconfigure(self):
        first, _ = _make_handler()
        configure_logging(handler=first)
        reset_logging()
        second, stream = _make_handler()
        configure_logging(handler=second)
        get_logger("test").info("after_reset")

        assert _parse_log(stream)["message"] == "after_reset"
