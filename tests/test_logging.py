"""Tests for the structured logging system (sgdea_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from sgdea_kernel.domain.effects import Severity
from sgdea_kernel.exceptions import ActiveInstancesError
from sgdea_kernel.logging_config import (
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


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


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
        assert record["logger"] == "sgdea.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("instance_transitioned", extra={"from_step": 0, "to_step": 1})

        record = _parse_log(stream)
        assert record["from_step"] == 0
        assert record["to_step"] == 1

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", definition_id="def-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["definition_id"] == "def-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_workflow_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ActiveInstancesError("wf-7", 2)
        except ActiveInstancesError:
            get_logger("test").warning("update_refused", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "ACTIVE_INSTANCES"
        assert record["exc_definition_id"] == "wf-7"
        assert record["exc_active_count"] == 2

    def test_uuid_enum_and_set_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={"entity_id": uid, "severity": Severity.WARNING, "fields": {"b", "a"}},
        )

        record = _parse_log(stream)
        assert record["entity_id"] == str(uid)
        assert record["severity"] == "warning"
        assert record["fields"] == ["a", "b"]

    def test_default_level_drops_debug(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]

    def test_configure_is_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(instance_id="outer")
        with LogContext.bind(instance_id="inner"):
            assert LogContext.get_all()["instance_id"] == "inner"
        assert LogContext.get_all()["instance_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(correlation_id="temp"):
            assert LogContext.get_all()["correlation_id"] == "temp"
        assert "correlation_id" not in LogContext.get_all()

    def test_bind_ignores_none_values(self):
        LogContext.set(actor_id="a")
        with LogContext.bind(actor_id=None, definition_id="d"):
            assert LogContext.get_all() == {"actor_id": "a", "definition_id": "d"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(tenant_id="t")
