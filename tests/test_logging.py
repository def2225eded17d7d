"""Tests for the structured logging system (cogs_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from cogs_kernel.logging_config import (
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
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "cogs_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("posted", extra={"sequence": 42, "kind": "production_consume"})

        record = _parse_log(stream)
        assert record["sequence"] == 42
        assert record["kind"] == "production_consume"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(organization_id="org-1", run_id="run-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["organization_id"] == "org-1"
        assert record["run_id"] == "run-9"

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

    def test_kernel_exception_code_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from cogs_kernel.exceptions import DuplicateLotError

        material_id = uuid4()
        try:
            raise DuplicateLotError("L1", material_id)
        except DuplicateLotError:
            logger.error("lot_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "DUPLICATE_LOT"
        assert record["exc_type"] == "DuplicateLotError"
        assert record["exc_lot_number"] == "L1"
        assert record["exc_material_id"] == str(material_id)

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_values", extra={"item_id": uid, "quantity": Decimal("2.50")})

        record = _parse_log(stream)
        assert record["item_id"] == str(uid)
        assert record["quantity"] == "2.50"

    def test_debug_filtered_at_info_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(run_id="outer")
        with LogContext.bind(run_id="inner"):
            assert LogContext.get_all()["run_id"] == "inner"
        assert LogContext.get_all()["run_id"] == "outer"

    def test_bind_stringifies_uuids(self):
        org = uuid4()
        with LogContext.bind(organization_id=org, actor_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"organization_id": str(org)}
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            LogContext.set(lot_id="L1")
        with pytest.raises(ValueError):
            with LogContext.bind(item_id="x"):
                pass

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(run_id="r1"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("cogs_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.ledger").name == "cogs_kernel.services.ledger"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("modules.production.service").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "cogs_kernel.modules.production.service"
