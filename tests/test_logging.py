"""Structured logging: JSON lines, context fields and configuration."""

import json
import logging
import sys
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from erp_kernel.exceptions import NotFoundError
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def fresh_logging():
    """Unconfigured logging for the test; the suite configuration is restored after."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _format(record_logger: str, message: str, **extra) -> dict:
    record = logging.LogRecord(record_logger, logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatter:

    def test_core_fields(self):
        payload = _format("erp.tests", "thing_happened")
        assert payload["level"] == "INFO"
        assert payload["logger"] == "erp.tests"
        assert payload["message"] == "thing_happened"
        assert datetime.fromisoformat(payload["ts"]).tzinfo is not None

    def test_extras_are_encoded(self):
        ref = uuid4()
        when = datetime(2026, 2, 1, tzinfo=UTC)
        payload = _format("erp.tests", "x", ref=ref, when=when, tags=frozenset({"b", "a"}))
        assert payload["ref"] == str(ref)
        assert payload["when"] == when.isoformat()
        assert payload["tags"] == ["a", "b"]

    def test_unknown_extras_fall_back_to_str(self):
        class Ticket:
            def __str__(self):
                return "TCK-7"

        payload = _format("erp.tests", "x", ticket=Ticket(), amount=Decimal("12.50"))
        assert payload["ticket"] == "TCK-7"
        assert payload["amount"] == "12.50"

    def test_context_fields_included(self):
        with LogContext.bind(job_id="job-1", worker_id="w-1", actor_id=None):
            payload = _format("erp.tests", "x")
        assert payload["job_id"] == "job-1"
        assert payload["worker_id"] == "w-1"
        assert "actor_id" not in payload
        assert "job_id" not in _format("erp.tests", "x")

    def test_exception_details(self):
        try:
            raise NotFoundError("Widget", "42")
        except NotFoundError:
            record = logging.LogRecord(
                "erp.tests", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        payload = json.loads(StructuredFormatter().format(record))
        assert payload["exc_type"] == "NotFoundError"
        assert payload["exc_code"] == "NOT_FOUND"
        assert payload["exc_entity"] == "Widget"
        assert "Traceback" in payload["traceback"]


class TestLogContext:

    def test_set_and_clear(self):
        LogContext.set(correlation_id="c-1", request_id=None)
        assert LogContext.get_all() == {"correlation_id": "c-1"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            LogContext.set(colour="red")

    def test_bind_restores_previous_value(self):
        LogContext.set(job_id="outer")
        with LogContext.bind(job_id="inner"):
            assert LogContext.get_all()["job_id"] == "inner"
        assert LogContext.get_all()["job_id"] == "outer"


class TestConfigureLogging:

    def test_configure_is_idempotent(self, fresh_logging):
        first, second = StringIO(), StringIO()
        configure_logging(level="INFO", stream=first)
        configure_logging(level="DEBUG", stream=second)

        get_logger("tests").info("once")
        get_logger("tests").debug("filtered")

        lines = first.getvalue().strip().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["once"]
        assert second.getvalue() == ""

    def test_loggers_live_under_erp(self):
        assert get_logger("jobs.worker").name == "erp.jobs.worker"

    def test_reset(self, fresh_logging):
        configure_logging(stream=StringIO())
        reset_logging()
        erp_logger = logging.getLogger("erp")
        assert erp_logger.handlers == []
        assert erp_logger.level == logging.WARNING
