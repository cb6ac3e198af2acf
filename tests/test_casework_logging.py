"""
Tests for structured logging.

Tests cover:
- StructuredFormatter emits one JSON object per record with extras
- CaseworkError attributes surface as exc_code / exc_<field>
- LogContext.bind sets fields and restores them on exit
- configure_logging is idempotent
"""

import json
import logging
import sys
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from casework_kernel.exceptions import AlreadyApprovedByRoleError
from casework_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


def _format(record: logging.LogRecord) -> dict:
    return json.loads(StructuredFormatter().format(record))


def _record(msg: str = "event", **extra) -> logging.LogRecord:
    record = logging.LogRecord("casework.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_basic_fields_and_extras(self):
        approval_id = uuid4()
        payload = _format(_record("approval_granted", approval_id=approval_id, amount=Decimal("1.50")))

        assert payload["message"] == "approval_granted"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "casework.test"
        assert payload["approval_id"] == str(approval_id)
        assert payload["amount"] == "1.50"
        assert "ts" in payload

    def test_exception_fields(self):
        try:
            raise AlreadyApprovedByRoleError("req-1", "Site Engineer")
        except AlreadyApprovedByRoleError:
            record = logging.LogRecord(
                "casework.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        payload = _format(record)

        assert payload["exc_type"] == "AlreadyApprovedByRoleError"
        assert payload["exc_code"] == "ALREADY_APPROVED_BY_ROLE"
        assert payload["exc_role"] == "Site Engineer"
        assert payload["exc_approval_id"] == "req-1"
        assert "traceback" in payload


@pytest.fixture
def clean_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.mark.usefixtures("clean_context")
class TestLogContext:
    def test_bind_sets_and_restores(self):
        case_id = uuid4()
        LogContext.set(actor_id="outer")
        with LogContext.bind(case_id=case_id, actor_id=uuid4(), unknown_field="x"):
            ctx = LogContext.get_all()
            assert ctx["case_id"] == str(case_id)
            assert ctx["actor_id"] != "outer"
            assert "unknown_field" not in ctx
            payload = _format(_record())
            assert payload["case_id"] == str(case_id)

        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_none_values_are_ignored(self):
        with LogContext.bind(project_id=None):
            assert "project_id" not in LogContext.get_all()


class TestConfigureLogging:
    def test_idempotent(self):
        logger = logging.getLogger("casework")
        reset_logging()
        try:
            stream = StringIO()
            configure_logging(stream=stream)
            configure_logging(stream=StringIO())
            assert len(logger.handlers) == 1
            assert logger.propagate is False

            get_logger("services.test").info("hello", extra={"n": 1})
            (line,) = stream.getvalue().strip().splitlines()
            assert json.loads(line)["n"] == 1
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)
