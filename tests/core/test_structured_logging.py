"""Tests for structured logging and session helpers."""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notifyhub.core import database
from notifyhub.core.logging import (
    CorrelationIdFilter,
    KeyValueFormatter,
    StructuredFormatter,
    correlation_scope,
    get_correlation_id,
    log_warning,
)


def make_record(message="Notification sent", exc_info=None, **extra):
    record = logging.LogRecord(
        name="notifyhub.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def raised(exc):
    try:
        raise exc
    except type(exc) as caught:
        return (type(caught), caught, caught.__traceback__)


class TestCorrelationScope:
    def test_scope_binds_and_restores(self):
        assert get_correlation_id() is None

        with correlation_scope("notification-1"):
            assert get_correlation_id() == "notification-1"
            with correlation_scope("notification-2"):
                assert get_correlation_id() == "notification-2"
            assert get_correlation_id() == "notification-1"

        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_tasks_keep_their_own_ids(self):
        async def run(notification_id):
            with correlation_scope(notification_id):
                await asyncio.sleep(0)
                return get_correlation_id()

        assert await asyncio.gather(run("a"), run("b")) == ["a", "b"]

    def test_filter_stamps_records(self):
        record = make_record()

        with correlation_scope("notification-3"):
            assert CorrelationIdFilter().filter(record)

        assert record.correlation_id == "notification-3"


class TestStructuredFormatter:
    def test_dispatch_fields_are_top_level(self):
        record = make_record(
            correlation_id="cid-1",
            recipient_id="u1",
            code="NO_PHONE",
            segments=2,
            payload={1, 2},
        )

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Notification sent"
        assert data["correlation_id"] == "cid-1"
        assert data["recipient_id"] == "u1"
        assert data["code"] == "NO_PHONE"
        assert data["extra"]["segments"] == 2
        assert isinstance(data["extra"]["payload"], str)

    def test_exception_details(self):
        record = make_record(exc_info=raised(ValueError("bad number")))

        data = json.loads(StructuredFormatter().format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad number"
        assert "Traceback" in data["exception"]["stack_trace"]

    def test_stack_trace_can_be_disabled(self):
        record = make_record(exc_info=raised(ValueError("bad number")))

        data = json.loads(StructuredFormatter(include_stack_trace=False).format(record))

        assert "stack_trace" not in data["exception"]


class TestKeyValueFormatter:
    def test_line_layout(self):
        record = make_record("SMS sent", correlation_id="n-9", provider="msg91")

        line = KeyValueFormatter().format(record)

        assert "INFO notifyhub.test [n-9] SMS sent provider=msg91" in line


class TestLogHelpers:
    def test_log_warning_attaches_fields(self, caplog):
        logger = logging.getLogger("notifyhub.test.helpers")

        with caplog.at_level(logging.WARNING, logger="notifyhub.test.helpers"):
            with correlation_scope("notification-4"):
                log_warning(logger, "SMS send skipped", code="NO_PHONE", recipient_id="u3")

        record = caplog.records[-1]
        assert record.code == "NO_PHONE"
        assert record.recipient_id == "u3"
        assert record.correlation_id == "notification-4"


class TestSessionDependency:
    @pytest.mark.asyncio
    async def test_rolls_back_when_caller_raises(self):
        session = MagicMock()
        session.rollback = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=session)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)

        with patch.object(database, "async_session_maker", factory):
            generator = database.get_db()
            assert await generator.__anext__() is session
            with pytest.raises(RuntimeError):
                await generator.athrow(RuntimeError("boom"))

        session.rollback.assert_awaited_once()
