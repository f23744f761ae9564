"""Tests for notification Celery tasks.

Tasks are called directly, so no broker is involved.
"""

import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from celery.signals import after_setup_logger

from notifyhub.core.celery_app import celery_app
from notifyhub.core.config import settings
from notifyhub.modules.notification import tasks
from notifyhub.modules.notification.schemas import (
    DispatchOutcome,
    NotificationStats,
    NotificationStatus,
)


def patched_service(service):
    return (
        patch.object(tasks, "async_session_maker", MagicMock()),
        patch.object(tasks, "dispose_engine", AsyncMock()),
        patch(
            "notifyhub.modules.notification.service.NotificationService.from_session",
            return_value=service,
        ),
    )


class TestTaskRegistration:
    def test_task_names(self):
        assert "notifications.process_scheduled" in celery_app.tasks
        assert "notifications.dispatch" in celery_app.tasks

    def test_beat_schedule(self):
        entry = celery_app.conf.beat_schedule["process-scheduled-notifications"]
        assert entry["task"] == "notifications.process_scheduled"

    def test_worker_logging_uses_structured_handler(self):
        with patch("notifyhub.core.celery_app.setup_logging") as setup:
            after_setup_logger.send(
                sender=None,
                logger=logging.getLogger(),
                loglevel=logging.INFO,
                logfile=None,
                format="",
                colorize=False,
            )

        setup.assert_called_once_with(settings.LOG_LEVEL, settings.LOG_JSON)


class TestProcessScheduledTask:
    def test_summarizes_outcomes(self):
        service = MagicMock()
        service.process_scheduled_notifications = AsyncMock(return_value=[
            DispatchOutcome(notification_id="a", status=NotificationStatus.SENT),
            DispatchOutcome(notification_id="b", status=NotificationStatus.FAILED),
            DispatchOutcome(notification_id="c", status=NotificationStatus.SENT),
        ])
        session_patch, dispose_patch, service_patch = patched_service(service)

        with session_patch, dispose_patch as dispose, service_patch:
            summary = tasks.process_scheduled_notifications_task("2024-01-15T10:00:00+00:00")

        assert summary == {"processed": 3, "sent": 2, "failed": 1}
        service.process_scheduled_notifications.assert_awaited_once_with(
            datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        )
        dispose.assert_awaited_once()


class TestDispatchTask:
    def test_returns_serialized_outcome(self):
        service = MagicMock()
        service.send_notification = AsyncMock(return_value=DispatchOutcome(
            notification_id="n-1",
            status=NotificationStatus.SENT,
            stats=NotificationStats(sent=1, delivered=1),
        ))
        request = {"template_id": "sms-1", "channel": "SMS", "audience": {"type": "ALL"}}
        session_patch, dispose_patch, service_patch = patched_service(service)

        with session_patch, dispose_patch, service_patch:
            result = tasks.dispatch_notification_task(request)

        assert result["notification_id"] == "n-1"
        assert result["status"] == "SENT"
        assert result["stats"]["sent"] == 1
        service.send_notification.assert_awaited_once_with(request)
