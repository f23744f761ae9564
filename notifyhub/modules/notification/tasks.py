"""Celery tasks for notification dispatch.

The beat schedule calls ``notifications.process_scheduled`` periodically;
``notifications.dispatch`` runs one dispatch request in the background.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from notifyhub.core.celery_app import celery_app
from notifyhub.core.database import async_session_maker, dispose_engine

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    name="notifications.process_scheduled",
)
def process_scheduled_notifications_task(self, now: Optional[str] = None) -> dict:
    """Dispatch scheduled notifications that are due.

    Args:
        now: Optional ISO timestamp used as the reference time
    """
    reference = datetime.fromisoformat(now) if now else None
    return asyncio.run(_process_scheduled(reference))


async def _process_scheduled(now: Optional[datetime]) -> dict:
    """Async implementation of scheduled processing."""
    from notifyhub.modules.notification.service import NotificationService

    try:
        async with async_session_maker() as session:
            service = NotificationService.from_session(session)
            outcomes = await service.process_scheduled_notifications(now)
    finally:
        await dispose_engine()

    return {
        "processed": len(outcomes),
        "sent": sum(1 for o in outcomes if o.status.value == "SENT"),
        "failed": sum(1 for o in outcomes if o.status.value == "FAILED"),
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    name="notifications.dispatch",
)
def dispatch_notification_task(self, request: dict) -> dict:
    """Run one dispatch request in the background.

    Args:
        request: Serialized NotificationRequest

    Returns:
        Serialized DispatchOutcome
    """
    return asyncio.run(_dispatch(request))


async def _dispatch(request: dict) -> dict:
    """Async implementation of background dispatch."""
    from notifyhub.modules.notification.service import NotificationService

    try:
        async with async_session_maker() as session:
            service = NotificationService.from_session(session)
            outcome = await service.send_notification(request)
    finally:
        await dispose_engine()

    return outcome.model_dump(mode="json")
