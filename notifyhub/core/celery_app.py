"""Celery application configuration."""

from celery import Celery
from celery.signals import after_setup_logger

from notifyhub.core.config import settings
from notifyhub.core.logging import setup_logging

celery_app = Celery(
    "notifyhub",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "process-scheduled-notifications": {
            "task": "notifications.process_scheduled",
            "schedule": float(settings.SCHEDULED_POLL_INTERVAL_SECONDS),
        },
    },
)


@after_setup_logger.connect
def configure_worker_logging(logger=None, **kwargs):
    """Replace Celery's root handler with the structured one."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)


celery_app.autodiscover_tasks(["notifyhub.modules.notification"])
