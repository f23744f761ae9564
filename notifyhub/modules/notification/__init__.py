"""Notification dispatch module."""

from notifyhub.modules.notification.channels import (
    ChannelAdapter,
    NotificationError,
    SupportsDeliveryStatus,
    build_channel_registry,
)
from notifyhub.modules.notification.schemas import (
    DispatchOutcome,
    NotificationChannel,
    NotificationPriority,
    NotificationRequest,
    NotificationStats,
    NotificationStatus,
    SendResult,
    TemplateInfo,
)
from notifyhub.modules.notification.service import NotificationService

__all__ = [
    "ChannelAdapter",
    "DispatchOutcome",
    "NotificationChannel",
    "NotificationError",
    "NotificationPriority",
    "NotificationRequest",
    "NotificationService",
    "NotificationStats",
    "NotificationStatus",
    "SendResult",
    "SupportsDeliveryStatus",
    "TemplateInfo",
    "build_channel_registry",
]
