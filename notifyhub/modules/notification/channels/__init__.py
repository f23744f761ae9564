"""Delivery channel adapters."""

from typing import Optional

from notifyhub.core.config import Settings, settings as default_settings
from notifyhub.modules.notification.channels.base import (
    ChannelAdapter,
    NotificationError,
    SupportsDeliveryStatus,
    normalize_phone,
)
from notifyhub.modules.notification.channels.chat import ChatChannel
from notifyhub.modules.notification.channels.email import EmailChannel
from notifyhub.modules.notification.channels.push import PushChannel
from notifyhub.modules.notification.channels.sms import SMSChannel
from notifyhub.modules.notification.schemas import NotificationChannel


def build_channel_registry(
    config: Optional[Settings] = None,
    simulation_delay: Optional[float] = None,
) -> dict[NotificationChannel, ChannelAdapter]:
    """Create one adapter per channel, passed to the coordinator at startup."""
    config = config or default_settings
    return {
        NotificationChannel.EMAIL: EmailChannel(config, simulation_delay),
        NotificationChannel.SMS: SMSChannel(config, simulation_delay),
        NotificationChannel.CHAT: ChatChannel(config, simulation_delay),
        NotificationChannel.WEB_PUSH: PushChannel(config, simulation_delay),
    }


__all__ = [
    "ChannelAdapter",
    "ChatChannel",
    "EmailChannel",
    "NotificationError",
    "PushChannel",
    "SMSChannel",
    "SupportsDeliveryStatus",
    "build_channel_registry",
    "normalize_phone",
]
