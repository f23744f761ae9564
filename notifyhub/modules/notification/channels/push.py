"""Browser push channel delivered through an HTTP push gateway.

The gateway holds the VAPID keys and performs the Web Push encryption; this
channel validates the subscription, enforces payload caps and posts the
payload.
"""

import logging
from typing import Any, Mapping, Union

from pydantic import ValidationError

from notifyhub.core.logging import log_info
from notifyhub.modules.audience.schemas import RecipientInfo
from notifyhub.modules.notification.channels.base import (
    ChannelAdapter,
    NotificationError,
)
from notifyhub.modules.notification.schemas import (
    ErrorCode,
    NotificationChannel,
    PushConfig,
    SendResult,
    TemplateInfo,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 120
MAX_BODY_LENGTH = 320


def validate_push_subscription(subscription: Any) -> bool:
    """Check the ``{endpoint, keys: {p256dh, auth}}`` subscription shape."""
    if not isinstance(subscription, Mapping):
        return False
    if not isinstance(subscription.get("endpoint"), str) or not subscription["endpoint"]:
        return False
    keys = subscription.get("keys")
    if not isinstance(keys, Mapping):
        return False
    return isinstance(keys.get("p256dh"), str) and isinstance(keys.get("auth"), str)


class PushChannel(ChannelAdapter):
    """Browser push notification channel."""

    channel = NotificationChannel.WEB_PUSH
    opt_in_field = "push_enabled"

    @property
    def simulated(self) -> bool:
        return not self.config.PUSH_GATEWAY_URL

    def resolve_target(self, recipient: RecipientInfo) -> str:
        subscription = recipient.push_subscription
        if not subscription:
            raise NotificationError(
                "Recipient has no push subscription",
                self.channel,
                ErrorCode.NO_SUBSCRIPTION.value,
            )
        if not validate_push_subscription(subscription):
            raise NotificationError(
                "Invalid push subscription format",
                self.channel,
                ErrorCode.INVALID_SUBSCRIPTION.value,
            )
        return subscription["endpoint"]

    def build_payload(self, template: TemplateInfo, context: dict) -> dict:
        """Render the push payload and enforce title and body caps.

        Raises:
            NotificationError: If the rendered title or body is too long.
        """
        title = (
            self.render(template.subject, context, template)
            if template.subject
            else self.config.APP_NAME
        )
        body = self.render(template.content, context, template)

        if len(title) > MAX_TITLE_LENGTH:
            raise NotificationError(
                f"Push title exceeds {MAX_TITLE_LENGTH} characters ({len(title)})",
                self.channel,
                ErrorCode.PAYLOAD_TOO_LONG.value,
            )
        if len(body) > MAX_BODY_LENGTH:
            raise NotificationError(
                f"Push body exceeds {MAX_BODY_LENGTH} characters ({len(body)})",
                self.channel,
                ErrorCode.PAYLOAD_TOO_LONG.value,
            )

        metadata = template.metadata
        data = dict(metadata.get("data") or {})
        if metadata.get("url"):
            data.setdefault("url", self.render(str(metadata["url"]), context, template))

        return {
            "title": title,
            "body": body,
            "icon": metadata.get("icon") or self.config.PUSH_DEFAULT_ICON,
            "badge": metadata.get("badge"),
            "image": metadata.get("image"),
            "tag": metadata.get("tag") or template.id,
            "actions": list(metadata.get("actions") or []),
            "require_interaction": bool(metadata.get("require_interaction", False)),
            "data": data,
            "ttl": int(metadata.get("ttl") or self.config.PUSH_DEFAULT_TTL),
        }

    async def deliver(
        self,
        template: TemplateInfo,
        recipient: RecipientInfo,
        target: str,
        context: dict,
    ) -> SendResult:
        payload = self.build_payload(template, context)

        if self.simulated:
            message_id = await self.simulate(target, payload["body"], title=payload["title"])
            return self.success(recipient, target, message_id)

        headers = {}
        if self.config.PUSH_GATEWAY_TOKEN:
            headers["Authorization"] = f"Bearer {self.config.PUSH_GATEWAY_TOKEN}"

        async with self.http_client() as client:
            response = await client.post(
                self.config.PUSH_GATEWAY_URL,
                headers=headers,
                json={
                    "subscription": recipient.push_subscription,
                    "payload": payload,
                    "ttl": payload["ttl"],
                },
            )

        if response.status_code == 410:
            raise NotificationError(
                "Push subscription has expired",
                self.channel,
                ErrorCode.INVALID_SUBSCRIPTION.value,
            )
        if not response.is_success:
            raise NotificationError(
                f"Push gateway error: {response.status_code} - {response.text}",
                self.channel,
                ErrorCode.SEND_FAILED.value,
            )

        data = response.json() if response.content else {}
        message_id = data.get("id") or data.get("message_id")
        log_info(logger, "Push notification sent", message_id=message_id, tag=payload["tag"])
        return self.success(recipient, target, message_id)

    def validate_config(self, config: Union[PushConfig, Mapping[str, Any]]) -> bool:
        try:
            parsed = config if isinstance(config, PushConfig) else PushConfig.model_validate(config)
        except ValidationError:
            return False
        return len(parsed.title) <= MAX_TITLE_LENGTH and len(parsed.body) <= MAX_BODY_LENGTH
