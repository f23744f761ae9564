"""Chat messaging channel over the WhatsApp Cloud API.

Supports plain text, pre-approved template and media (image or document)
messages, chosen by the template's ``message_type`` metadata.
"""

import logging
from typing import Any, Mapping, Union

from pydantic import ValidationError

from notifyhub.core.logging import log_error, log_info, log_warning
from notifyhub.modules.audience.schemas import RecipientInfo
from notifyhub.modules.notification.channels.base import (
    ChannelAdapter,
    NotificationError,
    is_valid_chat_number,
    mask_target,
    normalize_phone,
)
from notifyhub.modules.notification.schemas import (
    ChatConfig,
    DeliveryStatus,
    ErrorCode,
    NotificationChannel,
    SendResult,
    TemplateInfo,
)

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("text", "template", "media")
MEDIA_TYPES = ("image", "document")
MAX_TEXT_LENGTH = 4096


class ChatChannel(ChannelAdapter):
    """Chat message channel (WhatsApp Business)."""

    channel = NotificationChannel.CHAT
    opt_in_field = "chat_enabled"

    @property
    def simulated(self) -> bool:
        return not (self.config.WA_ACCESS_TOKEN and self.config.WA_PHONE_ID)

    @property
    def messages_url(self) -> str:
        return f"{self.config.WA_API_BASE_URL.rstrip('/')}/{self.config.WA_PHONE_ID}/messages"

    def resolve_target(self, recipient: RecipientInfo) -> str:
        if not recipient.phone:
            raise NotificationError(
                "Recipient phone number is required for CHAT channel",
                self.channel,
                ErrorCode.NO_PHONE.value,
            )
        phone = normalize_phone(recipient.phone, self.config.SMS_DEFAULT_COUNTRY_CODE)
        if not is_valid_chat_number(phone, self.config.SMS_DEFAULT_COUNTRY_CODE):
            raise NotificationError(
                f"Invalid chat phone number format: {recipient.phone}",
                self.channel,
                ErrorCode.INVALID_PHONE.value,
            )
        return phone

    async def deliver(
        self,
        template: TemplateInfo,
        recipient: RecipientInfo,
        target: str,
        context: dict,
    ) -> SendResult:
        message_type = template.metadata.get("message_type") or "text"
        if message_type == "template":
            message = self.build_template_message(target, template, recipient, context)
        elif message_type == "media":
            message = self.build_media_message(target, template, context)
        else:
            message = self.build_text_message(target, template, context)

        if self.simulated:
            preview = self.render(template.content, context, template)
            message_id = await self.simulate(target, preview, message_type=message_type)
            return self.success(recipient, target, message_id)

        async with self.http_client() as client:
            response = await client.post(
                self.messages_url,
                headers={"Authorization": f"Bearer {self.config.WA_ACCESS_TOKEN}"},
                json=message,
            )
        data = response.json()
        messages = data.get("messages") or []
        if not response.is_success or not messages:
            error = data.get("error") or {}
            detail = f"{error.get('message')} ({error.get('code')})" if error else "Chat API error"
            raise NotificationError(detail, self.channel, ErrorCode.SEND_FAILED.value)

        message_id = messages[0].get("id")
        log_info(
            logger,
            "Chat message sent successfully",
            message_id=message_id,
            to=mask_target(target),
            message_type=message_type,
        )
        return self.success(recipient, target, message_id)

    # ==================== Message builders ====================

    def build_text_message(self, phone: str, template: TemplateInfo, context: dict) -> dict:
        content = self.render(template.content, context, template)
        if len(content) > MAX_TEXT_LENGTH:
            log_warning(
                logger,
                "Chat message exceeds character limit, truncating",
                original_length=len(content),
                to=mask_target(phone),
            )
        return {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": "text",
            "text": {"body": content[:MAX_TEXT_LENGTH]},
        }

    def build_template_message(
        self,
        phone: str,
        template: TemplateInfo,
        recipient: RecipientInfo,
        context: dict,
    ) -> dict:
        template_name = template.metadata.get("template_name")
        if not template_name:
            raise NotificationError(
                "Template name is required for chat template messages",
                self.channel,
                ErrorCode.NO_TEMPLATE_NAME.value,
            )

        parameters = [
            {"type": "text", "text": self.render(str(param), context, template)}
            for param in template.metadata.get("template_params") or []
        ]
        message: dict = {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": "hi" if recipient.locale == "hi" else "en_US"},
            },
        }
        if parameters:
            message["template"]["components"] = [{"type": "body", "parameters": parameters}]
        return message

    def build_media_message(self, phone: str, template: TemplateInfo, context: dict) -> dict:
        media_url = template.metadata.get("media_url")
        if not media_url:
            raise NotificationError(
                "Media URL is required for chat media messages",
                self.channel,
                ErrorCode.NO_MEDIA_URL.value,
            )
        media_type = template.metadata.get("media_type") or "image"
        if media_type not in MEDIA_TYPES:
            media_type = "image"

        media: dict = {"link": media_url}
        caption = self.render(template.content, context, template)
        if caption:
            media["caption"] = caption
        if media_type == "document" and template.metadata.get("filename"):
            media["filename"] = template.metadata["filename"]

        return {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": media_type,
            media_type: media,
        }

    # ==================== Capabilities ====================

    def validate_config(self, config: Union[ChatConfig, Mapping[str, Any]]) -> bool:
        try:
            parsed = config if isinstance(config, ChatConfig) else ChatConfig.model_validate(config)
        except ValidationError:
            return False

        if parsed.message_type not in MESSAGE_TYPES:
            return False
        if parsed.message_type == "template" and not parsed.template_name:
            return False
        return True

    async def get_delivery_status(self, message_id: str) -> DeliveryStatus:
        """Poll message state. Any error yields pending."""
        if self.simulated:
            return DeliveryStatus.DELIVERED
        try:
            async with self.http_client() as client:
                response = await client.get(
                    f"{self.messages_url}/{message_id}",
                    headers={"Authorization": f"Bearer {self.config.WA_ACCESS_TOKEN}"},
                )
            if not response.is_success:
                return DeliveryStatus.PENDING
            status = str(response.json().get("status") or "").lower()
        except Exception as exc:
            log_error(logger, "Failed to get chat delivery status", exc, message_id=message_id)
            return DeliveryStatus.PENDING

        if status in ("delivered", "read"):
            return DeliveryStatus.DELIVERED
        if status == "failed":
            return DeliveryStatus.FAILED
        return DeliveryStatus.PENDING
