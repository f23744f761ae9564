"""SMS channel supporting MSG91, Gupshup and Textlocal.

Numbers are normalized to the country-code-prefixed digit form the providers
expect. Without an API key the channel runs in simulation mode.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from notifyhub.core.logging import log_error, log_info, log_warning
from notifyhub.modules.audience.schemas import RecipientInfo
from notifyhub.modules.notification.channels.base import (
    ChannelAdapter,
    NotificationError,
    is_valid_sms_number,
    mask_target,
    normalize_phone,
)
from notifyhub.modules.notification.schemas import (
    DeliveryStatus,
    ErrorCode,
    NotificationChannel,
    SendResult,
    SMSConfig,
    TemplateInfo,
)

logger = logging.getLogger(__name__)

SMS_PROVIDERS = ("msg91", "gupshup", "textlocal", "mock")

MSG91_FLOW_URL = "https://control.msg91.com/api/v5/flow/"
MSG91_REPORT_URL = "https://control.msg91.com/api/v5/report/{message_id}"
GUPSHUP_URL = "https://enterprise.smsgupshup.com/GatewayAPI/rest"
TEXTLOCAL_SEND_URL = "https://api.textlocal.in/send/"
TEXTLOCAL_RECEIPT_URL = "https://api.textlocal.in/get_delivery_receipt/"

# Longest concatenated message most carriers accept
MAX_RECOMMENDED_LENGTH = 918
MAX_SENDER_ID_LENGTH = 6

GSM_BASIC_CHARSET = frozenset(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)
GSM_EXTENDED_CHARSET = frozenset("^{}\\[~]|€\f")


@dataclass
class SMSLength:
    """Character and segment count of an SMS body."""
    chars: int
    segments: int
    unicode: bool


@dataclass
class ProviderResponse:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def calculate_sms_length(content: str) -> SMSLength:
    """Count characters and billing segments.

    GSM-7 messages fit 160 characters in one segment and 153 per segment when
    concatenated. Anything outside GSM-7 is sent as UCS-2: 70 and 67.
    """
    unicode = any(
        ch not in GSM_BASIC_CHARSET and ch not in GSM_EXTENDED_CHARSET for ch in content
    )
    if unicode:
        chars = len(content)
        single, multi = 70, 67
    else:
        chars = sum(2 if ch in GSM_EXTENDED_CHARSET else 1 for ch in content)
        single, multi = 160, 153

    segments = 1
    if chars > single:
        segments = -(-chars // multi)
    return SMSLength(chars=chars, segments=segments, unicode=unicode)


class SMSChannel(ChannelAdapter):
    """SMS notification channel."""

    channel = NotificationChannel.SMS
    opt_in_field = "sms_enabled"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        provider = (self.config.SMS_PROVIDER or "mock").lower()
        if provider not in SMS_PROVIDERS:
            log_warning(logger, "Unknown SMS provider, SMS notifications will be simulated", provider=provider)
            provider = "mock"
        elif provider != "mock" and not self.config.SMS_API_KEY:
            log_warning(logger, "SMS API key not configured, SMS notifications will be simulated", provider=provider)
            provider = "mock"
        self.provider = provider

    @property
    def simulated(self) -> bool:
        return self.provider == "mock"

    def resolve_target(self, recipient: RecipientInfo) -> str:
        if not recipient.phone:
            raise NotificationError(
                "Recipient phone number is required for SMS channel",
                self.channel,
                ErrorCode.NO_PHONE.value,
            )
        phone = normalize_phone(recipient.phone, self.config.SMS_DEFAULT_COUNTRY_CODE)
        if not is_valid_sms_number(phone, self.config.SMS_DEFAULT_COUNTRY_CODE):
            raise NotificationError(
                f"Invalid phone number format: {recipient.phone}",
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
        content = self.render(template.content, context, template)

        length = calculate_sms_length(content)
        if length.chars > MAX_RECOMMENDED_LENGTH:
            log_warning(
                logger,
                "SMS content exceeds recommended length",
                length=length.chars,
                segments=length.segments,
                to=mask_target(target),
            )

        result = await self._send_sms(target, content, template.metadata)
        if not result.success:
            raise NotificationError(
                result.error or "SMS sending failed",
                self.channel,
                ErrorCode.SEND_FAILED.value,
            )

        log_info(
            logger,
            "SMS sent successfully",
            provider=self.provider,
            message_id=result.message_id,
            to=mask_target(target),
            segments=length.segments,
        )
        return self.success(recipient, target, result.message_id)

    def validate_config(self, config: Union[SMSConfig, Mapping[str, Any]]) -> bool:
        try:
            parsed = config if isinstance(config, SMSConfig) else SMSConfig.model_validate(config)
        except ValidationError:
            return False
        # DLT sender ids are at most six characters
        return 0 < len(parsed.sender_id) <= MAX_SENDER_ID_LENGTH

    async def get_delivery_status(self, message_id: str) -> DeliveryStatus:
        """Poll the provider for delivery state. Any error yields pending."""
        try:
            if self.provider == "msg91":
                return await self._msg91_status(message_id)
            if self.provider == "gupshup":
                # Gupshup reports arrive through webhooks only
                return DeliveryStatus.PENDING
            if self.provider == "textlocal":
                return await self._textlocal_status(message_id)
            return DeliveryStatus.DELIVERED
        except Exception as exc:
            log_error(logger, "Failed to get SMS delivery status", exc, message_id=message_id)
            return DeliveryStatus.PENDING

    # ==================== Providers ====================

    async def _send_sms(
        self,
        phone: str,
        content: str,
        metadata: Mapping[str, Any],
    ) -> ProviderResponse:
        if self.provider == "msg91":
            return await self._send_msg91(phone, content, metadata)
        if self.provider == "gupshup":
            return await self._send_gupshup(phone, content)
        if self.provider == "textlocal":
            return await self._send_textlocal(phone, content)
        message_id = await self.simulate(phone, content, provider="mock")
        return ProviderResponse(success=True, message_id=message_id)

    async def _send_msg91(
        self,
        phone: str,
        content: str,
        metadata: Mapping[str, Any],
    ) -> ProviderResponse:
        template_id = metadata.get("dlt_template_id") or self.config.SMS_DLT_TEMPLATE_ID
        async with self.http_client() as client:
            response = await client.post(
                MSG91_FLOW_URL,
                headers={"authkey": self.config.SMS_API_KEY},
                json={
                    "template_id": template_id,
                    "sender": self.config.SMS_SENDER_ID,
                    "short_url": "0",
                    "mobiles": phone,
                    "var1": content,
                },
            )
        data = response.json()
        if response.is_success and data.get("type") == "success":
            return ProviderResponse(success=True, message_id=data.get("request_id"))
        return ProviderResponse(success=False, error=data.get("message") or "MSG91 API error")

    async def _send_gupshup(self, phone: str, content: str) -> ProviderResponse:
        async with self.http_client() as client:
            response = await client.post(
                GUPSHUP_URL,
                data={
                    "method": "SendMessage",
                    "send_to": phone,
                    "msg": content,
                    "msg_type": "TEXT",
                    "userid": self.config.GUPSHUP_USER_ID,
                    "auth_scheme": "plain",
                    "password": self.config.SMS_API_KEY,
                    "format": "json",
                    "v": "1.1",
                },
            )
        body = response.json().get("response", {})
        if body.get("status") == "success":
            return ProviderResponse(success=True, message_id=body.get("id"))
        return ProviderResponse(success=False, error=body.get("details") or "Gupshup API error")

    async def _send_textlocal(self, phone: str, content: str) -> ProviderResponse:
        async with self.http_client() as client:
            response = await client.post(
                TEXTLOCAL_SEND_URL,
                data={
                    "apikey": self.config.SMS_API_KEY,
                    "numbers": phone,
                    "message": content,
                    "sender": self.config.SMS_SENDER_ID,
                    "test": "1" if self.config.DEBUG else "0",
                },
            )
        data = response.json()
        if data.get("status") == "success":
            return ProviderResponse(success=True, message_id=str(data.get("batch_id")))
        errors = data.get("errors") or [{}]
        return ProviderResponse(success=False, error=errors[0].get("message") or "Textlocal API error")

    async def _msg91_status(self, message_id: str) -> DeliveryStatus:
        async with self.http_client() as client:
            response = await client.get(
                MSG91_REPORT_URL.format(message_id=message_id),
                headers={"authkey": self.config.SMS_API_KEY},
            )
        entries = response.json().get("data") or [{}]
        status = str(entries[0].get("status") or "").lower()
        if status in ("delivered", "delivrd"):
            return DeliveryStatus.DELIVERED
        if status in ("failed", "rejected", "undelivered"):
            return DeliveryStatus.FAILED
        return DeliveryStatus.PENDING

    async def _textlocal_status(self, message_id: str) -> DeliveryStatus:
        async with self.http_client() as client:
            response = await client.get(
                TEXTLOCAL_RECEIPT_URL,
                params={"apikey": self.config.SMS_API_KEY, "batch_id": message_id},
            )
        data = response.json()
        receipts = data.get("receipts") or []
        if data.get("status") != "success" or not receipts:
            return DeliveryStatus.PENDING
        status = str(receipts[0].get("status") or "").lower()
        if status == "delivered":
            return DeliveryStatus.DELIVERED
        if status in ("undelivered", "failed"):
            return DeliveryStatus.FAILED
        return DeliveryStatus.PENDING
