"""Channel adapter contract shared by every delivery channel.

Implements the uniform send contract: opt-in check, contact preflight,
per-recipient rendering and transport, with every failure converted into a
failed SendResult.
"""

import asyncio
import logging
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import httpx

from notifyhub.core.config import Settings, settings as default_settings
from notifyhub.core.logging import log_error, log_info, log_warning
from notifyhub.modules.audience.schemas import RecipientInfo
from notifyhub.modules.notification.schemas import (
    DeliveryStatus,
    ErrorCode,
    NotificationChannel,
    SendResult,
    TemplateInfo,
)
from notifyhub.modules.template import TemplateError, build_context, render

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r"\D")
# Ten-digit mobile number without country code, keyed by country code
LOCAL_MOBILE_PATTERNS = {"91": r"[6-9]\d{9}"}
DEFAULT_LOCAL_MOBILE_PATTERN = r"[1-9]\d{9}"
INTERNATIONAL_NUMBER_REGEX = re.compile(r"^\d{10,15}$")


class NotificationError(Exception):
    """Channel-level failure identified by a machine-readable code."""

    def __init__(
        self,
        message: str,
        channel: Optional[NotificationChannel] = None,
        code: str = ErrorCode.SEND_FAILED.value,
    ):
        super().__init__(message)
        self.message = message
        self.channel = channel
        self.code = code.value if isinstance(code, ErrorCode) else code

    def to_dict(self) -> dict:
        return {
            "error": "NotificationError",
            "message": self.message,
            "channel": self.channel.value if self.channel else None,
            "code": self.code,
        }


# ==================== Phone numbers ====================

def local_mobile_pattern(country_code: str) -> str:
    return LOCAL_MOBILE_PATTERNS.get(country_code, DEFAULT_LOCAL_MOBILE_PATTERN)


def normalize_phone(phone: str, country_code: str = "91") -> str:
    """Strip non-digits and prefix the country code for local mobile numbers."""
    cleaned = _NON_DIGIT.sub("", phone or "")
    if re.fullmatch(local_mobile_pattern(country_code), cleaned):
        cleaned = country_code + cleaned
    return cleaned


def is_valid_sms_number(phone: str, country_code: str = "91") -> bool:
    """Check for a country-code-prefixed mobile number in the configured country."""
    pattern = re.escape(country_code) + local_mobile_pattern(country_code)
    return re.fullmatch(pattern, phone) is not None


def is_valid_chat_number(phone: str, country_code: str = "91") -> bool:
    return is_valid_sms_number(phone, country_code) or bool(INTERNATIONAL_NUMBER_REGEX.match(phone))


def mask_target(target: str) -> str:
    """Mask a contact target for log lines."""
    if not target:
        return ""
    if "@" in target:
        local, _, domain = target.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(target) > 4:
        return f"{'*' * (len(target) - 4)}{target[-4:]}"
    return target


def preview_text(content: str, length: int = 50) -> str:
    return content[:length] + ("..." if len(content) > length else "")


# ==================== Capabilities ====================

@runtime_checkable
class SupportsDeliveryStatus(Protocol):
    """Adapters able to poll a provider for message delivery state."""

    async def get_delivery_status(self, message_id: str) -> DeliveryStatus:
        ...


class ChannelAdapter(ABC):
    """Base class for delivery channel adapters.

    Subclasses implement ``resolve_target`` (contact preflight) and
    ``deliver`` (rendering and transport). ``send`` never raises.
    """

    channel: NotificationChannel
    opt_in_field: str = ""

    def __init__(
        self,
        config: Optional[Settings] = None,
        simulation_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_settings
        self.simulation_delay = (
            self.config.CHANNEL_SIMULATION_DELAY_SECONDS
            if simulation_delay is None
            else simulation_delay
        )
        self._transport = transport

    @property
    @abstractmethod
    def simulated(self) -> bool:
        """True when no transport credentials are configured."""

    @abstractmethod
    def resolve_target(self, recipient: RecipientInfo) -> str:
        """Return the normalized contact target for a recipient.

        Raises:
            NotificationError: If the contact method is missing or invalid.
        """

    @abstractmethod
    async def deliver(
        self,
        template: TemplateInfo,
        recipient: RecipientInfo,
        target: str,
        context: dict,
    ) -> SendResult:
        """Render and transmit one message, returning the success result."""

    @abstractmethod
    def validate_config(self, config: Any) -> bool:
        """Check a channel configuration object."""

    async def send(
        self,
        template: TemplateInfo,
        recipient: RecipientInfo,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> SendResult:
        """Deliver a template to one recipient.

        Args:
            template: Template bound to this channel
            recipient: Recipient projection from the directory
            variables: Request variables, dot-path keys allowed

        Returns:
            SendResult describing success or the failure reason
        """
        target = ""
        try:
            if self.opt_in_field and not getattr(recipient, self.opt_in_field, True):
                raise NotificationError(
                    f"Recipient opted out of {self.channel.value} notifications",
                    self.channel,
                    ErrorCode.OPTED_OUT.value,
                )
            target = self.resolve_target(recipient)
            context = build_context(variables, recipient.template_fields())
            return await self.deliver(template, recipient, target, context)

        except NotificationError as exc:
            log_warning(
                logger,
                f"{self.channel.value} send skipped or rejected",
                code=exc.code,
                recipient_id=recipient.id,
                template_id=template.id,
                reason=exc.message,
            )
            return self.failure(recipient, exc.message, exc.code, target)
        except TemplateError as exc:
            log_error(logger, "Template rendering failed", exc, template_id=template.id)
            return self.failure(recipient, exc.message, ErrorCode.SEND_FAILED.value, target)
        except httpx.TimeoutException as exc:
            log_error(logger, f"{self.channel.value} transport timeout", exc, recipient_id=recipient.id)
            return self.failure(recipient, f"{self.channel.value} transport timeout", ErrorCode.TIMEOUT.value, target)
        except httpx.HTTPError as exc:
            log_error(logger, f"{self.channel.value} transport error", exc, recipient_id=recipient.id)
            return self.failure(recipient, str(exc), ErrorCode.TRANSPORT_ERROR.value, target)
        except Exception as exc:
            log_error(logger, f"Failed to send {self.channel.value}", exc, recipient_id=recipient.id)
            return self.failure(recipient, str(exc) or type(exc).__name__, ErrorCode.SEND_FAILED.value, target)

    # ==================== Helpers ====================

    def render(self, text: str, context: dict, template: TemplateInfo) -> str:
        return render(text, context, template.id)

    def http_client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout or self.config.CHANNEL_SEND_TIMEOUT_SECONDS,
        )

    async def simulate(self, target: str, content: str, **extra: Any) -> str:
        """Pretend to deliver and return a synthesized message id."""
        if self.simulation_delay > 0:
            await asyncio.sleep(self.simulation_delay)
        message_id = f"sim-{self.channel.value.lower()}-{uuid.uuid4().hex[:12]}"
        log_info(
            logger,
            f"Simulated {self.channel.value} send",
            to=mask_target(target),
            content=preview_text(content),
            message_id=message_id,
            **extra,
        )
        return message_id

    def success(
        self,
        recipient: RecipientInfo,
        target: str,
        message_id: Optional[str],
    ) -> SendResult:
        return SendResult(
            success=True,
            channel=self.channel,
            recipient=target or recipient.id,
            recipient_id=recipient.id,
            message_id=message_id,
            delivered_at=datetime.now(timezone.utc),
        )

    def failure(
        self,
        recipient: RecipientInfo,
        error: str,
        code: str,
        target: str = "",
    ) -> SendResult:
        return SendResult(
            success=False,
            channel=self.channel,
            recipient=target or recipient.id,
            recipient_id=recipient.id,
            error=error,
            error_code=code,
        )
