"""Tests for channel adapters in simulation mode.

Covers contact preflight, opt-out handling, payload caps, message building
and channel configuration checks. No transport is configured, so every
successful send is simulated.
"""

import re
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings as hypothesis_settings, strategies as st

from notifyhub.core.config import Settings
from notifyhub.modules.audience import RecipientInfo
from notifyhub.modules.notification.channels import (
    ChatChannel,
    EmailChannel,
    NotificationError,
    PushChannel,
    SMSChannel,
    SupportsDeliveryStatus,
    build_channel_registry,
    normalize_phone,
)
from notifyhub.modules.notification.channels.base import is_valid_sms_number, mask_target
from notifyhub.modules.notification.channels.email import generate_html_content
from notifyhub.modules.notification.channels.push import validate_push_subscription
from notifyhub.modules.notification.channels.sms import calculate_sms_length
from notifyhub.modules.notification.schemas import (
    DeliveryStatus,
    ErrorCode,
    NotificationChannel,
    TemplateInfo,
)

SUBSCRIPTION = {
    "endpoint": "https://push.example.com/sub/abc",
    "keys": {"p256dh": "key", "auth": "secret"},
}


@pytest.fixture
def config():
    return Settings(_env_file=None)


def make_template(channel, content="Hello {{user.name}}", subject=None, **metadata):
    return TemplateInfo(
        id="tpl-1",
        name="test",
        channel=channel,
        subject=subject,
        content=content,
        metadata=metadata,
    )


def make_recipient(**overrides):
    data = {
        "id": "u1",
        "name": "Asha",
        "email": "asha@example.com",
        "phone": "98765 43210",
        "locale": "en",
        "push_subscription": SUBSCRIPTION,
    }
    data.update(overrides)
    return RecipientInfo(**data)


class TestPhoneNumbers:
    """Tests for phone normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("9876543210", "919876543210"),
            ("+91 98765-43210", "919876543210"),
            ("(987) 654-3210", "919876543210"),
            ("919876543210", "919876543210"),
            ("5876543210", "5876543210"),
            ("", ""),
        ],
    )
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    @given(digits=st.from_regex(r"[6-9][0-9]{9}", fullmatch=True))
    @hypothesis_settings(max_examples=100)
    def test_local_mobile_numbers_become_valid_sms_numbers(self, digits):
        assert is_valid_sms_number(normalize_phone(digits))

    def test_other_country_code(self):
        assert normalize_phone("+44 7911 123456", "44") == "447911123456"
        assert is_valid_sms_number("447911123456", "44")
        assert not is_valid_sms_number("919876543210", "44")

    @pytest.mark.asyncio
    async def test_sms_send_with_configured_country_code(self):
        channel = SMSChannel(Settings(_env_file=None, SMS_DEFAULT_COUNTRY_CODE="44"), 0)

        result = await channel.send(
            make_template(NotificationChannel.SMS), make_recipient(phone="7911123456")
        )

        assert result.success
        assert result.recipient == "447911123456"

    def test_mask_target(self):
        assert mask_target("919876543210") == "********3210"
        assert mask_target("asha@example.com") == "as***@example.com"


class TestSMSLength:
    """Tests for SMS segment counting."""

    @pytest.mark.parametrize(
        "content,chars,segments,unicode",
        [
            ("a" * 160, 160, 1, False),
            ("a" * 161, 161, 2, False),
            ("a" * 306, 306, 2, False),
            ("a" * 307, 307, 3, False),
            ("€" * 80, 160, 1, False),
            ("न" * 70, 70, 1, True),
            ("न" * 71, 71, 2, True),
            ("न" * 134, 134, 2, True),
            ("", 0, 1, False),
        ],
    )
    def test_segments(self, content, chars, segments, unicode):
        length = calculate_sms_length(content)
        assert (length.chars, length.segments, length.unicode) == (chars, segments, unicode)


class TestContactPreflight:
    """Missing or invalid contacts fail before any transport call."""

    @pytest.mark.asyncio
    async def test_email_without_address(self, config):
        result = await EmailChannel(config, 0).send(
            make_template(NotificationChannel.EMAIL), make_recipient(email=None)
        )

        assert not result.success
        assert result.error_code == ErrorCode.NO_EMAIL.value
        assert result.skipped

    @pytest.mark.asyncio
    async def test_sms_without_phone_never_calls_provider(self, config):
        channel = SMSChannel(config, 0)
        channel._send_sms = AsyncMock()

        result = await channel.send(make_template(NotificationChannel.SMS), make_recipient(phone=None))

        assert result.error_code == ErrorCode.NO_PHONE.value
        assert result.recipient == "u1"
        channel._send_sms.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sms_invalid_phone(self, config):
        result = await SMSChannel(config, 0).send(
            make_template(NotificationChannel.SMS), make_recipient(phone="12345")
        )

        assert result.error_code == ErrorCode.INVALID_PHONE.value
        assert not result.skipped

    @pytest.mark.asyncio
    async def test_chat_accepts_international_numbers(self, config):
        result = await ChatChannel(config, 0).send(
            make_template(NotificationChannel.CHAT), make_recipient(phone="+44 20 7946 0958")
        )

        assert result.success
        assert result.recipient == "442079460958"

    @pytest.mark.asyncio
    async def test_chat_without_phone(self, config):
        result = await ChatChannel(config, 0).send(
            make_template(NotificationChannel.CHAT), make_recipient(phone="")
        )
        assert result.error_code == ErrorCode.NO_PHONE.value

    @pytest.mark.asyncio
    async def test_push_without_subscription(self, config):
        result = await PushChannel(config, 0).send(
            make_template(NotificationChannel.WEB_PUSH), make_recipient(push_subscription=None)
        )
        assert result.error_code == ErrorCode.NO_SUBSCRIPTION.value

    @pytest.mark.asyncio
    async def test_push_malformed_subscription(self, config):
        result = await PushChannel(config, 0).send(
            make_template(NotificationChannel.WEB_PUSH),
            make_recipient(push_subscription={"endpoint": "https://push.example.com"}),
        )
        assert result.error_code == ErrorCode.INVALID_SUBSCRIPTION.value

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "channel_cls,channel,flag",
        [
            (EmailChannel, NotificationChannel.EMAIL, "email_enabled"),
            (SMSChannel, NotificationChannel.SMS, "sms_enabled"),
            (ChatChannel, NotificationChannel.CHAT, "chat_enabled"),
            (PushChannel, NotificationChannel.WEB_PUSH, "push_enabled"),
        ],
    )
    async def test_opted_out_recipients_are_skipped(self, config, channel_cls, channel, flag):
        result = await channel_cls(config, 0).send(make_template(channel), make_recipient(**{flag: False}))

        assert result.error_code == ErrorCode.OPTED_OUT.value
        assert result.skipped

    def test_push_subscription_shape(self):
        assert validate_push_subscription(SUBSCRIPTION)
        assert not validate_push_subscription({"endpoint": "", "keys": SUBSCRIPTION["keys"]})
        assert not validate_push_subscription({"endpoint": "x", "keys": {"p256dh": "k"}})
        assert not validate_push_subscription("https://push.example.com")


class TestSimulatedSends:
    """Unconfigured transports synthesize message ids."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "channel_cls,channel",
        [
            (EmailChannel, NotificationChannel.EMAIL),
            (SMSChannel, NotificationChannel.SMS),
            (ChatChannel, NotificationChannel.CHAT),
            (PushChannel, NotificationChannel.WEB_PUSH),
        ],
    )
    async def test_simulated_send_succeeds(self, config, channel_cls, channel):
        adapter = channel_cls(config, 0)

        result = await adapter.send(make_template(channel), make_recipient())

        assert adapter.simulated
        assert result.success
        assert result.recipient_id == "u1"
        assert result.delivered_at is not None
        assert re.fullmatch(rf"sim-{channel.value.lower()}-[0-9a-f]{{12}}", result.message_id)

    @pytest.mark.asyncio
    async def test_malformed_template_becomes_failed_result(self, config):
        result = await EmailChannel(config, 0).send(
            make_template(NotificationChannel.EMAIL, content="{{#if x}}open"),
            make_recipient(),
        )

        assert not result.success
        assert result.error_code == ErrorCode.SEND_FAILED.value

    def test_unknown_sms_provider_falls_back_to_mock(self):
        adapter = SMSChannel(Settings(_env_file=None, SMS_PROVIDER="carrier-pigeon"), 0)
        assert adapter.provider == "mock"

    def test_sms_provider_without_key_is_simulated(self):
        adapter = SMSChannel(Settings(_env_file=None, SMS_PROVIDER="msg91", SMS_API_KEY=""), 0)
        assert adapter.simulated

    def test_registry_covers_every_channel(self, config):
        registry = build_channel_registry(config, simulation_delay=0)

        assert set(registry) == set(NotificationChannel)
        assert all(adapter.simulation_delay == 0 for adapter in registry.values())

    def test_delivery_status_capability(self, config):
        registry = build_channel_registry(config, simulation_delay=0)

        assert isinstance(registry[NotificationChannel.SMS], SupportsDeliveryStatus)
        assert isinstance(registry[NotificationChannel.CHAT], SupportsDeliveryStatus)
        assert not isinstance(registry[NotificationChannel.EMAIL], SupportsDeliveryStatus)
        assert not isinstance(registry[NotificationChannel.WEB_PUSH], SupportsDeliveryStatus)

    @pytest.mark.asyncio
    async def test_simulated_delivery_status(self, config):
        assert await SMSChannel(config, 0).get_delivery_status("sim-sms-1") == DeliveryStatus.DELIVERED
        assert await ChatChannel(config, 0).get_delivery_status("sim-chat-1") == DeliveryStatus.DELIVERED


class TestPushPayload:
    """Tests for push payload building."""

    def test_payload_fields(self, config):
        template = make_template(
            NotificationChannel.WEB_PUSH,
            content="Event on {{event.day}}",
            subject="Hi {{user.name}}",
            url="/events/{{event.id}}",
            actions=[{"action": "open", "title": "Open"}],
            ttl=600,
            image="https://cdn.example.com/banner.png",
            require_interaction=True,
        )
        context = {"user": {"name": "Asha"}, "event": {"day": "Monday", "id": "e7"}}

        payload = PushChannel(config, 0).build_payload(template, context)

        assert payload["title"] == "Hi Asha"
        assert payload["body"] == "Event on Monday"
        assert payload["tag"] == "tpl-1"
        assert payload["data"] == {"url": "/events/e7"}
        assert payload["ttl"] == 600
        assert payload["actions"] == [{"action": "open", "title": "Open"}]
        assert payload["image"] == "https://cdn.example.com/banner.png"
        assert payload["require_interaction"] is True

    def test_title_defaults_to_app_name(self, config):
        payload = PushChannel(config, 0).build_payload(make_template(NotificationChannel.WEB_PUSH), {})
        assert payload["title"] == config.APP_NAME
        assert payload["ttl"] == config.PUSH_DEFAULT_TTL
        assert payload["image"] is None
        assert payload["require_interaction"] is False

    def test_title_at_cap_is_accepted(self, config):
        template = make_template(NotificationChannel.WEB_PUSH, subject="t" * 120, content="b" * 320)
        payload = PushChannel(config, 0).build_payload(template, {})
        assert len(payload["title"]) == 120

    @pytest.mark.parametrize("subject,content", [("t" * 121, "body"), ("title", "b" * 321)])
    def test_oversized_payload_rejected(self, config, subject, content):
        template = make_template(NotificationChannel.WEB_PUSH, subject=subject, content=content)

        with pytest.raises(NotificationError) as exc_info:
            PushChannel(config, 0).build_payload(template, {})

        assert exc_info.value.code == ErrorCode.PAYLOAD_TOO_LONG.value

    @pytest.mark.asyncio
    async def test_oversized_body_fails_send(self, config):
        template = make_template(NotificationChannel.WEB_PUSH, content="{{text}}")

        result = await PushChannel(config, 0).send(template, make_recipient(), {"text": "x" * 400})

        assert result.error_code == ErrorCode.PAYLOAD_TOO_LONG.value


class TestChatMessages:
    """Tests for chat message construction."""

    def test_text_message_truncated(self, config):
        template = make_template(NotificationChannel.CHAT, content="{{text}}")

        message = ChatChannel(config, 0).build_text_message("919876543210", template, {"text": "x" * 5000})

        assert message["type"] == "text"
        assert len(message["text"]["body"]) == 4096

    def test_template_message_uses_locale_and_rendered_params(self, config):
        template = make_template(
            NotificationChannel.CHAT,
            message_type="template",
            template_name="scheme_update",
            template_params=["{{user.name}}", "{{scheme.name}}"],
        )
        recipient = make_recipient(locale="hi")
        context = {"user": {"name": "Asha"}, "scheme": {"name": "PM-KISAN"}}

        message = ChatChannel(config, 0).build_template_message("919876543210", template, recipient, context)

        assert message["template"]["name"] == "scheme_update"
        assert message["template"]["language"] == {"code": "hi"}
        assert message["template"]["components"][0]["parameters"] == [
            {"type": "text", "text": "Asha"},
            {"type": "text", "text": "PM-KISAN"},
        ]

    def test_template_message_requires_name(self, config):
        template = make_template(NotificationChannel.CHAT, message_type="template")

        with pytest.raises(NotificationError) as exc_info:
            ChatChannel(config, 0).build_template_message("919876543210", template, make_recipient(), {})

        assert exc_info.value.code == ErrorCode.NO_TEMPLATE_NAME.value

    def test_media_message(self, config):
        template = make_template(
            NotificationChannel.CHAT,
            content="Form for {{user.name}}",
            message_type="media",
            media_url="https://cdn.example.com/form.pdf",
            media_type="document",
            filename="form.pdf",
        )

        message = ChatChannel(config, 0).build_media_message(
            "919876543210", template, {"user": {"name": "Asha"}}
        )

        assert message["type"] == "document"
        assert message["document"] == {
            "link": "https://cdn.example.com/form.pdf",
            "caption": "Form for Asha",
            "filename": "form.pdf",
        }

    @pytest.mark.asyncio
    async def test_media_message_requires_url(self, config):
        template = make_template(NotificationChannel.CHAT, message_type="media")

        result = await ChatChannel(config, 0).send(template, make_recipient())

        assert result.error_code == ErrorCode.NO_MEDIA_URL.value


class TestChannelConfigValidation:
    """Tests for validate_config on every channel."""

    def test_email_config(self, config):
        channel = EmailChannel(config, 0)

        assert channel.validate_config({"from": "noreply@example.com"})
        assert channel.validate_config({"from_address": "a@b.c", "reply_to": "help@b.c"})
        assert not channel.validate_config({"from": "noreply"})
        assert not channel.validate_config({"from": "a@b.c", "reply_to": "help"})
        assert not channel.validate_config({})

    def test_sms_config(self, config):
        channel = SMSChannel(config, 0)

        assert channel.validate_config({"sender_id": "UMMID"})
        assert not channel.validate_config({"sender_id": "TOOLONG"})
        assert not channel.validate_config({"sender_id": ""})

    def test_chat_config(self, config):
        channel = ChatChannel(config, 0)
        base = {"business_id": "b1", "phone_number_id": "p1"}

        assert channel.validate_config(base)
        assert channel.validate_config({**base, "message_type": "template", "template_name": "t"})
        assert not channel.validate_config({**base, "message_type": "template"})
        assert not channel.validate_config({**base, "message_type": "sticker"})
        assert not channel.validate_config({"business_id": "b1"})

    def test_push_config(self, config):
        channel = PushChannel(config, 0)

        assert channel.validate_config({"title": "Hi", "body": "There"})
        assert not channel.validate_config({"title": "t" * 121, "body": "There"})
        assert not channel.validate_config({"title": "Hi", "body": "b" * 321})
        assert not channel.validate_config({"title": "Hi"})


class TestEmailHtml:
    def test_html_escapes_content(self):
        page = generate_html_content("Hi <b>Asha</b>\n\nBye", "Welcome & more", "App", "https://app.example.com")

        assert "<p>Hi &lt;b&gt;Asha&lt;/b&gt;</p><br><p>Bye</p>" in page
        assert "<title>Welcome &amp; more</title>" in page
        assert 'href="https://app.example.com/preferences"' in page
