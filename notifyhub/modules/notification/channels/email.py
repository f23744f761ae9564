"""Email channel using SMTP.

Sends a multipart message with the rendered text body and a generated,
escaped HTML version. Simulates delivery when SMTP is not configured.
"""

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Mapping, Union

from pydantic import ValidationError

from notifyhub.core.logging import log_info
from notifyhub.modules.audience.schemas import RecipientInfo
from notifyhub.modules.notification.channels.base import (
    ChannelAdapter,
    NotificationError,
    mask_target,
)
from notifyhub.modules.notification.schemas import (
    EmailConfig,
    ErrorCode,
    NotificationChannel,
    SendResult,
    TemplateInfo,
)

logger = logging.getLogger(__name__)

HTML_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{subject}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="border-bottom: 2px solid #16a34a; padding-bottom: 20px; margin-bottom: 30px;">
        <h1 style="color: #16a34a; margin: 0; font-size: 24px;">{app_name}</h1>
    </div>
    <div>
        {body}
    </div>
    <div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; font-size: 14px; color: #6b7280;">
        <p>This email was sent from <a href="{app_url}">{app_name}</a>.</p>
        <p><small>If you no longer wish to receive these emails, you can
        <a href="{app_url}/preferences">update your preferences</a>.</small></p>
    </div>
</body>
</html>"""


def generate_html_content(text_content: str, subject: str, app_name: str, app_url: str) -> str:
    """Convert rendered plain text into a simple HTML email."""
    body = "".join(
        f"<p>{html.escape(line.strip())}</p>" if line.strip() else "<br>"
        for line in text_content.split("\n")
    )
    return HTML_LAYOUT.format(
        subject=html.escape(subject),
        app_name=html.escape(app_name),
        app_url=html.escape(app_url, quote=True),
        body=body,
    )


class EmailChannel(ChannelAdapter):
    """Email notification channel using SMTP."""

    channel = NotificationChannel.EMAIL
    opt_in_field = "email_enabled"

    @property
    def simulated(self) -> bool:
        return not self.config.SMTP_HOST

    @property
    def from_address(self) -> str:
        return self.config.SMTP_FROM_EMAIL or f'"{self.config.APP_NAME}" <noreply@localhost>'

    def resolve_target(self, recipient: RecipientInfo) -> str:
        if not recipient.email:
            raise NotificationError(
                "Recipient email is required for EMAIL channel",
                self.channel,
                ErrorCode.NO_EMAIL.value,
            )
        return recipient.email.strip()

    async def deliver(
        self,
        template: TemplateInfo,
        recipient: RecipientInfo,
        target: str,
        context: dict,
    ) -> SendResult:
        subject = (
            self.render(template.subject, context, template)
            if template.subject
            else f"Notification from {self.config.APP_NAME}"
        )
        content = self.render(template.content, context, template)
        html_content = generate_html_content(
            content, subject, self.config.APP_NAME, self.config.APP_URL
        )

        if self.simulated:
            message_id = await self.simulate(target, content, subject=subject)
            return self.success(recipient, target, message_id)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = target
        msg["Message-ID"] = make_msgid()
        if self.config.SMTP_REPLY_TO:
            msg["Reply-To"] = self.config.SMTP_REPLY_TO

        # Tracking headers
        msg["X-Notification-Template"] = template.id
        msg["X-Recipient-ID"] = recipient.id
        msg["X-Channel"] = self.channel.value

        msg.attach(MIMEText(content, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        # Send in thread pool to avoid blocking the event loop
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, target, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(
                f"SMTP delivery failed: {exc}",
                self.channel,
                ErrorCode.TRANSPORT_ERROR.value,
            ) from exc

        log_info(
            logger,
            "Email sent successfully",
            message_id=msg["Message-ID"],
            to=mask_target(target),
            subject=subject,
        )
        return self.success(recipient, target, msg["Message-ID"])

    def _send_smtp(self, recipient: str, msg: MIMEMultipart) -> None:
        """Send email via SMTP (blocking operation)."""
        with smtplib.SMTP(
            self.config.SMTP_HOST,
            self.config.SMTP_PORT,
            timeout=self.config.CHANNEL_SEND_TIMEOUT_SECONDS,
        ) as server:
            if self.config.SMTP_TLS:
                server.starttls()

            if self.config.SMTP_USER and self.config.SMTP_PASSWORD:
                server.login(self.config.SMTP_USER, self.config.SMTP_PASSWORD)

            server.sendmail(self.from_address, recipient, msg.as_string())

    def validate_config(self, config: Union[EmailConfig, Mapping[str, Any]]) -> bool:
        try:
            parsed = config if isinstance(config, EmailConfig) else EmailConfig.model_validate(config)
        except ValidationError:
            return False

        if "@" not in parsed.from_address:
            return False
        if parsed.reply_to and "@" not in parsed.reply_to:
            return False
        return True
