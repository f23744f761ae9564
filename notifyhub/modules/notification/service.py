"""Dispatch coordinator for multi-channel notifications.

Validates a dispatch request, resolves its template and audience, fans out
sends in fixed-size concurrent batches and folds the per-recipient results
into the notification record.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Union

from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.config import settings
from notifyhub.core.logging import correlation_scope, log_error, log_info
from notifyhub.modules.audience import (
    AudienceError,
    AudienceResolver,
    RecipientInfo,
)
from notifyhub.modules.audience.repository import UserDirectoryRepository
from notifyhub.modules.notification.channels import (
    ChannelAdapter,
    NotificationError,
    SupportsDeliveryStatus,
    build_channel_registry,
)
from notifyhub.modules.notification.repository import (
    NotificationRecordRepository,
    TemplateRepository,
)
from notifyhub.modules.notification.schemas import (
    AdHocRecipient,
    DeliveryStatus,
    DispatchOutcome,
    ErrorCode,
    NotificationAnalytics,
    NotificationChannel,
    NotificationRecordInfo,
    NotificationRequest,
    NotificationSnapshot,
    NotificationStats,
    NotificationStatus,
    SendResult,
    TemplateInfo,
)
from notifyhub.modules.template import (
    STANDARD_ROOTS,
    TemplateEngine,
    TemplateError,
    resolve_path,
)
from notifyhub.modules.template.engine import expand_variables

logger = logging.getLogger(__name__)


class TemplateStore(Protocol):
    async def get_template(self, template_id: str) -> Optional[TemplateInfo]:
        ...


class NotificationRecordStore(Protocol):
    async def create_notification(self, snapshot: NotificationSnapshot) -> str:
        ...

    async def complete_notification(
        self,
        notification_id: str,
        status: NotificationStatus,
        stats: Optional[NotificationStats] = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        recipient_count: Optional[int] = None,
    ) -> None:
        ...

    async def get_notification(self, notification_id: str) -> Optional[NotificationRecordInfo]:
        ...

    async def list_due_scheduled(
        self,
        now: datetime,
        limit: int = 50,
    ) -> list[NotificationRecordInfo]:
        ...

    async def claim_scheduled(self, notification_id: str) -> bool:
        ...


def _utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _rate(numerator: Optional[int], denominator: Optional[int]) -> float:
    if not denominator:
        return 0.0
    return round((numerator or 0) / denominator * 100 * 100) / 100


def compute_status(stats: NotificationStats) -> NotificationStatus:
    """A dispatch is SENT when at least one recipient succeeded."""
    return NotificationStatus.SENT if stats.sent >= 1 else NotificationStatus.FAILED


def parse_analytics(stats: Optional[NotificationStats]) -> dict[str, float]:
    """Derive delivery, open and click rates as two-decimal percentages."""
    if stats is None:
        return {"delivery_rate": 0.0, "open_rate": 0.0, "click_rate": 0.0}
    return {
        "delivery_rate": _rate(stats.delivered, stats.sent),
        "open_rate": _rate(stats.opened, stats.delivered),
        "click_rate": _rate(stats.clicked, stats.opened),
    }


class NotificationService:
    """Coordinator for notification dispatch.

    Adapters are injected as a map from channel to adapter instance.
    """

    def __init__(
        self,
        channels: Mapping[NotificationChannel, ChannelAdapter],
        templates: TemplateStore,
        records: NotificationRecordStore,
        resolver: AudienceResolver,
        batch_size: Optional[int] = None,
        batch_pause: Optional[float] = None,
        send_timeout: Optional[float] = None,
    ):
        self.channels = dict(channels)
        self.templates = templates
        self.records = records
        self.resolver = resolver
        self.batch_size = max(1, batch_size or settings.DISPATCH_BATCH_SIZE)
        self.batch_pause = (
            settings.DISPATCH_BATCH_PAUSE_SECONDS if batch_pause is None else batch_pause
        )
        self.send_timeout = send_timeout or settings.CHANNEL_SEND_TIMEOUT_SECONDS

    @classmethod
    def from_session(
        cls,
        session: AsyncSession,
        channels: Optional[Mapping[NotificationChannel, ChannelAdapter]] = None,
    ) -> "NotificationService":
        """Wire the SQL-backed stores of one session."""
        return cls(
            channels=channels if channels is not None else build_channel_registry(),
            templates=TemplateRepository(session),
            records=NotificationRecordRepository(session),
            resolver=AudienceResolver(UserDirectoryRepository(session)),
        )

    # ==================== Dispatch ====================

    async def send_notification(
        self,
        request: Union[NotificationRequest, Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> DispatchOutcome:
        """Send a notification to its audience.

        Args:
            request: Dispatch request
            now: Reference time for scheduling decisions (defaults to now)

        Returns:
            DispatchOutcome with notification id, per-recipient results and stats

        Raises:
            NotificationError: Template missing, inactive or on another channel
            TemplateError: Malformed template or missing declared variables
            AudienceError: Invalid audience or no recipients
        """
        if not isinstance(request, NotificationRequest):
            request = NotificationRequest.model_validate(request)
        now = _utc(now or datetime.now(timezone.utc))

        try:
            template, adapter = await self._prepare(request.template_id, request.channel, request.variables)
            recipients = await self._resolve_recipients(request)
        except (NotificationError, TemplateError, AudienceError) as exc:
            log_error(
                logger,
                "Notification sending failed",
                exc,
                template_id=request.template_id,
                channel=request.channel.value,
            )
            raise

        scheduled_at = _utc(request.scheduled_at) if request.scheduled_at else None
        is_future = scheduled_at is not None and scheduled_at > now

        notification_id = await self.records.create_notification(
            NotificationSnapshot(
                channel=request.channel,
                template_id=template.id,
                audience=request.audience,
                variables=request.variables,
                recipient_count=len(recipients),
                priority=request.priority,
                status=NotificationStatus.SCHEDULED if is_future else NotificationStatus.PENDING,
                scheduled_at=scheduled_at,
            )
        )

        if is_future:
            log_info(
                logger,
                "Notification scheduled",
                notification_id=notification_id,
                scheduled_at=scheduled_at.isoformat(),
            )
            return DispatchOutcome(
                notification_id=notification_id,
                status=NotificationStatus.SCHEDULED,
            )

        return await self._run(notification_id, template, adapter, recipients, request.variables)

    async def send_test_notification(
        self,
        template_id: str,
        channel: Union[NotificationChannel, str],
        recipient: Union[AdHocRecipient, Mapping[str, Any]],
        variables: Optional[Mapping[str, Any]] = None,
    ) -> SendResult:
        """Send one template to an ad-hoc recipient, bypassing audience resolution."""
        channel = NotificationChannel(channel)
        variables = dict(variables or {})
        if not isinstance(recipient, AdHocRecipient):
            recipient = AdHocRecipient.model_validate(recipient)

        template, adapter = await self._prepare(template_id, channel)

        target = RecipientInfo(
            id=recipient.id or "test-user",
            name=recipient.name or variables.get("user.name") or "Test User",
            email=recipient.email,
            phone=recipient.phone,
            locale=recipient.locale,
            push_subscription=recipient.push_subscription,
        )
        return await self._send_one(adapter, template, target, variables)

    def preview_template(
        self,
        body: str,
        sample_context: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Render a template body with sample data and no side effects."""
        return TemplateEngine.preview(body, sample_context)

    async def process_scheduled_notifications(
        self,
        now: Optional[datetime] = None,
    ) -> list[DispatchOutcome]:
        """Dispatch every scheduled record whose due time has passed.

        Each record is claimed (SCHEDULED to PENDING) before its fan-out and
        completed in place; records claimed by an overlapping pass are skipped.
        A record that cannot be resolved is marked FAILED and the remaining
        records still run.
        """
        now = _utc(now or datetime.now(timezone.utc))
        due = await self.records.list_due_scheduled(now, limit=settings.SCHEDULED_BATCH_LIMIT)
        outcomes = []

        for record in due:
            if not await self.records.claim_scheduled(record.id):
                log_info(logger, "Scheduled notification already claimed", notification_id=record.id)
                continue
            try:
                request = record.to_request()
                template, adapter = await self._prepare(request.template_id, request.channel, request.variables)
                recipients = await self._resolve_recipients(request)
            except Exception as exc:
                log_error(
                    logger,
                    "Failed to process scheduled notification",
                    exc,
                    notification_id=record.id,
                )
                error = getattr(exc, "message", None) or str(exc)
                await self.records.complete_notification(
                    record.id,
                    NotificationStatus.FAILED,
                    error=error,
                    completed_at=datetime.now(timezone.utc),
                )
                outcomes.append(DispatchOutcome(
                    notification_id=record.id,
                    status=NotificationStatus.FAILED,
                    error=error,
                ))
                continue

            outcomes.append(
                await self._run(record.id, template, adapter, recipients, request.variables)
            )

        if due:
            log_info(logger, "Processed scheduled notifications", processed=len(outcomes))
        return outcomes

    # ==================== Analytics ====================

    async def get_notification_analytics(self, notification_id: str) -> NotificationAnalytics:
        """Derive delivery rates from a record's stored statistics."""
        record = await self.records.get_notification(notification_id)
        if record is None:
            raise NotificationError(
                f"Notification not found: {notification_id}",
                code=ErrorCode.NOTIFICATION_NOT_FOUND.value,
            )
        return NotificationAnalytics(notification=record, **parse_analytics(record.stats))

    async def get_delivery_status(
        self,
        channel: Union[NotificationChannel, str],
        message_id: str,
    ) -> Optional[DeliveryStatus]:
        """Poll a provider for message state.

        Returns:
            The delivery status, or None if the channel cannot report it
        """
        adapter = self._get_adapter(NotificationChannel(channel))
        if not isinstance(adapter, SupportsDeliveryStatus):
            return None
        return await adapter.get_delivery_status(message_id)

    # ==================== Internals ====================

    def _get_adapter(self, channel: NotificationChannel) -> ChannelAdapter:
        adapter = self.channels.get(channel)
        if adapter is None:
            raise NotificationError(
                f"Unsupported channel: {channel.value}",
                channel,
                ErrorCode.CHANNEL_NOT_SUPPORTED.value,
            )
        return adapter

    async def _prepare(
        self,
        template_id: str,
        channel: NotificationChannel,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> tuple[TemplateInfo, ChannelAdapter]:
        """Load and check the template, then pick the channel adapter."""
        template = await self.templates.get_template(template_id)
        if template is None:
            raise NotificationError(
                f"Template not found: {template_id}",
                channel,
                ErrorCode.TEMPLATE_NOT_FOUND.value,
            )
        if not template.active:
            raise NotificationError(
                f"Template is inactive: {template_id}",
                channel,
                ErrorCode.TEMPLATE_INACTIVE.value,
            )
        if template.channel != channel:
            raise NotificationError(
                f"Template {template_id} is bound to {template.channel.value}, not {channel.value}",
                channel,
                ErrorCode.CHANNEL_MISMATCH.value,
            )

        adapter = self._get_adapter(channel)

        validation = TemplateEngine.validate(template.content)
        if not validation.valid:
            raise TemplateError(
                f"Invalid template syntax: {'; '.join(validation.errors)}",
                template.id,
                template.variables,
            )

        if variables is not None:
            self._check_declared_variables(template, variables)
        return template, adapter

    @staticmethod
    def _check_declared_variables(template: TemplateInfo, variables: Mapping[str, Any]) -> None:
        supplied = expand_variables(variables)
        missing = [
            name for name in template.variables
            if name.split(".")[0] not in STANDARD_ROOTS
            and resolve_path(supplied, name) is None
        ]
        if missing:
            raise TemplateError(
                f"Missing template variables: {', '.join(missing)}",
                template.id,
                missing,
            )

    async def _resolve_recipients(self, request: NotificationRequest) -> list[RecipientInfo]:
        recipients = await self.resolver.resolve(request.audience)
        if not recipients:
            raise AudienceError(
                "No recipients found for the specified audience",
                request.audience,
            )
        return recipients

    async def _run(
        self,
        notification_id: str,
        template: TemplateInfo,
        adapter: ChannelAdapter,
        recipients: list[RecipientInfo],
        variables: Mapping[str, Any],
    ) -> DispatchOutcome:
        """Fan out, aggregate and complete one record."""
        with correlation_scope(notification_id):
            results = await self._send_to_recipients(adapter, template, recipients, variables)
            stats = NotificationStats.from_results(results)
            status = compute_status(stats)

            await self.records.complete_notification(
                notification_id,
                status,
                stats=stats,
                completed_at=datetime.now(timezone.utc),
                recipient_count=len(recipients),
            )

            log_info(
                logger,
                "Notification sent",
                notification_id=notification_id,
                channel=adapter.channel.value,
                recipient_count=len(recipients),
                success_count=stats.sent,
                failure_count=stats.failed,
                skipped_count=stats.skipped,
            )
        return DispatchOutcome(
            notification_id=notification_id,
            status=status,
            results=results,
            stats=stats,
        )

    async def _send_to_recipients(
        self,
        adapter: ChannelAdapter,
        template: TemplateInfo,
        recipients: list[RecipientInfo],
        variables: Mapping[str, Any],
    ) -> list[SendResult]:
        """Send in sequential batches, concurrently within each batch."""
        results: list[SendResult] = []

        for start in range(0, len(recipients), self.batch_size):
            batch = recipients[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._send_one(adapter, template, recipient, variables) for recipient in batch),
                return_exceptions=True,
            )
            for recipient, outcome in zip(batch, outcomes):
                if isinstance(outcome, SendResult):
                    results.append(outcome)
                else:
                    results.append(SendResult(
                        success=False,
                        channel=adapter.channel,
                        recipient=recipient.id,
                        recipient_id=recipient.id,
                        error=str(outcome) or "Batch processing failed",
                        error_code=ErrorCode.SEND_FAILED.value,
                    ))

            if start + self.batch_size < len(recipients) and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        return results

    async def _send_one(
        self,
        adapter: ChannelAdapter,
        template: TemplateInfo,
        recipient: RecipientInfo,
        variables: Mapping[str, Any],
    ) -> SendResult:
        """Send to one recipient. Exceptions and timeouts become failed results."""
        try:
            return await asyncio.wait_for(
                adapter.send(template, recipient, variables),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            log_error(
                logger,
                "Channel send timed out",
                recipient_id=recipient.id,
                timeout=self.send_timeout,
            )
            return SendResult(
                success=False,
                channel=adapter.channel,
                recipient=recipient.id,
                recipient_id=recipient.id,
                error=f"Send timed out after {self.send_timeout}s",
                error_code=ErrorCode.TIMEOUT.value,
            )
        except Exception as exc:
            log_error(logger, "Channel send raised", exc, recipient_id=recipient.id)
            return SendResult(
                success=False,
                channel=adapter.channel,
                recipient=recipient.id,
                recipient_id=recipient.id,
                error=str(exc) or type(exc).__name__,
                error_code=ErrorCode.SEND_FAILED.value,
            )
