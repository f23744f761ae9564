"""Repositories for notification templates and records."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.modules.notification.models import Notification, NotificationTemplate
from notifyhub.modules.notification.schemas import (
    PRIORITY_ORDER,
    NotificationRecordInfo,
    NotificationSnapshot,
    NotificationStats,
    NotificationStatus,
    TemplateCreate,
    TemplateInfo,
)
from notifyhub.modules.template import TemplateError, TemplateEngine


def to_template_info(template: NotificationTemplate) -> TemplateInfo:
    return TemplateInfo(
        id=template.id,
        name=template.name,
        channel=template.channel,
        subject=template.subject,
        content=template.content,
        variables=list(template.variables or []),
        metadata=dict(template.template_metadata or {}),
        active=template.active,
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


def to_record_info(notification: Notification) -> NotificationRecordInfo:
    payload = notification.payload or {}
    stats = notification.stats
    return NotificationRecordInfo(
        id=str(notification.id),
        channel=notification.channel,
        template_id=notification.template_id,
        audience=notification.audience or {},
        variables=payload.get("variables") or {},
        recipient_count=notification.recipient_count,
        priority=notification.priority,
        status=notification.status,
        stats=NotificationStats.model_validate(stats) if stats else None,
        error=notification.error,
        scheduled_at=notification.scheduled_at,
        created_at=notification.created_at,
        completed_at=notification.completed_at,
    )


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class TemplateRepository:
    """Repository for notification templates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_template(self, template_id: str) -> Optional[TemplateInfo]:
        """Get template by ID."""
        template = await self.session.get(NotificationTemplate, template_id)
        return to_template_info(template) if template else None

    async def list_templates(
        self,
        channel: Optional[str] = None,
        active_only: bool = False,
    ) -> list[TemplateInfo]:
        query = select(NotificationTemplate).order_by(NotificationTemplate.created_at.desc())
        if channel:
            query = query.where(NotificationTemplate.channel == channel)
        if active_only:
            query = query.where(NotificationTemplate.active.is_(True))
        result = await self.session.execute(query)
        return [to_template_info(t) for t in result.scalars().all()]

    async def create_template(
        self,
        data: TemplateCreate,
        template_id: Optional[str] = None,
    ) -> TemplateInfo:
        """Create a template after validating its body and subject.

        Raises:
            TemplateError: If the body or subject is malformed.
        """
        errors = []
        for label, text in (("content", data.content), ("subject", data.subject)):
            if not text:
                continue
            validation = TemplateEngine.validate(text)
            errors.extend(f"{label}: {error}" for error in validation.errors)
        if errors:
            raise TemplateError(
                f"Invalid template syntax: {'; '.join(errors)}",
                template_id,
                data.variables,
            )

        variables = data.variables or TemplateEngine.extract_variables(data.content)
        template = NotificationTemplate(
            name=data.name,
            channel=data.channel.value,
            subject=data.subject,
            content=data.content,
            variables=variables,
            template_metadata=data.metadata,
            active=data.active,
        )
        if template_id:
            template.id = template_id
        self.session.add(template)
        await self.session.commit()
        await self.session.refresh(template)
        return to_template_info(template)


class NotificationRecordRepository:
    """Repository for notification records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_notification(self, snapshot: NotificationSnapshot) -> str:
        """Persist the request snapshot and return the record id."""
        notification = Notification(
            channel=snapshot.channel.value,
            template_id=snapshot.template_id,
            audience=snapshot.audience.model_dump(mode="json"),
            payload={
                "variables": snapshot.variables,
                "recipient_count": snapshot.recipient_count,
                "priority": snapshot.priority.value,
            },
            recipient_count=snapshot.recipient_count,
            priority=snapshot.priority.value,
            status=snapshot.status.value,
            scheduled_at=snapshot.scheduled_at,
        )
        self.session.add(notification)
        await self.session.commit()
        await self.session.refresh(notification)
        return str(notification.id)

    async def complete_notification(
        self,
        notification_id: str,
        status: NotificationStatus,
        stats: Optional[NotificationStats] = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        recipient_count: Optional[int] = None,
    ) -> None:
        """Write the final status and statistics of a dispatch."""
        record_id = _parse_uuid(notification_id)
        notification = await self.session.get(Notification, record_id) if record_id else None
        if notification is None:
            return

        notification.status = status.value
        notification.stats = stats.model_dump(exclude_none=True) if stats else None
        notification.error = error
        notification.completed_at = completed_at or datetime.now(timezone.utc)
        if recipient_count is not None:
            notification.recipient_count = recipient_count
        await self.session.commit()

    async def get_notification(self, notification_id: str) -> Optional[NotificationRecordInfo]:
        record_id = _parse_uuid(notification_id)
        if record_id is None:
            return None
        notification = await self.session.get(Notification, record_id)
        return to_record_info(notification) if notification else None

    async def list_due_scheduled(
        self,
        now: datetime,
        limit: int = 50,
    ) -> list[NotificationRecordInfo]:
        """Get due scheduled records, most urgent first, then oldest due time."""
        priority_rank = case(PRIORITY_ORDER, value=Notification.priority, else_=2)
        result = await self.session.execute(
            select(Notification)
            .where(
                Notification.status == NotificationStatus.SCHEDULED.value,
                Notification.scheduled_at <= now,
            )
            .order_by(priority_rank.desc(), Notification.scheduled_at.asc())
            .limit(limit)
        )
        return [to_record_info(n) for n in result.scalars().all()]

    async def claim_scheduled(self, notification_id: str) -> bool:
        """Move a due record from SCHEDULED to PENDING.

        Only one concurrent caller sees True for a given record; the rest
        must leave it alone.
        """
        record_id = _parse_uuid(notification_id)
        if record_id is None:
            return False
        result = await self.session.execute(
            update(Notification)
            .where(
                Notification.id == record_id,
                Notification.status == NotificationStatus.SCHEDULED.value,
            )
            .values(status=NotificationStatus.PENDING.value)
        )
        await self.session.commit()
        return result.rowcount == 1
