"""Notification template and record models.

A template is bound to exactly one channel. A notification record is the
persisted envelope of one dispatch: written when the dispatch begins and once
more when its fan-out completes.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from notifyhub.core.database import Base
from notifyhub.modules.notification.schemas import (
    NotificationPriority,
    NotificationStatus,
)


def _template_id() -> str:
    return str(uuid.uuid4())


class NotificationTemplate(Base):
    """Reusable message template for one channel."""

    __tablename__ = "notification_templates"

    id: Mapped[str] = mapped_column(String(100), primary_key=True, default=_template_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    subject: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    variables: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # "metadata" is reserved on declarative classes
    template_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<NotificationTemplate(id={self.id}, channel={self.channel}, active={self.active})>"


class Notification(Base):
    """Persisted envelope of one dispatch."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    template_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Request snapshot
    audience: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    recipient_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=NotificationPriority.NORMAL.value
    )

    # Outcome
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.PENDING.value, index=True
    )
    stats: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_notifications_status_scheduled", "status", "scheduled_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, channel={self.channel}, status={self.status})>"
