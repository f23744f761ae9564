"""Pydantic schemas for notification dispatch."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from notifyhub.modules.audience.schemas import AudienceDescriptor


class NotificationChannel(str, Enum):
    """Supported delivery channels."""
    EMAIL = "EMAIL"
    SMS = "SMS"
    CHAT = "CHAT"
    WEB_PUSH = "WEB_PUSH"


class NotificationStatus(str, Enum):
    """Notification record lifecycle states."""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    SCHEDULED = "SCHEDULED"


class NotificationPriority(str, Enum):
    """Dispatch priority levels."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class DeliveryStatus(str, Enum):
    """Provider-reported delivery state of a single message."""
    DELIVERED = "delivered"
    FAILED = "failed"
    PENDING = "pending"


class ErrorCode(str, Enum):
    """Machine-readable notification error codes."""
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    TEMPLATE_INACTIVE = "TEMPLATE_INACTIVE"
    CHANNEL_MISMATCH = "CHANNEL_MISMATCH"
    CHANNEL_NOT_SUPPORTED = "CHANNEL_NOT_SUPPORTED"
    NOTIFICATION_NOT_FOUND = "NOTIFICATION_NOT_FOUND"
    NO_EMAIL = "NO_EMAIL"
    NO_PHONE = "NO_PHONE"
    INVALID_PHONE = "INVALID_PHONE"
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    INVALID_SUBSCRIPTION = "INVALID_SUBSCRIPTION"
    PAYLOAD_TOO_LONG = "PAYLOAD_TOO_LONG"
    NO_TEMPLATE_NAME = "NO_TEMPLATE_NAME"
    NO_MEDIA_URL = "NO_MEDIA_URL"
    OPTED_OUT = "OPTED_OUT"
    TIMEOUT = "TIMEOUT"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    SEND_FAILED = "SEND_FAILED"


# Recipients excluded before any transport call
SKIPPED_ERROR_CODES = frozenset({
    ErrorCode.NO_EMAIL.value,
    ErrorCode.NO_PHONE.value,
    ErrorCode.NO_SUBSCRIPTION.value,
    ErrorCode.OPTED_OUT.value,
})

PRIORITY_ORDER = {
    NotificationPriority.URGENT.value: 4,
    NotificationPriority.HIGH.value: 3,
    NotificationPriority.NORMAL.value: 2,
    NotificationPriority.LOW.value: 1,
}


# ==================== Templates ====================

class TemplateCreate(BaseModel):
    """Schema for creating a notification template."""
    name: str = Field(..., min_length=1, description="Template name")
    channel: NotificationChannel
    subject: Optional[str] = Field(None, description="Subject or push title")
    content: str = Field(..., min_length=1, description="Template body")
    variables: list[str] = Field(default_factory=list, description="Declared variable paths")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Channel-specific hints")
    active: bool = True


class TemplateInfo(BaseModel):
    """Template as seen by the dispatch coordinator and adapters."""
    id: str
    name: str = ""
    channel: NotificationChannel
    subject: Optional[str] = None
    content: str
    variables: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ==================== Dispatch ====================

class NotificationRequest(BaseModel):
    """Caller-supplied dispatch request."""
    template_id: str = Field(..., min_length=1)
    channel: NotificationChannel
    audience: AudienceDescriptor
    variables: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: Optional[datetime] = None
    priority: NotificationPriority = NotificationPriority.NORMAL


class AdHocRecipient(BaseModel):
    """Ad-hoc recipient for test sends."""
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    locale: str = "en"
    push_subscription: Optional[dict[str, Any]] = None


class SendResult(BaseModel):
    """Outcome of one delivery attempt."""

    model_config = ConfigDict(frozen=True)

    success: bool
    channel: NotificationChannel
    recipient: str = Field(..., description="Contact target or recipient id")
    recipient_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    delivered_at: Optional[datetime] = None

    @property
    def skipped(self) -> bool:
        return not self.success and self.error_code in SKIPPED_ERROR_CODES


class NotificationStats(BaseModel):
    """Aggregate outcome counts of one dispatch."""
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    opened: Optional[int] = None
    clicked: Optional[int] = None

    @classmethod
    def from_results(cls, results: list[SendResult]) -> "NotificationStats":
        sent = sum(1 for r in results if r.success)
        delivered = sum(1 for r in results if r.success and r.delivered_at is not None)
        skipped = sum(1 for r in results if r.skipped)
        failed = len(results) - sent - skipped
        return cls(sent=sent, delivered=delivered, failed=failed, skipped=skipped)

    @property
    def total(self) -> int:
        return self.sent + self.failed + self.skipped


class DispatchOutcome(BaseModel):
    """Structured result returned for non-aborting dispatches."""
    notification_id: str
    status: NotificationStatus
    results: list[SendResult] = Field(default_factory=list)
    stats: NotificationStats = Field(default_factory=NotificationStats)
    error: Optional[str] = None


# ==================== Records ====================

class NotificationSnapshot(BaseModel):
    """Data persisted when a dispatch begins."""
    channel: NotificationChannel
    template_id: str
    audience: AudienceDescriptor
    variables: dict[str, Any] = Field(default_factory=dict)
    recipient_count: int = 0
    priority: NotificationPriority = NotificationPriority.NORMAL
    status: NotificationStatus = NotificationStatus.PENDING
    scheduled_at: Optional[datetime] = None


class NotificationRecordInfo(BaseModel):
    """Persisted notification record."""
    id: str
    channel: NotificationChannel
    template_id: Optional[str] = None
    audience: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    recipient_count: int = 0
    priority: NotificationPriority = NotificationPriority.NORMAL
    status: NotificationStatus
    stats: Optional[NotificationStats] = None
    error: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_request(self) -> NotificationRequest:
        """Rebuild the dispatch request stored with this record."""
        return NotificationRequest(
            template_id=self.template_id or "",
            channel=self.channel,
            audience=AudienceDescriptor.model_validate(self.audience),
            variables=self.variables,
            scheduled_at=self.scheduled_at,
            priority=self.priority,
        )


class NotificationAnalytics(BaseModel):
    """Derived delivery rates for a notification, as percentages."""
    notification: NotificationRecordInfo
    delivery_rate: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0


# ==================== Channel Configuration ====================

class EmailConfig(BaseModel):
    """Email sender configuration."""

    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(..., alias="from", min_length=1)
    reply_to: Optional[str] = None
    html: bool = True


class SMSConfig(BaseModel):
    """SMS sender configuration."""
    sender_id: str = Field(..., min_length=1)
    template_id: Optional[str] = Field(None, description="DLT template id")
    unicode: bool = False


class ChatConfig(BaseModel):
    """Chat (WhatsApp Cloud API) sender configuration."""
    business_id: str = Field(..., min_length=1)
    phone_number_id: str = Field(..., min_length=1)
    message_type: str = "text"
    template_name: Optional[str] = None
    template_params: Optional[list[str]] = None


class PushAction(BaseModel):
    action: str
    title: str
    icon: Optional[str] = None


class PushConfig(BaseModel):
    """Browser push payload configuration."""
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    icon: Optional[str] = None
    badge: Optional[str] = None
    image: Optional[str] = None
    actions: list[PushAction] = Field(default_factory=list)
    tag: Optional[str] = None
    require_interaction: bool = False
    ttl: int = 86400
