"""Pydantic schemas for audience targeting."""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AudienceType(str, Enum):
    """Supported audience descriptor variants."""
    ALL = "ALL"
    ROLE = "ROLE"
    CUSTOM = "CUSTOM"


class AudienceCriteria(BaseModel):
    """Filter dimensions. AND across dimensions, OR within a list."""
    roles: Optional[list[str]] = Field(None, description="Recipients holding any of these roles")
    user_ids: Optional[list[str]] = Field(None, description="Explicit recipient id allowlist")
    wards: Optional[list[str]] = Field(None, description="Ward/region allowlist")
    interests: Optional[list[str]] = Field(None, description="Interest tags")
    has_phone: Optional[bool] = Field(None, description="Require (or exclude) a phone number")
    has_email: Optional[bool] = Field(None, description="Require (or exclude) an email address")
    locale: Optional[list[str]] = Field(None, description="Locale allowlist")


class AudienceDescriptor(BaseModel):
    """Declarative description of who receives a dispatch."""
    type: AudienceType
    criteria: AudienceCriteria = Field(default_factory=AudienceCriteria)


class AudienceValidation(BaseModel):
    """Result of structural descriptor validation."""
    valid: bool
    errors: list[str] = Field(default_factory=list)


class SegmentOption(BaseModel):
    value: str
    label: str


class AudienceSegments(BaseModel):
    """Options offered to audience builders."""
    roles: list[SegmentOption] = Field(default_factory=list)
    locales: list[SegmentOption] = Field(default_factory=list)


@dataclass(frozen=True)
class AudienceFilter:
    """Directory query built from a descriptor. Empty dimensions are not applied."""
    user_ids: tuple[str, ...] = ()
    roles: tuple[str, ...] = ()
    locales: tuple[str, ...] = ()
    has_email: Optional[bool] = None
    has_phone: Optional[bool] = None


class RecipientInfo(BaseModel):
    """Recipient projection returned by the user directory."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    locale: str = "en"
    roles: list[str] = Field(default_factory=list)

    # Per-channel opt-in flags
    email_enabled: bool = True
    sms_enabled: bool = True
    chat_enabled: bool = True
    push_enabled: bool = True

    push_subscription: Optional[dict[str, Any]] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    def template_fields(self) -> dict[str, Any]:
        """Values exposed to templates under ``user``."""
        return {
            "id": self.id,
            "name": self.name or "",
            "email": self.email or "",
            "phone": self.phone or "",
            "locale": self.locale,
            "roles": list(self.roles),
        }
