"""Audience targeting module."""

from notifyhub.modules.audience.schemas import (
    AudienceCriteria,
    AudienceDescriptor,
    AudienceFilter,
    AudienceType,
    AudienceValidation,
    RecipientInfo,
)
from notifyhub.modules.audience.service import (
    AudienceError,
    AudienceResolver,
    RecipientDirectory,
)

__all__ = [
    "AudienceCriteria",
    "AudienceDescriptor",
    "AudienceError",
    "AudienceFilter",
    "AudienceResolver",
    "AudienceType",
    "AudienceValidation",
    "RecipientDirectory",
    "RecipientInfo",
]
