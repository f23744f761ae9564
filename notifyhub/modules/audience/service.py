"""Audience resolution for notification dispatch.

Turns a declarative audience descriptor into a concrete recipient list with a
single directory query per call.
"""

import logging
from collections.abc import Mapping
from typing import Any, Optional, Protocol, Union

from pydantic import ValidationError

from notifyhub.modules.audience.schemas import (
    AudienceDescriptor,
    AudienceFilter,
    AudienceSegments,
    AudienceType,
    AudienceValidation,
    RecipientInfo,
    SegmentOption,
)

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_LIMIT = 10

LOCALE_LABELS = {
    "en": "English",
    "hi": "Hindi",
}


class AudienceError(Exception):
    """Raised when an audience is malformed or resolves to nobody."""

    def __init__(
        self,
        message: str,
        audience: Optional[Any] = None,
        errors: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.audience = audience
        self.errors = errors or []

    def to_dict(self) -> dict:
        audience = self.audience
        if isinstance(audience, AudienceDescriptor):
            audience = audience.model_dump(mode="json")
        return {
            "error": "AudienceError",
            "message": self.message,
            "audience": audience,
            "errors": self.errors,
        }


class RecipientDirectory(Protocol):
    """Read-only user directory consulted by the resolver."""

    async def find_recipients(
        self,
        audience_filter: AudienceFilter,
        limit: Optional[int] = None,
    ) -> list[RecipientInfo]:
        ...

    async def count_recipients(self, audience_filter: AudienceFilter) -> int:
        ...

    async def list_role_names(self) -> list[str]:
        ...

    async def list_locales(self) -> list[str]:
        ...


DescriptorInput = Union[AudienceDescriptor, Mapping[str, Any]]


class AudienceResolver:
    """Resolve audience descriptors against a recipient directory."""

    def __init__(self, directory: RecipientDirectory):
        self.directory = directory

    # ==================== Validation ====================

    @staticmethod
    def validate(descriptor: DescriptorInput) -> AudienceValidation:
        """Check descriptor shape. Never touches the directory."""
        errors: list[str] = []

        if isinstance(descriptor, AudienceDescriptor):
            parsed = descriptor
        else:
            if not isinstance(descriptor, Mapping):
                return AudienceValidation(valid=False, errors=["Audience descriptor must be an object"])
            try:
                parsed = AudienceDescriptor.model_validate(descriptor)
            except ValidationError as exc:
                for error in exc.errors():
                    location = ".".join(str(part) for part in error["loc"]) or "audience"
                    if location == "type":
                        errors.append("Invalid audience type. Must be ALL, ROLE, or CUSTOM")
                    else:
                        errors.append(f"{location}: {error['msg']}")
                return AudienceValidation(valid=False, errors=errors)

        if parsed.type == AudienceType.ROLE and not parsed.criteria.roles:
            errors.append("Role-based audience must specify at least one role")

        return AudienceValidation(valid=not errors, errors=errors)

    @classmethod
    def _require_valid(cls, descriptor: DescriptorInput) -> AudienceDescriptor:
        validation = cls.validate(descriptor)
        if not validation.valid:
            raise AudienceError(
                f"Invalid audience: {'; '.join(validation.errors)}",
                descriptor,
                validation.errors,
            )
        if isinstance(descriptor, AudienceDescriptor):
            return descriptor
        return AudienceDescriptor.model_validate(descriptor)

    @staticmethod
    def build_filter(descriptor: AudienceDescriptor) -> AudienceFilter:
        """Translate a descriptor into the directory filter."""
        criteria = descriptor.criteria

        if criteria.wards or criteria.interests:
            # No directory field backs these dimensions yet
            logger.warning(
                "Ward and interest criteria are not applied to directory queries",
                extra={"wards": criteria.wards, "interests": criteria.interests},
            )

        return AudienceFilter(
            user_ids=tuple(criteria.user_ids or ()),
            roles=tuple(criteria.roles or ()),
            locales=tuple(criteria.locale or ()),
            has_email=criteria.has_email,
            has_phone=criteria.has_phone,
        )

    # ==================== Resolution ====================

    async def resolve(self, descriptor: DescriptorInput) -> list[RecipientInfo]:
        """Resolve a descriptor to its recipients.

        Raises:
            AudienceError: If the descriptor is invalid or the directory fails.
        """
        parsed = self._require_valid(descriptor)
        audience_filter = self.build_filter(parsed)
        try:
            recipients = await self.directory.find_recipients(audience_filter)
        except Exception as exc:
            logger.error("Failed to resolve audience", exc_info=exc)
            raise AudienceError(f"Failed to resolve audience: {exc}", parsed) from exc

        logger.debug(
            "Resolved audience",
            extra={"audience_type": parsed.type.value, "recipients": len(recipients)},
        )
        return recipients

    async def estimate_size(self, descriptor: DescriptorInput) -> int:
        """Count matching recipients without fetching them."""
        parsed = self._require_valid(descriptor)
        try:
            return await self.directory.count_recipients(self.build_filter(parsed))
        except Exception as exc:
            logger.error("Failed to estimate audience size", exc_info=exc)
            raise AudienceError(f"Failed to estimate audience size: {exc}", parsed) from exc

    async def preview(
        self,
        descriptor: DescriptorInput,
        limit: int = DEFAULT_PREVIEW_LIMIT,
    ) -> list[RecipientInfo]:
        """Return the first ``limit`` matching recipients."""
        parsed = self._require_valid(descriptor)
        try:
            return await self.directory.find_recipients(self.build_filter(parsed), limit=limit)
        except Exception as exc:
            logger.error("Failed to get audience preview", exc_info=exc)
            raise AudienceError(f"Failed to get audience preview: {exc}", parsed) from exc

    async def get_segments(self) -> AudienceSegments:
        """List role and locale options available in the directory."""
        roles = await self.directory.list_role_names()
        locales = await self.directory.list_locales()
        return AudienceSegments(
            roles=[SegmentOption(value=name, label=name) for name in roles],
            locales=[
                SegmentOption(value=code, label=LOCALE_LABELS.get(code, code))
                for code in locales
            ],
        )
