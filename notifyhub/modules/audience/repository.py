"""Repository for read-only user directory queries.

Each lookup is a single SELECT: the filter is translated into one WHERE clause
and roles are fetched through a joined eager load.
"""

import uuid
from typing import Optional

from sqlalchemy import Select, and_, false, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from notifyhub.modules.audience.models import Role, User
from notifyhub.modules.audience.schemas import AudienceFilter, RecipientInfo


def _as_uuids(values: tuple[str, ...]) -> list[uuid.UUID]:
    ids = []
    for value in values:
        try:
            ids.append(uuid.UUID(str(value)))
        except ValueError:
            continue
    return ids


def build_filter_conditions(audience_filter: AudienceFilter) -> list:
    """Translate an audience filter into SQL conditions (ANDed by the caller)."""
    conditions = [User.is_active.is_(True)]

    if audience_filter.user_ids:
        ids = _as_uuids(audience_filter.user_ids)
        conditions.append(User.id.in_(ids) if ids else false())

    if audience_filter.roles:
        conditions.append(User.roles.any(Role.name.in_(audience_filter.roles)))

    if audience_filter.has_email is True:
        conditions.append(User.email.is_not(None))
    elif audience_filter.has_email is False:
        conditions.append(User.email.is_(None))

    if audience_filter.has_phone is True:
        conditions.append(User.phone.is_not(None))
    elif audience_filter.has_phone is False:
        conditions.append(User.phone.is_(None))

    if audience_filter.locales:
        conditions.append(User.locale.in_(audience_filter.locales))

    return conditions


def build_recipient_query(audience_filter: AudienceFilter, limit: Optional[int] = None) -> Select:
    """Build the recipient projection query for a filter."""
    query = (
        select(User)
        .options(joinedload(User.roles))
        .where(and_(*build_filter_conditions(audience_filter)))
        .order_by(User.created_at, User.id)
    )
    if limit is not None:
        query = query.limit(limit)
    return query


def to_recipient(user: User) -> RecipientInfo:
    return RecipientInfo(
        id=str(user.id),
        name=user.name,
        email=user.email,
        phone=user.phone,
        locale=user.locale,
        roles=user.role_names,
        email_enabled=user.email_enabled,
        sms_enabled=user.sms_enabled,
        chat_enabled=user.chat_enabled,
        push_enabled=user.push_enabled,
        push_subscription=user.push_subscription,
    )


class UserDirectoryRepository:
    """SQL implementation of the recipient directory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_recipients(
        self,
        audience_filter: AudienceFilter,
        limit: Optional[int] = None,
    ) -> list[RecipientInfo]:
        """Return recipients matching the filter, unique by id."""
        result = await self.session.execute(build_recipient_query(audience_filter, limit))
        return [to_recipient(user) for user in result.unique().scalars().all()]

    async def count_recipients(self, audience_filter: AudienceFilter) -> int:
        """Count recipients matching the filter without loading them."""
        query = select(func.count(User.id)).where(
            and_(*build_filter_conditions(audience_filter))
        )
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_role_names(self) -> list[str]:
        result = await self.session.execute(select(Role.name).order_by(Role.name))
        return list(result.scalars().all())

    async def list_locales(self) -> list[str]:
        result = await self.session.execute(
            select(User.locale).distinct().order_by(User.locale)
        )
        return list(result.scalars().all())
