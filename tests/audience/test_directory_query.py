"""Tests for directory query construction.

Queries are compiled against the PostgreSQL dialect without a connection.
"""

import uuid
from types import SimpleNamespace

from sqlalchemy.dialects import postgresql

from notifyhub.modules.audience import AudienceFilter
from notifyhub.modules.audience.repository import (
    build_filter_conditions,
    build_recipient_query,
    to_recipient,
)


def compile_sql(query) -> str:
    return str(query.compile(dialect=postgresql.dialect())).lower()


class TestFilterConditions:
    """Each non-empty dimension adds exactly one condition."""

    def test_empty_filter_only_requires_active_users(self):
        conditions = build_filter_conditions(AudienceFilter())
        assert len(conditions) == 1

    def test_all_dimensions(self):
        audience_filter = AudienceFilter(
            user_ids=(str(uuid.uuid4()),),
            roles=("citizen",),
            locales=("hi",),
            has_email=True,
            has_phone=False,
        )
        assert len(build_filter_conditions(audience_filter)) == 6

    def test_invalid_ids_match_nobody(self):
        sql = compile_sql(build_recipient_query(AudienceFilter(user_ids=("not-a-uuid",))))
        assert "false" in sql


class TestRecipientQuery:
    """The recipient query is one SELECT with roles eagerly joined."""

    def test_single_select_with_role_join(self):
        sql = compile_sql(build_recipient_query(AudienceFilter(roles=("citizen", "admin"))))

        assert sql.count("select") == 2  # outer select plus the EXISTS for roles
        assert "exists" in sql
        assert "join" in sql
        assert "users.is_active is true" in sql

    def test_contact_flags(self):
        sql = compile_sql(build_recipient_query(AudienceFilter(has_email=True, has_phone=False)))

        assert "users.email is not null" in sql
        assert "users.phone is null" in sql

    def test_limit(self):
        sql = compile_sql(build_recipient_query(AudienceFilter(), limit=10))
        assert "limit" in sql


class TestRecipientProjection:
    def test_to_recipient(self):
        user_id = uuid.uuid4()
        user = SimpleNamespace(
            id=user_id,
            name="Asha",
            email="asha@example.com",
            phone=None,
            locale="hi",
            role_names=["citizen"],
            email_enabled=True,
            sms_enabled=False,
            chat_enabled=True,
            push_enabled=True,
            push_subscription=None,
        )

        recipient = to_recipient(user)

        assert recipient.id == str(user_id)
        assert recipient.roles == ["citizen"]
        assert recipient.sms_enabled is False
        assert recipient.template_fields()["phone"] == ""
