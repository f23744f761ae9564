"""Async SQLAlchemy engine, session factory and declarative base.

The engine is created on first use so that importing models never needs a
database driver or a reachable server.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from notifyhub.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            pool_pre_ping=True,
        )
    return _engine


def async_session_maker() -> AsyncSession:
    """Open a new session bound to the shared engine."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_maker()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session, rolling back if the caller raises."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


get_db = get_async_session


async def create_all() -> None:
    """Create all tables known to the declarative base."""
    # Import models so their tables are registered on Base.metadata
    from notifyhub.modules.audience import models as _audience_models  # noqa: F401
    from notifyhub.modules.notification import models as _notification_models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
