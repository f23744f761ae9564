"""Core module for configuration and utilities."""

from notifyhub.core.config import settings
from notifyhub.core.database import Base, get_db, get_async_session

__all__ = [
    "settings",
    "Base",
    "get_db",
    "get_async_session",
]
