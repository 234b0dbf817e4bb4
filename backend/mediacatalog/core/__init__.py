"""Core module for configuration and utilities."""

from mediacatalog.core.config import Settings, settings
from mediacatalog.core.database import Base, async_session_maker, get_session, init_db

__all__ = [
    "Settings",
    "settings",
    "Base",
    "async_session_maker",
    "get_session",
    "init_db",
]
