"""Async database engine and session factory."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from mediacatalog.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite connections get a generous busy timeout so concurrent claimers
    wait for the write lock instead of failing immediately.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["timeout"] = 30
    return create_async_engine(database_url, echo=echo, connect_args=connect_args)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
async_session_maker = create_session_maker(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create all tables that do not exist yet."""
    # Register models on the metadata
    from mediacatalog.modules.transcoding import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session."""
    async with async_session_maker() as session:
        yield session
