"""Async database engine and session management for Card Provisioning Service.

Production uses asyncpg against PostgreSQL; tests and local development use
aiosqlite. The engine is created lazily on first use.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from card_provisioning.config import settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_db_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        database_url: Connection URL. If None, uses settings.database_url

    Returns:
        Configured AsyncEngine
    """
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        # One connection per session so concurrent sessions really are
        # separate transactions
        return create_async_engine(
            url,
            echo=settings.debug,
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Get the global engine, creating it on first use."""
    global _engine
    if _engine is None:
        logger.info(
            "creating_database_engine",
            database_url=settings.database_url.split("@")[-1],  # Hide credentials
        )
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the global session factory bound to the global engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def close_engine() -> None:
    """Dispose of the global engine."""
    global _engine, _session_factory
    if _engine is not None:
        logger.info("closing_database_engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """
    Context manager for a unit of work.

    Usage:
        async with session_scope() as session:
            session.add(record)

    Commits on success, rolls back on exception.
    """
    factory = session_factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Create all tables.

    WARNING: For tests and local development only.
    """
    # Register models on Base.metadata
    from card_provisioning.infrastructure import models  # noqa: F401

    target_engine = engine or get_engine()
    async with target_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables(engine: AsyncEngine | None = None) -> None:
    """
    Drop all tables.

    WARNING: This is destructive and should only be used for testing.
    """
    from card_provisioning.infrastructure import models  # noqa: F401

    target_engine = engine or get_engine()
    async with target_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
