"""Async database engine and session management for SQLAlchemy 2.0+."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ratechat.app.core.logging import get_logger

logger = get_logger(__name__)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``database_url``.

    SQLite gets its default pool; other backends get pre-ping so stale
    connections are detected before use.
    """
    if "sqlite" in database_url.lower():
        engine = create_async_engine(database_url, echo=echo)
        logger.info("Created SQLite async engine")
    else:
        engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
        logger.info(f"Created async engine for {engine.dialect.name}")
    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Async context manager for database sessions.

    Usage:
        async with session_scope(session_maker) as session:
            result = await session.execute(...)

    Changes are rolled back if the block raises.
    """
    async with session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
