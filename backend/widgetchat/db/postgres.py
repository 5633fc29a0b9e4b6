"""Async SQLAlchemy engine and session factory.

The engine is built by the composition root and passed to whatever needs it;
nothing here opens a connection at import time. PostgreSQL (asyncpg) is the
production target; plain sqlite:// URLs are mapped to aiosqlite for local
runs and the test suite.
"""

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def normalize_database_url(url: str) -> str:
    """Pin the async driver for bare postgresql:// and sqlite:// URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    """Create the async engine. Pool sizing only applies to PostgreSQL."""
    url = normalize_database_url(url)
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            echo=False,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
        )
    return create_async_engine(url, echo=False)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables (local/dev and tests; production uses Alembic)."""
    # Import models so they register on Base.metadata.
    from widgetchat import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engine(engine: AsyncEngine) -> None:
    """Gracefully dispose of the engine connection pool."""
    logger.info("database_shutdown")
    await engine.dispose()
