"""PostgreSQL client and connection management with SQLAlchemy."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config.settings import settings

logger = logging.getLogger(__name__)

# Global SQLAlchemy engine
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get the SQLAlchemy async engine instance."""
    global _engine
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the SQLAlchemy async session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Get an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(User))
            users = result.scalars().all()
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def engine_options(url: str) -> dict[str, Any]:
    """Build create_async_engine keyword arguments for a database URL.

    Pool sizing and the server-side statement timeout only apply to
    PostgreSQL; SQLite engines keep SQLAlchemy's defaults.
    """
    options: dict[str, Any] = {"echo": settings.postgres_echo, "pool_pre_ping": True}

    if make_url(url).get_backend_name() == "postgresql":
        options.update(
            pool_size=settings.postgres_pool_size,
            max_overflow=settings.postgres_max_overflow,
            pool_timeout=settings.postgres_pool_timeout,
            pool_recycle=settings.postgres_pool_recycle,
            connect_args={
                "server_settings": {"statement_timeout": str(settings.postgres_statement_timeout_ms)},
            },
        )
    return options


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the core for every unit of work."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Initialize PostgreSQL connection and SQLAlchemy.

    This function:
    1. Creates the async engine
    2. Creates the session factory
    3. Verifies connection
    """
    global _engine, _async_session_factory

    try:
        logger.info(f"Connecting to PostgreSQL at {settings.postgres_url.split('@')[-1]}")

        _engine = create_async_engine(settings.postgres_url, **engine_options(settings.postgres_url))
        _async_session_factory = build_session_factory(_engine)

        # Verify connection
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        logger.info("PostgreSQL connection successful")
        logger.info(f"Connection pool: {_engine.pool.status()}")
        logger.info("Database initialization complete")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db() -> None:
    """Close PostgreSQL connection gracefully."""
    global _engine, _async_session_factory

    if _engine is not None:
        logger.info("Closing PostgreSQL connection")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("PostgreSQL connection closed")


async def health_check(engine: AsyncEngine | None = None) -> bool:
    """Return True when the database answers a trivial query."""
    try:
        target = engine or get_engine()
        async with target.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError, RuntimeError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
