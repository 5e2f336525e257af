"""Async database engine and session management.

The database is the single source of truth for cache rows and rate-limit
counters. Request handlers may run as short-lived, memory-isolated
invocations, so nothing that has to stay correct across them lives in
process memory.

Usage:
    from shelfscanner.core.database import init_db, close_db, session_scope

    await init_db(settings)

    async with session_scope() as session:
        ...

    await close_db()
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from shelfscanner.config import Settings
from shelfscanner.core.logging import get_logger

logger = get_logger(__name__)

# SQLite waits this long for a competing writer before raising "database is locked"
SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


def build_engine(database_url: str, *, echo: bool = False, **pool: Any) -> AsyncEngine:
    """Create an async engine with settings suited to the database backend.

    Args:
        database_url: SQLAlchemy URL using an async driver
        echo: Log emitted SQL
        **pool: Pool options for server databases (ignored for SQLite)

    Returns:
        Configured AsyncEngine
    """
    engine_kwargs: dict[str, Any] = {"echo": echo}

    if database_url.startswith("sqlite"):
        engine_kwargs["poolclass"] = NullPool
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
    else:
        engine_kwargs.update(pool)
        engine_kwargs["pool_pre_ping"] = True

    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by repositories and services."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(settings: Settings) -> None:
    """Initialize the database engine and session factory.

    This should be called once at application startup.

    Args:
        settings: Application settings containing database configuration
    """
    global _engine, _async_session_factory

    logger.info(
        "database_initializing",
        database_url=_mask_password(settings.database_url),
    )

    _engine = build_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=settings.database_pool_min,
        max_overflow=settings.database_pool_max - settings.database_pool_min,
    )
    _async_session_factory = build_session_factory(_engine)

    logger.info("database_initialized")


async def create_tables() -> None:
    """Create all tables from model metadata.

    Used for local SQLite databases; PostgreSQL deployments run Alembic.
    """
    from shelfscanner.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close the database engine and all connections.

    This should be called at application shutdown.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.info("database_closing")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("database_closed")


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Run one short unit of work: commit on success, roll back on error.

    Args:
        factory: Session factory to use (defaults to the global one)
    """
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_db_connection() -> bool:
    """Check if the database connection is working.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False


def _mask_password(url: str) -> str:
    """Mask password in database URL for logging.

    Args:
        url: Database URL

    Returns:
        URL with password masked
    """
    if "://" in url and "@" in url:
        prefix = url.split("://")[0] + "://"
        rest = url.split("://")[1]
        if "@" in rest:
            creds, host = rest.split("@", 1)
            if ":" in creds:
                user = creds.split(":")[0]
                return f"{prefix}{user}:****@{host}"
    return url
