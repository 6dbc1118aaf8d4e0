"""
Database connection management for Customer Intelligence

Provides async database session management for the order, customer and event
tables the scoring sweeps and workflow conditions read from.

Pool Configuration:
- Pool size and overflow come from Settings (DB_POOL_SIZE / DB_MAX_OVERFLOW)
- Pool pre-ping enabled for connection health checks
- Automatic connection recycling every 30 minutes
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
import logging

from customer_intel.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Base for declarative models
Base = declarative_base()


def create_engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    """Build the async engine (asyncpg in production)."""
    settings = settings or get_settings()
    url = settings.async_database_url

    kwargs = {"echo": settings.db_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=1800,
        )

    logger.info(
        f"Database pool configuration: size={settings.db_pool_size}, "
        f"max_overflow={settings.db_max_overflow}, environment={settings.environment}"
    )
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def init_db(engine: AsyncEngine, create_tables: bool = False):
    """Initialize database connection (optionally creating tables for dev)."""
    logger.info("Initializing database connection")
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if create_tables:
            # Import models so they register on Base.metadata
            from customer_intel import models  # noqa: F401
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Database connection initialized successfully")


async def close_db(engine: AsyncEngine):
    """Close database connection."""
    logger.info("Closing database connection")
    await engine.dispose()
    logger.info("Database connection closed")

