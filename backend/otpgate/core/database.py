"""otpgate Database Configuration - Async SQLAlchemy.

PostgreSQL (asyncpg) in production. SQLite (aiosqlite) is accepted for
development and tests; it gets no connection pool sizing and a busy
timeout so concurrent writers queue instead of failing.
"""

import asyncio
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from otpgate.core.config import Settings, settings
from otpgate.core.logging import get_logger

logger = get_logger("database")

SQLITE_BUSY_TIMEOUT_SECONDS = 15


def build_engine(config: Settings) -> AsyncEngine:
    """Create the async engine for the configured database.

    Pool sizing (DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT,
    DB_POOL_RECYCLE) applies to server databases only.
    """
    kwargs: dict[str, Any] = {
        "pool_pre_ping": True,
        "echo": config.debug and config.log_level == "DEBUG",
    }
    if config.is_sqlite:
        kwargs["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        kwargs.update(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=config.db_pool_recycle,
        )
    return create_async_engine(config.database_url, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services read attributes after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings)
async_session_maker = build_session_factory(engine)

# Base class for models
Base = declarative_base()


async def check_db_connection(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    timeout: float | None = None,
) -> bool:
    """Check if the database answers ``SELECT 1`` within the store timeout."""
    factory = session_factory or async_session_maker
    try:
        async with asyncio.timeout(timeout or settings.store_timeout_seconds):
            async with factory() as session:
                await session.execute(text("SELECT 1"))
        return True
    except (TimeoutError, OSError, SQLAlchemyError) as e:
        logger.warning(f"Database connection check failed: {type(e).__name__}: {e}")
        return False
