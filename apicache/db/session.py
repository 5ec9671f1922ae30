"""Database engine management for apicache.

Provides the async SQLAlchemy engine shared by the cache repository and the
table converters.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

# Global engine
_engine: Optional[AsyncEngine] = None


def get_database_url() -> str:
    """Get database URL from environment or use default.

    Returns:
        Database connection URL for the async driver.
    """
    return os.environ.get(
        "API_CACHE_DATABASE_URL",
        "sqlite+aiosqlite:///api_cache.db",
    )


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend.

    Args:
        database_url: Database URL. If not provided, uses
                     API_CACHE_DATABASE_URL environment variable or default.

    Returns:
        AsyncEngine
    """
    url = database_url or get_database_url()
    echo = os.environ.get("SQL_ECHO", "false").lower() == "true"

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=int(os.environ.get("DB_POOL_SIZE", "10")),
        max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "20")),
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,   # Recycle connections after 1 hour
    )


def init_db(database_url: Optional[str] = None) -> AsyncEngine:
    """Initialize the global database engine.

    Args:
        database_url: Optional database URL.

    Returns:
        The global engine
    """
    global _engine

    if _engine is None:
        _engine = create_engine(database_url)
    return _engine


async def close_db() -> None:
    """Close the database engine and cleanup resources."""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None


def get_engine() -> AsyncEngine:
    """Get the current database engine.

    Returns:
        AsyncEngine: The configured async SQLAlchemy engine.

    Raises:
        RuntimeError: If database hasn't been initialized.
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """Get a transactional connection as an async context manager.

    Usage:
        async with get_connection() as conn:
            await conn.execute(...)

    Yields:
        AsyncConnection that commits on success and rolls back on exception.
    """
    async with get_engine().begin() as conn:
        yield conn
