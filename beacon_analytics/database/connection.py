"""
Database Connection Management

Async SQLAlchemy 2.0 engine for the Event Store. Implements connection
pooling, a startup connectivity check, health checks and graceful shutdown.
"""

import time
from typing import Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from beacon_analytics.config import Settings, get_settings

logger = structlog.get_logger(__name__)

# Global engine
_engine: Optional[AsyncEngine] = None


async def init_database(settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Initialize the database connection pool.

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = settings or get_settings()

    _engine = create_async_engine(
        settings.database.async_url,
        echo=settings.database.echo,
        pool_pre_ping=True,  # Verify connections before use
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
        # Tags rollup and cleanup queries in pg_stat_activity
        connect_args={"server_settings": {"application_name": settings.app_name}},
    )

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Database connection established",
            host=settings.database.host,
            database=settings.database.db,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await _engine.dispose()
        _engine = None
        raise

    return _engine


async def close_database() -> None:
    """Close the database connection pool."""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection pool closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


async def check_database_health() -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        start = time.perf_counter()
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        pool = get_engine().pool
        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
            "pool_checked_out": pool.checkedout() if hasattr(pool, "checkedout") else None,
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }
