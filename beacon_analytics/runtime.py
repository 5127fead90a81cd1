"""
Runtime wiring

Builds the aggregation core from settings and owns its lifecycle:
connect the Event Store and cache, start background jobs, and tear
everything down again in reverse order.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog

from beacon_analytics.aggregation import AggregationEngine
from beacon_analytics.cache import CacheStore, CachingService, RedisCacheStore, close_redis, init_redis
from beacon_analytics.config import Settings, get_settings
from beacon_analytics.config.logging import configure_logging
from beacon_analytics.database import (
    EventStore,
    SessionRepository,
    SQLAlchemyEventStore,
    check_database_health,
    close_database,
    init_database,
)
from beacon_analytics.jobs import BackgroundJobScheduler

logger = structlog.get_logger(__name__)


@dataclass
class AnalyticsRuntime:
    """Wired components of one analytics process"""

    settings: Settings
    store: EventStore
    cache_store: CacheStore
    cache: CachingService
    engine: AggregationEngine
    sessions: SessionRepository
    scheduler: BackgroundJobScheduler

    async def health(self) -> dict:
        """Store, cache and scheduler status"""
        database = await check_database_health()

        try:
            cache = {"status": "healthy" if await self.cache_store.ping() else "unhealthy"}
        except Exception as e:
            cache = {"status": "unhealthy", "error": str(e)}

        healthy = database["status"] == "healthy" and cache["status"] == "healthy"
        return {
            "status": "healthy" if healthy else "degraded",
            "database": database,
            "cache": cache,
            "jobs": self.scheduler.get_status().model_dump(),
        }


def build_runtime(
    store: EventStore,
    cache_store: CacheStore,
    settings: Optional[Settings] = None,
) -> AnalyticsRuntime:
    """Wire the core around already-connected store and cache backends"""
    settings = settings or get_settings()
    tz = settings.aggregation.tzinfo

    cache = CachingService(cache_store, settings.cache, tz=tz)
    engine = AggregationEngine(store, cache, settings.aggregation)
    sessions = SessionRepository(store)
    scheduler = BackgroundJobScheduler(engine, sessions, cache, settings.scheduler, tz=tz)

    return AnalyticsRuntime(
        settings=settings,
        store=store,
        cache_store=cache_store,
        cache=cache,
        engine=engine,
        sessions=sessions,
        scheduler=scheduler,
    )


async def open_runtime(settings: Optional[Settings] = None) -> AnalyticsRuntime:
    """
    Connect PostgreSQL and Redis and start background jobs.

    Must be awaited inside the event loop that will run the jobs.
    """
    settings = settings or get_settings()
    configure_logging(settings=settings)
    logger.info("Starting analytics runtime", environment=settings.app_env)

    db_engine = await init_database(settings)
    try:
        redis = await init_redis(settings)
    except Exception:
        await close_database()
        raise

    runtime = build_runtime(SQLAlchemyEventStore(db_engine), RedisCacheStore(redis), settings)

    if settings.scheduler.enabled:
        runtime.scheduler.start()
    else:
        logger.info("Background jobs disabled")

    return runtime


async def close_runtime(runtime: AnalyticsRuntime) -> None:
    """Stop background jobs and close connections"""
    logger.info("Shutting down analytics runtime")
    await runtime.scheduler.shutdown()
    await close_redis()
    await close_database()


@asynccontextmanager
async def analytics_runtime(settings: Optional[Settings] = None) -> AsyncIterator[AnalyticsRuntime]:
    runtime = await open_runtime(settings)
    try:
        yield runtime
    finally:
        await close_runtime(runtime)
