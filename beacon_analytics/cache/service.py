"""
Caching Service

Key layout and TTL policy for everything the analytics core keeps in the
cache:
- Hourly and daily rollups (``metrics:*``)
- Realtime snapshot, active-session set and page view counters (``realtime:*``)
- Session entries (``session:*``)
- Visitor identification entries (``visitor:*``)

Writes never fail the caller: a backend error is logged, counted and the
write is skipped. Reads of snapshots treat a backend error as a miss.
"""

import json
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ValidationError

from beacon_analytics.config import CacheSettings
from beacon_analytics.exceptions import CacheUnavailableError
from beacon_analytics.metrics import CACHE_LOOKUPS, CACHE_WRITE_FAILURES
from beacon_analytics.models import (
    CachedVisitor,
    CacheStats,
    RealtimeMetrics,
    Session,
)
from .store import CacheStore

logger = structlog.get_logger(__name__)


SESSION_PREFIX = "session"
METRICS_PREFIX = "metrics"
REALTIME_PREFIX = "realtime"
VISITOR_PREFIX = "visitor"


class CacheManager:
    """
    Namespaced JSON cache on top of a CacheStore.

    Example:
        cache = CacheManager(store, "metrics", default_ttl=3600)
        await cache.set("hourly:2024-01-01T12", snapshot, ttl=86400)
        snapshot = await cache.get("hourly:2024-01-01T12")
    """

    def __init__(self, store: CacheStore, namespace: str, default_ttl: int = 3600):
        self.store = store
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        """Generate namespaced key"""
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a decoded value.

        Backend errors propagate; undecodable entries are dropped and
        reported as a miss.
        """
        full_key = self._key(key)
        value = await self.store.get(full_key)

        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.warning("Dropping corrupt cache entry", key=full_key, error=str(e))
            await self.store.delete(full_key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Serialize and store a value.

        Returns:
            True if the value was written, False if the write was skipped
        """
        full_key = self._key(key)

        try:
            if isinstance(value, BaseModel):
                serialized = value.model_dump_json()
            else:
                serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", key=full_key, error=str(e))
            CACHE_WRITE_FAILURES.labels(namespace=self.namespace).inc()
            return False

        try:
            await self.store.set_with_expiry(full_key, ttl or self.default_ttl, serialized)
        except Exception as e:
            logger.warning("Cache write failed", key=full_key, error=str(e))
            CACHE_WRITE_FAILURES.labels(namespace=self.namespace).inc()
            return False

        return True

    async def delete(self, key: str) -> bool:
        """Delete key from cache"""
        return await self.store.delete(self._key(key)) > 0

    async def keys(self) -> List[str]:
        """All live keys in the namespace"""
        return await self.store.keys_matching(f"{self.namespace}:*")

    async def invalidate_all(self) -> int:
        """Invalidate all keys in namespace"""
        keys = await self.keys()
        if not keys:
            return 0
        return await self.store.delete(*keys)


class CachingService:
    """
    Analytics cache facade used by the aggregation engine and the scheduler.

    Example:
        service = CachingService(InMemoryCacheStore())
        await service.track_active_session("sess-1")
        count = await service.get_active_sessions_count()
    """

    ACTIVE_SESSIONS_KEY = "active_sessions"
    REALTIME_CURRENT_KEY = "current"

    def __init__(
        self,
        store: CacheStore,
        settings: Optional[CacheSettings] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.settings = settings or CacheSettings()
        self.tz = tz or timezone.utc

        self.sessions = CacheManager(store, SESSION_PREFIX, self.settings.session_ttl)
        self.metrics = CacheManager(store, METRICS_PREFIX, self.settings.hourly_ttl)
        self.realtime = CacheManager(store, REALTIME_PREFIX, self.settings.realtime_ttl)
        self.visitors = CacheManager(store, VISITOR_PREFIX, self.settings.visitor_ttl)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def cache_session(self, session: Session) -> bool:
        return await self.sessions.set(session.id, session, self.settings.session_ttl)

    async def get_cached_session(self, session_id: str) -> Optional[Session]:
        try:
            data = await self.sessions.get(session_id)
        except Exception as e:
            logger.warning("Error getting cached session", session_id=session_id, error=str(e))
            return None
        if data is None:
            return None
        return self._validate(Session, data, self.sessions, session_id)

    async def update_cached_session(self, session_id: str, **updates: Any) -> Optional[Session]:
        """Merge ``updates`` into a cached session; absent sessions are left alone"""
        existing = await self.get_cached_session(session_id)
        if existing is None:
            return None

        updated = existing.model_copy(update=updates)
        await self.cache_session(updated)
        return updated

    async def remove_cached_session(self, session_id: str) -> None:
        try:
            await self.sessions.delete(session_id)
        except Exception as e:
            logger.warning("Error removing cached session", session_id=session_id, error=str(e))

    # -------------------------------------------------------------------------
    # Realtime counters
    # -------------------------------------------------------------------------

    async def track_active_session(self, session_id: str) -> None:
        """
        Mark a session as active for ``active_session_ttl`` seconds.

        Members whose marker key has expired are pruned from the set on
        every call.
        """
        set_key = self.realtime._key(self.ACTIVE_SESSIONS_KEY)

        try:
            await self.store.set_with_expiry(
                self.realtime._key(f"session:{session_id}"),
                self.settings.active_session_ttl,
                "1",
            )
            await self.store.set_add(set_key, session_id)

            stale = []
            for member in await self.store.set_members(set_key):
                if not await self.store.exists(self.realtime._key(f"session:{member}")):
                    stale.append(member)
            if stale:
                await self.store.set_remove(set_key, *stale)
        except Exception as e:
            logger.warning("Error tracking active session", session_id=session_id, error=str(e))
            CACHE_WRITE_FAILURES.labels(namespace=REALTIME_PREFIX).inc()

    async def get_active_sessions_count(self) -> int:
        """
        Cardinality of the active-session set.

        Raises:
            CacheUnavailableError: If the backend could not be read
        """
        try:
            return await self.store.set_cardinality(self.realtime._key(self.ACTIVE_SESSIONS_KEY))
        except Exception as e:
            raise CacheUnavailableError(f"Active sessions unavailable: {e}") from e

    async def increment_page_view(self, url: str, now: Optional[datetime] = None) -> None:
        """Bump the per-URL and per-hour-of-day page view counters"""
        now = now or datetime.now(self.tz)
        ttl = self.settings.page_view_counter_ttl

        url_key = self.realtime._key(f"pageviews:{url}")
        hour_key = self.realtime._key(f"pageviews:hour:{now.astimezone(self.tz).hour}")

        try:
            for key in (url_key, hour_key):
                await self.store.increment(key)
                await self.store.expire(key, ttl)
        except Exception as e:
            logger.warning("Error incrementing page view", url=url, error=str(e))
            CACHE_WRITE_FAILURES.labels(namespace=REALTIME_PREFIX).inc()

    async def cache_realtime_metrics(self, metrics: RealtimeMetrics) -> bool:
        return await self.realtime.set(self.REALTIME_CURRENT_KEY, metrics, self.settings.realtime_ttl)

    async def get_cached_realtime_metrics(self) -> Optional[RealtimeMetrics]:
        data = await self._lookup(self.realtime, self.REALTIME_CURRENT_KEY)
        if data is None:
            return None
        return self._validate(RealtimeMetrics, data, self.realtime, self.REALTIME_CURRENT_KEY)

    # -------------------------------------------------------------------------
    # Visitors
    # -------------------------------------------------------------------------

    async def cache_visitor_data(self, visitor_id: str, data: CachedVisitor) -> bool:
        return await self.visitors.set(visitor_id, data, self.settings.visitor_ttl)

    async def get_cached_visitor_data(self, visitor_id: str) -> Optional[CachedVisitor]:
        data = await self._lookup(self.visitors, visitor_id)
        if data is None:
            return None
        return self._validate(CachedVisitor, data, self.visitors, visitor_id)

    # -------------------------------------------------------------------------
    # Rollups
    # -------------------------------------------------------------------------

    def _period_ttl(self, period: str) -> int:
        return self.settings.hourly_ttl if period == "hourly" else self.settings.daily_ttl

    async def cache_aggregated_metrics(self, period: str, key: str, snapshot: BaseModel) -> bool:
        written = await self.metrics.set(f"{period}:{key}", snapshot, self._period_ttl(period))
        if written:
            logger.debug("Cached aggregated metrics", period=period, key=key)
        return written

    async def get_cached_aggregated_metrics(self, period: str, key: str) -> Optional[Dict[str, Any]]:
        """Raw cached rollup document, or None on miss or backend failure"""
        return await self._lookup(self.metrics, f"{period}:{key}")

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def get_cache_stats(self) -> CacheStats:
        sessions = len(await self.sessions.keys())
        metrics = len(await self.metrics.keys())
        realtime = len(await self.realtime.keys())
        visitors = len(await self.visitors.keys())

        return CacheStats(
            sessions=sessions,
            metrics=metrics,
            realtime=realtime,
            visitors=visitors,
            total=sessions + metrics + realtime + visitors,
        )

    async def clear_all_cache(self) -> int:
        """Delete every key owned by the analytics namespaces"""
        cleared = 0
        for manager in (self.sessions, self.metrics, self.realtime, self.visitors):
            cleared += await manager.invalidate_all()

        if cleared:
            logger.info("Cleared cached items", count=cleared)
        return cleared

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _lookup(self, manager: CacheManager, key: str) -> Optional[Any]:
        try:
            data = await manager.get(key)
        except Exception as e:
            logger.warning(
                "Cache read failed, treating as miss",
                namespace=manager.namespace,
                key=key,
                error=str(e),
            )
            CACHE_LOOKUPS.labels(namespace=manager.namespace, result="error").inc()
            return None

        CACHE_LOOKUPS.labels(
            namespace=manager.namespace,
            result="hit" if data is not None else "miss",
        ).inc()
        return data

    @staticmethod
    def _validate(model, data: Any, manager: CacheManager, key: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("Cached entry failed validation", namespace=manager.namespace, key=key, error=str(e))
            return None
