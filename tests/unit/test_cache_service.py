"""
Unit Tests - Caching Service
"""
import json
from datetime import datetime, timezone

import pytest

from beacon_analytics.cache import CacheManager, CachingService, InMemoryCacheStore
from beacon_analytics.exceptions import CacheUnavailableError
from beacon_analytics.models import (
    CachedVisitor,
    HourlyAggregation,
    RealtimeMetrics,
    Session,
)


class BrokenCacheStore(InMemoryCacheStore):
    """Backend whose every call fails"""

    async def get(self, key):
        raise ConnectionError("cache down")

    async def set_with_expiry(self, key, ttl, value):
        raise ConnectionError("cache down")

    async def set_cardinality(self, key):
        raise ConnectionError("cache down")

    async def keys_matching(self, pattern):
        raise ConnectionError("cache down")


def make_session(session_id: str = "sess-1") -> Session:
    return Session(
        id=session_id,
        visitor_id="visitor-1",
        start_time=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        page_views=1,
    )


def make_hourly() -> HourlyAggregation:
    return HourlyAggregation(
        timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        total_events=150,
        unique_sessions=25,
        page_views=100,
        unique_visitors=20,
        avg_session_duration=181,
        bounce_rate=40.0,
    )


class TestCacheManager:
    """Tests for namespaced JSON caching"""

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, cache_store):
        """Entries live under the manager's prefix"""
        manager = CacheManager(cache_store, "metrics", default_ttl=60)

        assert await manager.set("hourly:2024-01-01T12", {"total_events": 1})
        assert await cache_store.exists("metrics:hourly:2024-01-01T12")
        assert await manager.get("hourly:2024-01-01T12") == {"total_events": 1}

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_dropped(self, cache_store):
        """Undecodable JSON reads as a miss and is removed"""
        await cache_store.set_with_expiry("metrics:bad", 60, "{not json")
        manager = CacheManager(cache_store, "metrics")

        assert await manager.get("bad") is None
        assert not await cache_store.exists("metrics:bad")

    @pytest.mark.asyncio
    async def test_failed_write_returns_false(self):
        """A backend error on write is swallowed"""
        manager = CacheManager(BrokenCacheStore(), "metrics")

        assert await manager.set("k", {"a": 1}) is False

    @pytest.mark.asyncio
    async def test_invalidate_all(self, cache_store):
        """Invalidation only touches the manager's namespace"""
        metrics = CacheManager(cache_store, "metrics")
        sessions = CacheManager(cache_store, "session")
        await metrics.set("a", 1)
        await metrics.set("b", 2)
        await sessions.set("c", 3)

        assert await metrics.invalidate_all() == 2
        assert await sessions.get("c") == 3


class TestSessionCaching:
    """Tests for session entries"""

    @pytest.mark.asyncio
    async def test_session_expires_after_an_hour(self, caching_service, manual_clock):
        """Session entries use the 1h TTL"""
        await caching_service.cache_session(make_session())

        cached = await caching_service.get_cached_session("sess-1")
        assert cached.visitor_id == "visitor-1"

        manual_clock.advance(3600)
        assert await caching_service.get_cached_session("sess-1") is None

    @pytest.mark.asyncio
    async def test_update_only_existing(self, caching_service):
        """Updates merge into cached sessions and ignore unknown ones"""
        await caching_service.cache_session(make_session())

        updated = await caching_service.update_cached_session("sess-1", page_views=3)
        assert updated.page_views == 3
        assert (await caching_service.get_cached_session("sess-1")).page_views == 3

        assert await caching_service.update_cached_session("unknown", page_views=3) is None

    @pytest.mark.asyncio
    async def test_malformed_session_is_a_miss(self, caching_service, cache_store):
        """A cached session that fails validation reads as absent and cannot be updated"""
        await cache_store.set_with_expiry("session:sess-1", 3600, '{"id": "sess-1"}')

        assert await caching_service.get_cached_session("sess-1") is None
        assert await caching_service.update_cached_session("sess-1", page_views=2) is None

    @pytest.mark.asyncio
    async def test_remove(self, caching_service):
        """Removed sessions are gone"""
        await caching_service.cache_session(make_session())
        await caching_service.remove_cached_session("sess-1")

        assert await caching_service.get_cached_session("sess-1") is None


class TestActiveSessions:
    """Tests for active session tracking"""

    @pytest.mark.asyncio
    async def test_count_tracked_sessions(self, caching_service):
        """Each distinct session counts once"""
        await caching_service.track_active_session("s1")
        await caching_service.track_active_session("s2")
        await caching_service.track_active_session("s1")

        assert await caching_service.get_active_sessions_count() == 2

    @pytest.mark.asyncio
    async def test_stale_sessions_are_pruned(self, caching_service, manual_clock):
        """Sessions whose marker expired drop out on the next tracking call"""
        await caching_service.track_active_session("s1")

        manual_clock.advance(301)
        await caching_service.track_active_session("s2")

        assert await caching_service.get_active_sessions_count() == 1

    @pytest.mark.asyncio
    async def test_count_failure_raises(self):
        """A backend outage is reported, not mistaken for zero"""
        service = CachingService(BrokenCacheStore())

        with pytest.raises(CacheUnavailableError):
            await service.get_active_sessions_count()

    @pytest.mark.asyncio
    async def test_tracking_failure_is_swallowed(self):
        """Tracking never fails the caller"""
        service = CachingService(BrokenCacheStore())

        await service.track_active_session("s1")


class TestPageViewCounters:
    """Tests for realtime page view counters"""

    @pytest.mark.asyncio
    async def test_url_and_hour_counters(self, caching_service, cache_store, manual_clock):
        """Each page view bumps the URL and hour-of-day counters"""
        now = datetime(2024, 1, 1, 14, 20, tzinfo=timezone.utc)

        await caching_service.increment_page_view("/home", now=now)
        await caching_service.increment_page_view("/home", now=now)

        assert await cache_store.get("realtime:pageviews:/home") == "2"
        assert await cache_store.get("realtime:pageviews:hour:14") == "2"

        manual_clock.advance(3600)
        assert await cache_store.get("realtime:pageviews:/home") is None


class TestSnapshotCaching:
    """Tests for rollup and realtime snapshot caching"""

    @pytest.mark.asyncio
    async def test_hourly_and_daily_ttls(self, caching_service, manual_clock):
        """Hourly rollups live 24h, daily rollups 7 days"""
        await caching_service.cache_aggregated_metrics("hourly", "2024-01-01T12", make_hourly())
        await caching_service.cache_aggregated_metrics("daily", "2024-01-01", make_hourly())

        manual_clock.advance(86400)

        assert await caching_service.get_cached_aggregated_metrics("hourly", "2024-01-01T12") is None
        assert await caching_service.get_cached_aggregated_metrics("daily", "2024-01-01") is not None

    @pytest.mark.asyncio
    async def test_aggregated_metrics_are_json_documents(self, caching_service, cache_store):
        """Snapshots are stored as JSON under metrics:<period>:<key>"""
        await caching_service.cache_aggregated_metrics("hourly", "2024-01-01T12", make_hourly())

        raw = await cache_store.get("metrics:hourly:2024-01-01T12")
        assert json.loads(raw)["total_events"] == 150

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(self):
        """A failing backend read falls through to recomputation"""
        service = CachingService(BrokenCacheStore())

        assert await service.get_cached_aggregated_metrics("hourly", "2024-01-01T12") is None
        assert await service.get_cached_realtime_metrics() is None

    @pytest.mark.asyncio
    async def test_realtime_snapshot_expires(self, caching_service, manual_clock):
        """The realtime snapshot lives for a minute"""
        metrics = RealtimeMetrics(
            active_sessions=3,
            page_views_last_hour=42,
            unique_visitors_today=7,
            timestamp=datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc),
        )
        await caching_service.cache_realtime_metrics(metrics)

        cached = await caching_service.get_cached_realtime_metrics()
        assert cached == metrics

        manual_clock.advance(60)
        assert await caching_service.get_cached_realtime_metrics() is None

    @pytest.mark.asyncio
    async def test_visitor_data(self, caching_service):
        """Visitor identification entries are validated on read"""
        visitor = CachedVisitor(
            cookie_id="cookie-1",
            is_returning=True,
            last_seen=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        await caching_service.cache_visitor_data("visitor-1", visitor)

        assert await caching_service.get_cached_visitor_data("visitor-1") == visitor
        assert await caching_service.get_cached_visitor_data("visitor-2") is None


class TestMaintenance:
    """Tests for cache statistics and clearing"""

    @pytest.mark.asyncio
    async def test_stats_per_namespace(self, caching_service):
        """Stats count live keys per namespace"""
        await caching_service.cache_session(make_session("a"))
        await caching_service.cache_session(make_session("b"))
        await caching_service.cache_aggregated_metrics("hourly", "2024-01-01T12", make_hourly())
        await caching_service.track_active_session("a")

        stats = await caching_service.get_cache_stats()

        assert stats.sessions == 2
        assert stats.metrics == 1
        # marker key + active set
        assert stats.realtime == 2
        assert stats.visitors == 0
        assert stats.total == 5

    @pytest.mark.asyncio
    async def test_clear_all(self, caching_service, cache_store):
        """Clearing removes every analytics key and reports the count"""
        await caching_service.cache_session(make_session())
        await caching_service.cache_aggregated_metrics("daily", "2024-01-01", make_hourly())
        await cache_store.set_with_expiry("unrelated:key", 60, "x")

        assert await caching_service.clear_all_cache() == 2
        assert await cache_store.exists("unrelated:key")

    @pytest.mark.asyncio
    async def test_stats_failure_propagates(self):
        """Operators see a failing backend"""
        service = CachingService(BrokenCacheStore())

        with pytest.raises(ConnectionError):
            await service.get_cache_stats()
