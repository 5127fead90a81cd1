"""
Unit Tests - Configuration and Runtime Wiring
"""
from zoneinfo import ZoneInfo

import pytest
import structlog
from pydantic import ValidationError

from beacon_analytics.cache import InMemoryCacheStore
from beacon_analytics.config import (
    AggregationSettings,
    CacheSettings,
    SchedulerSettings,
    Settings,
    get_settings,
)
from beacon_analytics.config.logging import job_context
from beacon_analytics.runtime import build_runtime


class TestSettings:
    """Tests for settings defaults and environment overrides"""

    def test_cache_ttl_defaults(self):
        """TTL policy matches the documented defaults"""
        settings = CacheSettings()

        assert settings.session_ttl == 3600
        assert settings.realtime_ttl == 60
        assert settings.visitor_ttl == 86400
        assert settings.hourly_ttl == 86400
        assert settings.daily_ttl == 604800
        assert settings.active_session_ttl == 300

    def test_scheduler_defaults(self):
        """Job cadence defaults"""
        settings = SchedulerSettings()

        assert settings.hourly_offset_minutes == 5
        assert settings.daily_run_hour == 1
        assert settings.cleanup_interval_seconds == 21600
        assert settings.realtime_interval_seconds == 60
        assert settings.session_timeout_minutes == 30
        assert settings.backfill_delay_seconds == 0.1
        assert settings.retention_days is None

    def test_env_override(self, monkeypatch):
        """Sections read their prefixed environment variables"""
        monkeypatch.setenv("SCHEDULER_RETENTION_DAYS", "90")
        monkeypatch.setenv("AGGREGATION_TIMEZONE", "Europe/Berlin")

        assert SchedulerSettings().retention_days == 90
        assert AggregationSettings().tzinfo == ZoneInfo("Europe/Berlin")

    def test_unknown_timezone_rejected(self):
        """Bad zone names fail at load time"""
        with pytest.raises(ValidationError):
            AggregationSettings(timezone="Mars/Olympus_Mons")

    def test_daily_run_hour_bounds(self):
        """The daily run hour must be a clock hour"""
        with pytest.raises(ValidationError):
            SchedulerSettings(daily_run_hour=24)

    def test_app_env_normalized(self, monkeypatch):
        """Environment names are validated and lower-cased"""
        monkeypatch.setenv("APP_ENV", "Production")

        assert Settings().is_production is True

    def test_invalid_app_env(self, monkeypatch):
        """Unknown environment names are rejected"""
        monkeypatch.setenv("APP_ENV", "moon")

        with pytest.raises(ValidationError):
            Settings()

    def test_get_settings_is_cached(self):
        """Settings are loaded once per process"""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestRuntimeWiring:
    """Tests for component wiring"""

    def test_build_runtime_shares_components(self, fake_store):
        """Engine, scheduler and cache share one timezone and cache service"""
        settings = Settings()
        runtime = build_runtime(fake_store, InMemoryCacheStore(), settings)

        assert runtime.engine.cache is runtime.cache
        assert runtime.scheduler.engine is runtime.engine
        assert runtime.scheduler.cache is runtime.cache
        assert runtime.scheduler.sessions.store is fake_store
        assert runtime.scheduler.tz == runtime.engine.tz
        assert runtime.scheduler.get_status().is_running is False

    @pytest.mark.asyncio
    async def test_health_without_database(self, fake_store):
        """A missing database connection reports a degraded runtime"""
        runtime = build_runtime(fake_store, InMemoryCacheStore(), Settings())

        health = await runtime.health()

        assert health["status"] == "degraded"
        assert health["database"]["status"] == "unhealthy"
        assert health["cache"]["status"] == "healthy"
        assert health["jobs"]["is_running"] is False


class TestLogging:
    """Tests for logging context helpers"""

    def test_job_context_binds_and_clears(self):
        """The job name is only bound inside the block"""
        with job_context("hourly"):
            assert structlog.contextvars.get_contextvars()["job"] == "hourly"

        assert "job" not in structlog.contextvars.get_contextvars()
