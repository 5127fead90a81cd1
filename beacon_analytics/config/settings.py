"""
Beacon Analytics
Centralized Configuration Management

Pydantic settings for the aggregation core: store and cache connections,
aggregation windows, cache TTL policy and background job cadence. Every
value can be overridden through environment variables or a ``.env`` file.
"""

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Event Store Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="analytics", alias="database", description="Database name")
    user: str = Field(default="analytics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Max overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=100, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class AggregationSettings(BaseSettings):
    """Rollup window and ranking configuration"""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    timezone: str = Field(default="UTC", description="Timezone used for hour/day bucketing")
    hourly_top_pages: int = Field(default=10, description="Popular pages kept in hourly rollups")
    daily_top_pages: int = Field(default=20, description="Popular pages kept in daily rollups")
    realtime_top_pages: int = Field(default=5, description="Popular pages kept in realtime metrics")
    summary_top_pages: int = Field(default=10, description="Top pages in range summaries")
    summary_top_referrers: int = Field(default=10, description="Top referrers in range summaries")
    realtime_window_minutes: int = Field(default=60, description="Trailing window for realtime page views")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA zone names early"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class CacheSettings(BaseSettings):
    """Cache TTL policy (seconds)"""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    session_ttl: int = Field(default=3600, description="Cached session entries")
    realtime_ttl: int = Field(default=60, description="Realtime metrics snapshot")
    visitor_ttl: int = Field(default=86400, description="Visitor identification entries")
    hourly_ttl: int = Field(default=86400, description="Hourly rollups")
    daily_ttl: int = Field(default=604800, description="Daily rollups")
    active_session_ttl: int = Field(default=300, description="Active-session marker keys")
    page_view_counter_ttl: int = Field(default=3600, description="Realtime page view counters")


class SchedulerSettings(BaseSettings):
    """Background job cadence"""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = Field(default=True, description="Start background jobs with the runtime")

    # Hourly rollups
    hourly_offset_minutes: int = Field(default=5, description="Minutes past the hour for the first hourly run")
    hourly_interval_seconds: float = Field(default=3600, description="Hourly job interval")

    # Daily rollups
    daily_run_hour: int = Field(default=1, ge=0, le=23, description="Local hour of the first daily run")
    daily_interval_seconds: float = Field(default=86400, description="Daily job interval")

    # Cleanup
    cleanup_initial_delay_seconds: float = Field(default=300, description="Delay before first cleanup")
    cleanup_interval_seconds: float = Field(default=21600, description="Cleanup job interval")
    session_timeout_minutes: int = Field(default=30, description="Idle minutes before a session is ended")
    retention_days: Optional[int] = Field(default=None, description="Delete raw rows older than this many days")

    # Realtime
    realtime_initial_delay_seconds: float = Field(default=10, description="Delay before first realtime run")
    realtime_interval_seconds: float = Field(default=60, description="Realtime job interval")
    realtime_log_every_minutes: int = Field(default=10, description="Log realtime metrics on minutes divisible by this")

    # Backfill
    backfill_delay_seconds: float = Field(default=0.1, description="Pause between backfill iterations")


class MonitoringSettings(BaseSettings):
    """Logging and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or console")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="beacon-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
