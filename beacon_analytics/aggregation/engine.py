"""
Aggregation Engine

Rolls raw events and sessions into:
- Hourly and daily rollups (cached, cache-aside reads)
- Realtime metrics (short-TTL cache, cache-aside reads)
- Ad hoc range summaries (never cached)

The statements for one window are independent, so they are issued together
with ``asyncio.gather``; the snapshot is assembled once all of them resolve.
A failing statement fails the whole aggregation and nothing is cached. A
failing cache write after a successful computation is logged and the fresh
snapshot is still returned.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import ValidationError

from beacon_analytics.cache import CachingService
from beacon_analytics.config import AggregationSettings
from beacon_analytics.database import EventStore
from beacon_analytics.exceptions import CacheUnavailableError, InvalidDateRangeError
from beacon_analytics.metrics import AGGREGATIONS_TOTAL, AGGREGATION_DURATION
from beacon_analytics.models import (
    DailyAggregation,
    DailyBreakdown,
    HourlyAggregation,
    HourlyBucket,
    RealtimeMetrics,
    SummaryFilters,
    SummaryStats,
)
from . import queries
from .normalize import (
    bounce_rate,
    first_row,
    popular_pages,
    realtime_pages,
    referrer_counts,
    round_seconds,
    to_float,
    to_int,
)
from .timing import (
    DateLike,
    day_window,
    daily_cache_key,
    hour_window,
    hourly_cache_key,
    localize,
    start_of_day,
)

logger = structlog.get_logger(__name__)


class AggregationEngine:
    """
    Computes analytics rollups from the Event Store.

    Example:
        engine = AggregationEngine(store, caching_service)
        snapshot = await engine.get_hourly_aggregation(datetime.now(timezone.utc))
    """

    def __init__(
        self,
        store: EventStore,
        cache: CachingService,
        settings: Optional[AggregationSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.cache = cache
        self.settings = settings or AggregationSettings()
        self.tz = self.settings.tzinfo
        self._clock = clock or (lambda: datetime.now(self.tz))

    def now(self) -> datetime:
        return localize(self._clock(), self.tz)

    # =========================================================================
    # WINDOW METRICS
    # =========================================================================

    async def _window_metrics(self, start: datetime, end: datetime, top_pages: int) -> Dict[str, Any]:
        """The six metric groups shared by hourly and daily rollups"""
        params = {"start": start, "end": end}

        events, sessions, visitors, duration, bounce, pages = await asyncio.gather(
            self.store.query(queries.EVENT_COUNT_SQL, params),
            self.store.query(queries.SESSIONS_AND_PAGE_VIEWS_SQL, params),
            self.store.query(queries.UNIQUE_VISITORS_SQL, params),
            self.store.query(queries.AVG_SESSION_DURATION_SQL, params),
            self.store.query(queries.BOUNCE_SQL, params),
            self.store.query(queries.POPULAR_PAGES_SQL, {**params, "limit": top_pages}),
        )

        session_row = first_row(sessions.rows)
        bounce_row = first_row(bounce.rows)

        return {
            "total_events": to_int(first_row(events.rows).get("total_events")),
            "unique_sessions": to_int(session_row.get("unique_sessions")),
            "page_views": to_int(session_row.get("page_views")),
            "unique_visitors": to_int(first_row(visitors.rows).get("unique_visitors")),
            "avg_session_duration": round_seconds(to_float(first_row(duration.rows).get("avg_duration"))),
            "bounce_rate": bounce_rate(
                to_int(bounce_row.get("bounced_sessions")),
                to_int(bounce_row.get("total_sessions")),
            ),
            "popular_pages": popular_pages(pages.rows),
        }

    async def _hourly_breakdown(self, start: datetime, end: datetime) -> list:
        result = await self.store.query(
            queries.HOURLY_BREAKDOWN_SQL,
            {"start": start, "end": end, "tz": self.settings.timezone},
        )

        by_hour = {to_int(row.get("hour"), default=-1): row for row in result.rows}
        return [
            HourlyBucket(
                hour=hour,
                events=to_int(by_hour.get(hour, {}).get("events")),
                sessions=to_int(by_hour.get(hour, {}).get("sessions")),
            )
            for hour in range(24)
        ]

    # =========================================================================
    # HOURLY
    # =========================================================================

    async def generate_hourly_aggregation(self, timestamp: DateLike) -> HourlyAggregation:
        """Compute and cache the rollup for the hour containing ``timestamp``"""
        start, end = hour_window(timestamp, self.tz)
        logger.info("Generating hourly aggregation", window_start=start.isoformat())

        with AGGREGATION_DURATION.labels(granularity="hourly").time():
            try:
                metrics = await self._window_metrics(start, end, self.settings.hourly_top_pages)
            except Exception:
                AGGREGATIONS_TOTAL.labels(granularity="hourly", status="error").inc()
                raise

        aggregation = HourlyAggregation(timestamp=start, **metrics)
        await self.cache.cache_aggregated_metrics("hourly", hourly_cache_key(start), aggregation)

        AGGREGATIONS_TOTAL.labels(granularity="hourly", status="success").inc()
        return aggregation

    async def try_get_hourly_aggregation(self, timestamp: DateLike) -> Optional[HourlyAggregation]:
        """Cached hourly rollup, or None on a miss"""
        start, _ = hour_window(timestamp, self.tz)
        key = hourly_cache_key(start)

        cached = await self.cache.get_cached_aggregated_metrics("hourly", key)
        if cached is None:
            return None

        try:
            aggregation = HourlyAggregation.model_validate({**cached, "timestamp": start})
        except ValidationError as e:
            logger.warning("Discarding malformed cached hourly aggregation", key=key, error=str(e))
            return None

        logger.debug("Retrieved hourly aggregation from cache", key=key)
        return aggregation

    async def get_hourly_aggregation(self, timestamp: DateLike) -> HourlyAggregation:
        cached = await self.try_get_hourly_aggregation(timestamp)
        if cached is not None:
            return cached
        return await self.generate_hourly_aggregation(timestamp)

    # =========================================================================
    # DAILY
    # =========================================================================

    async def generate_daily_aggregation(self, day: DateLike) -> DailyAggregation:
        """Compute and cache the rollup, with hourly breakdown, for the day containing ``day``"""
        start, end = day_window(day, self.tz)
        logger.info("Generating daily aggregation", date=daily_cache_key(start))

        with AGGREGATION_DURATION.labels(granularity="daily").time():
            try:
                metrics, breakdown = await asyncio.gather(
                    self._window_metrics(start, end, self.settings.daily_top_pages),
                    self._hourly_breakdown(start, end),
                )
            except Exception:
                AGGREGATIONS_TOTAL.labels(granularity="daily", status="error").inc()
                raise

        aggregation = DailyAggregation(date=start, hourly_breakdown=breakdown, **metrics)
        await self.cache.cache_aggregated_metrics("daily", daily_cache_key(start), aggregation)

        AGGREGATIONS_TOTAL.labels(granularity="daily", status="success").inc()
        return aggregation

    async def try_get_daily_aggregation(self, day: DateLike) -> Optional[DailyAggregation]:
        """
        Cached daily rollup, or None on a miss.

        The hourly breakdown is only returned by ``generate_daily_aggregation``;
        cache hits carry an empty breakdown.
        """
        start, _ = day_window(day, self.tz)
        key = daily_cache_key(start)

        cached = await self.cache.get_cached_aggregated_metrics("daily", key)
        if cached is None:
            return None

        try:
            aggregation = DailyAggregation.model_validate(
                {**cached, "date": start, "hourly_breakdown": []}
            )
        except ValidationError as e:
            logger.warning("Discarding malformed cached daily aggregation", key=key, error=str(e))
            return None

        logger.debug("Retrieved daily aggregation from cache", key=key)
        return aggregation

    async def get_daily_aggregation(self, day: DateLike) -> DailyAggregation:
        cached = await self.try_get_daily_aggregation(day)
        if cached is not None:
            return cached
        return await self.generate_daily_aggregation(day)

    # =========================================================================
    # REALTIME
    # =========================================================================

    async def _active_sessions(self) -> Optional[int]:
        try:
            return await self.cache.get_active_sessions_count()
        except CacheUnavailableError as e:
            logger.warning("Active session count unknown", error=str(e))
            return None

    async def generate_realtime_metrics(self) -> RealtimeMetrics:
        now = self.now()
        since = now - timedelta(minutes=self.settings.realtime_window_minutes)
        today_start = start_of_day(now, self.tz)

        active, page_views, visitors, pages = await asyncio.gather(
            self._active_sessions(),
            self.store.query(queries.REALTIME_PAGE_VIEWS_SQL, {"since": since}),
            self.store.query(queries.REALTIME_VISITORS_SQL, {"since": today_start}),
            self.store.query(
                queries.REALTIME_POPULAR_PAGES_SQL,
                {"since": since, "limit": self.settings.realtime_top_pages},
            ),
        )

        metrics = RealtimeMetrics(
            active_sessions=active,
            page_views_last_hour=to_int(first_row(page_views.rows).get("count")),
            unique_visitors_today=to_int(first_row(visitors.rows).get("count")),
            popular_pages=realtime_pages(pages.rows),
            timestamp=now,
        )

        await self.cache.cache_realtime_metrics(metrics)
        return metrics

    async def try_get_realtime_metrics(self) -> Optional[RealtimeMetrics]:
        return await self.cache.get_cached_realtime_metrics()

    async def get_realtime_metrics(self) -> RealtimeMetrics:
        cached = await self.try_get_realtime_metrics()
        if cached is not None:
            logger.debug("Retrieved realtime metrics from cache")
            return cached
        return await self.generate_realtime_metrics()

    # =========================================================================
    # RANGE SUMMARY
    # =========================================================================

    async def generate_summary_stats(
        self,
        date_from: DateLike,
        date_to: DateLike,
        filters: Optional[SummaryFilters] = None,
    ) -> SummaryStats:
        """
        Statistics for ``[date_from, date_to]``, inclusive on both ends.

        A plain date as ``date_to`` covers that whole day. ``filters`` is
        accepted for the caller's bookkeeping; the aggregates bound on dates
        only.
        """
        start = localize(date_from, self.tz)
        end = localize(date_to, self.tz, end_of_day=True)
        if start > end:
            raise InvalidDateRangeError(start, end)

        logger.info(
            "Generating summary stats",
            date_from=start.isoformat(),
            date_to=end.isoformat(),
            event_type=filters.event_type if filters else None,
        )

        params = {"start": start, "end": end}
        (
            events,
            sessions,
            visitors,
            session_stats,
            pages,
            referrers,
            daily,
        ) = await asyncio.gather(
            self.store.query(queries.SUMMARY_EVENT_COUNT_SQL, params),
            self.store.query(queries.SUMMARY_SESSIONS_AND_PAGE_VIEWS_SQL, params),
            self.store.query(queries.SUMMARY_UNIQUE_VISITORS_SQL, params),
            self.store.query(queries.SUMMARY_SESSION_STATS_SQL, params),
            self.store.query(
                queries.SUMMARY_TOP_PAGES_SQL,
                {**params, "limit": self.settings.summary_top_pages},
            ),
            self.store.query(
                queries.SUMMARY_TOP_REFERRERS_SQL,
                {**params, "limit": self.settings.summary_top_referrers},
            ),
            self.store.query(
                queries.SUMMARY_DAILY_BREAKDOWN_SQL,
                {**params, "tz": self.settings.timezone},
            ),
        )

        session_row = first_row(sessions.rows)
        stats_row = first_row(session_stats.rows)

        return SummaryStats(
            total_events=to_int(first_row(events.rows).get("total_events")),
            unique_sessions=to_int(session_row.get("unique_sessions")),
            unique_visitors=to_int(first_row(visitors.rows).get("unique_visitors")),
            page_views=to_int(session_row.get("page_views")),
            avg_session_duration=round_seconds(to_float(stats_row.get("avg_duration"))),
            bounce_rate=bounce_rate(
                to_int(stats_row.get("bounced_sessions")),
                to_int(stats_row.get("total_sessions")),
            ),
            top_pages=popular_pages(pages.rows),
            top_referrers=referrer_counts(referrers.rows),
            daily_breakdown=[
                DailyBreakdown(
                    date=_iso_date(row.get("date")),
                    events=to_int(row.get("events")),
                    sessions=to_int(row.get("sessions")),
                    visitors=to_int(row.get("visitors")),
                )
                for row in daily.rows
            ],
        )


def _iso_date(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()[:10]
    return str(value)[:10]
