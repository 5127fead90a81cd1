"""
Background Job Scheduler

Runs the aggregation engine unattended on a fixed cadence:
- hourly:   at the next hour + 5 minutes, then hourly; rolls up the previous hour
- daily:    at the next 01:00 local, then daily; rolls up the previous day
- cleanup:  5 minutes after start, then every 6 hours; ends idle sessions,
            applies data retention and reports cache occupancy
- realtime: 10 seconds after start, then every minute; refreshes the
            realtime snapshot

Each job is an asyncio task owned by the scheduler. A tick that raises is
logged and counted and the job keeps its schedule. Manual triggers and
backfills propagate their errors to the caller.
"""

import asyncio
import time
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Dict, Optional, Union

import structlog

from beacon_analytics.aggregation import AggregationEngine
from beacon_analytics.aggregation.timing import (
    DateLike,
    iter_days,
    iter_hours,
    localize,
    previous_day,
    previous_hour,
    seconds_until_daily_run,
    seconds_until_next_hour,
)
from beacon_analytics.cache import CachingService
from beacon_analytics.config import SchedulerSettings
from beacon_analytics.config.logging import job_context
from beacon_analytics.database import SessionRepository
from beacon_analytics.exceptions import InvalidDateRangeError, InvalidGranularityError
from beacon_analytics.metrics import JOB_DURATION, JOB_RUNS
from beacon_analytics.models import DailyAggregation, HourlyAggregation, JobStatus

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[object]]

JOB_NAMES = ("hourly", "daily", "cleanup", "realtime")


class BackgroundJobScheduler:
    """
    Owns the four periodic analytics jobs.

    ``start`` must be called from inside a running event loop.

    Example:
        scheduler = BackgroundJobScheduler(engine, SessionRepository(store), caching)
        scheduler.start()
        ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        engine: AggregationEngine,
        sessions: SessionRepository,
        cache: CachingService,
        settings: Optional[SchedulerSettings] = None,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.engine = engine
        self.sessions = sessions
        self.cache = cache
        self.settings = settings or SchedulerSettings()
        self.tz = tz or engine.tz
        self._clock = clock or (lambda: datetime.now(self.tz))

        self._tasks: Dict[str, Optional[asyncio.Task]] = {name: None for name in JOB_NAMES}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def now(self) -> datetime:
        return localize(self._clock(), self.tz)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Schedule all background jobs; a no-op if already running"""
        if self._running:
            logger.info("Background jobs are already running")
            return

        # Raises RuntimeError outside a running loop, before any state changes
        loop = asyncio.get_running_loop()

        logger.info("Starting background job service")

        now = self.now()
        hourly_delay = seconds_until_next_hour(now, self.tz, self.settings.hourly_offset_minutes)
        daily_delay = seconds_until_daily_run(now, self.tz, self.settings.daily_run_hour)

        self._tasks["hourly"] = self._schedule(
            loop, "hourly", self.run_hourly_aggregation, hourly_delay, self.settings.hourly_interval_seconds
        )
        self._tasks["daily"] = self._schedule(
            loop, "daily", self.run_daily_aggregation, daily_delay, self.settings.daily_interval_seconds
        )
        self._tasks["cleanup"] = self._schedule(
            loop,
            "cleanup",
            self.run_cleanup,
            self.settings.cleanup_initial_delay_seconds,
            self.settings.cleanup_interval_seconds,
        )
        self._tasks["realtime"] = self._schedule(
            loop,
            "realtime",
            self.run_realtime_metrics,
            self.settings.realtime_initial_delay_seconds,
            self.settings.realtime_interval_seconds,
        )
        self._running = True

        logger.info(
            "Background job service started",
            hourly_first_run_minutes=round(hourly_delay / 60),
            daily_first_run_hours=round(daily_delay / 3600),
        )

    def stop(self) -> None:
        """Cancel all background jobs; a no-op if not running"""
        if not self._running:
            logger.info("Background jobs are not running")
            return

        logger.info("Stopping background job service")

        for name, task in self._tasks.items():
            if task is not None:
                task.cancel()
            self._tasks[name] = None

        self._running = False
        logger.info("Background job service stopped")

    async def shutdown(self) -> None:
        """Stop and wait for the cancelled job tasks to unwind"""
        tasks = [task for task in self._tasks.values() if task is not None]
        self.stop()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_status(self) -> JobStatus:
        return JobStatus(
            is_running=self._running,
            jobs={
                name: task is not None and not task.done()
                for name, task in self._tasks.items()
            },
        )

    # =========================================================================
    # TIMERS
    # =========================================================================

    def _schedule(
        self,
        loop: asyncio.AbstractEventLoop,
        name: str,
        job: Job,
        initial_delay: float,
        interval: float,
    ) -> asyncio.Task:
        return loop.create_task(
            self._run_periodic(name, job, initial_delay, interval),
            name=f"beacon-{name}-job",
        )

    async def _run_periodic(self, name: str, job: Job, initial_delay: float, interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + max(initial_delay, 0.0)

        logger.debug("Job scheduled", job=name, first_run_in_seconds=round(initial_delay, 1))

        while True:
            await asyncio.sleep(max(next_run - loop.time(), 0.0))
            await self._run_tick(name, job)

            # Fixed rate; ticks missed while a slow run was in progress are skipped
            next_run += interval
            while next_run <= loop.time():
                next_run += interval

    async def _run_tick(self, name: str, job: Job) -> None:
        started = time.perf_counter()
        with job_context(name):
            try:
                await job()
                JOB_RUNS.labels(job=name, status="success").inc()
            except Exception:
                logger.exception("Scheduled job failed")
                JOB_RUNS.labels(job=name, status="error").inc()
            finally:
                JOB_DURATION.labels(job=name).observe(time.perf_counter() - started)

    # =========================================================================
    # JOBS
    # =========================================================================

    async def run_hourly_aggregation(self) -> HourlyAggregation:
        """Roll up the last completed hour"""
        hour = previous_hour(self.now(), self.tz)
        logger.info("Running hourly aggregation job", hour=hour.isoformat())

        result = await self.engine.generate_hourly_aggregation(hour)

        logger.info(
            "Hourly aggregation completed",
            hour=hour.isoformat(),
            total_events=result.total_events,
            unique_sessions=result.unique_sessions,
            page_views=result.page_views,
            unique_visitors=result.unique_visitors,
        )
        return result

    async def run_daily_aggregation(self) -> DailyAggregation:
        """Roll up the last completed day"""
        day = previous_day(self.now(), self.tz)
        logger.info("Running daily aggregation job", date=day.date().isoformat())

        result = await self.engine.generate_daily_aggregation(day)

        logger.info(
            "Daily aggregation completed",
            date=day.date().isoformat(),
            total_events=result.total_events,
            unique_sessions=result.unique_sessions,
            page_views=result.page_views,
            unique_visitors=result.unique_visitors,
        )
        return result

    async def run_cleanup(self) -> dict:
        """End idle sessions, apply retention and report cache occupancy"""
        logger.info("Running cleanup job")
        now = self.now()

        expired = await self.sessions.end_expired_sessions(
            self.settings.session_timeout_minutes, now=now
        )
        if expired > 0:
            logger.info("Ended expired sessions", count=expired)

        retention = None
        if self.settings.retention_days is not None:
            retention = await self.sessions.apply_retention(self.settings.retention_days, now=now)

        stats = await self.cache.get_cache_stats()
        logger.info("Current cache stats", **stats.model_dump())

        return {"expired_sessions": expired, "retention": retention, "cache": stats}

    async def run_realtime_metrics(self):
        """Refresh the cached realtime snapshot"""
        metrics = await self.engine.generate_realtime_metrics()

        if self.now().minute % self.settings.realtime_log_every_minutes == 0:
            logger.info(
                "Realtime metrics updated",
                active_sessions=metrics.active_sessions,
                page_views_last_hour=metrics.page_views_last_hour,
                unique_visitors_today=metrics.unique_visitors_today,
                popular_pages_count=len(metrics.popular_pages),
            )
        return metrics

    # =========================================================================
    # MANUAL OPERATIONS
    # =========================================================================

    async def trigger_hourly_aggregation(self, timestamp: DateLike) -> HourlyAggregation:
        logger.info("Manually triggering hourly aggregation", timestamp=str(timestamp))
        try:
            result = await self.engine.generate_hourly_aggregation(timestamp)
        except Exception as e:
            logger.error("Manual hourly aggregation failed", error=str(e))
            raise
        logger.info("Manual hourly aggregation completed")
        return result

    async def trigger_daily_aggregation(self, day: DateLike) -> DailyAggregation:
        logger.info("Manually triggering daily aggregation", date=str(day))
        try:
            result = await self.engine.generate_daily_aggregation(day)
        except Exception as e:
            logger.error("Manual daily aggregation failed", error=str(e))
            raise
        logger.info("Manual daily aggregation completed")
        return result

    async def backfill_aggregations(
        self,
        start: DateLike,
        end: DateLike,
        granularity: str = "daily",
    ) -> int:
        """
        Regenerate every hourly or daily rollup between ``start`` and ``end``.

        Buckets are processed one at a time with a pause between them; the
        first failure aborts the backfill and propagates.

        Returns:
            Number of aggregations generated
        """
        if granularity not in ("hourly", "daily"):
            raise InvalidGranularityError(granularity)
        if localize(start, self.tz) > localize(end, self.tz):
            raise InvalidDateRangeError(start, end)

        if granularity == "hourly":
            buckets = iter_hours(start, end, self.tz)
            generate: Callable[[datetime], Awaitable[Union[HourlyAggregation, DailyAggregation]]] = (
                self.engine.generate_hourly_aggregation
            )
        else:
            buckets = iter_days(start, end, self.tz)
            generate = self.engine.generate_daily_aggregation

        logger.info(
            "Starting backfill",
            granularity=granularity,
            start=str(start),
            end=str(end),
        )

        count = 0
        try:
            for bucket in buckets:
                if count:
                    await asyncio.sleep(self.settings.backfill_delay_seconds)
                await generate(bucket)
                count += 1
        except Exception as e:
            logger.error("Backfill aborted", granularity=granularity, completed=count, error=str(e))
            raise

        logger.info("Backfill completed", granularity=granularity, processed=count)
        return count
