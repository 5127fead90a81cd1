"""
Test Suite Configuration
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

from beacon_analytics.aggregation import AggregationEngine
from beacon_analytics.cache import CachingService, InMemoryCacheStore
from beacon_analytics.config import AggregationSettings, CacheSettings, SchedulerSettings
from beacon_analytics.database import EventStore, QueryResult


FIXED_NOW = datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)


class FakeEventStore(EventStore):
    """
    Scripted EventStore.

    Responses are keyed by the exact statement text. A response that is an
    exception instance is raised instead of returned; unscripted statements
    return an empty result.
    """

    def __init__(self):
        self.responses: Dict[str, Union[QueryResult, Exception]] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def script(self, sql: str, rows: Optional[List[Dict[str, Any]]] = None, row_count: Optional[int] = None):
        rows = rows or []
        self.responses[sql] = QueryResult(rows=rows, row_count=len(rows) if row_count is None else row_count)

    def fail(self, sql: str, error: Exception):
        self.responses[sql] = error

    def params_for(self, sql: str) -> Dict[str, Any]:
        for called_sql, params in self.calls:
            if called_sql == sql:
                return params
        raise AssertionError("statement was not executed")

    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        self.calls.append((sql, params or {}))
        response = self.responses.get(sql, QueryResult())
        if isinstance(response, Exception):
            raise response
        return response


class ManualClock:
    """Monotonic clock the tests move forward by hand"""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def fake_store() -> FakeEventStore:
    return FakeEventStore()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def cache_store(manual_clock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=manual_clock)


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings()


@pytest.fixture
def aggregation_settings() -> AggregationSettings:
    return AggregationSettings()


@pytest.fixture
def scheduler_settings() -> SchedulerSettings:
    """Scheduler settings with no pacing between backfill iterations"""
    return SchedulerSettings(backfill_delay_seconds=0)


@pytest.fixture
def caching_service(cache_store, cache_settings) -> CachingService:
    return CachingService(cache_store, cache_settings)


@pytest.fixture
def engine(fake_store, caching_service, aggregation_settings) -> AggregationEngine:
    return AggregationEngine(
        fake_store,
        caching_service,
        aggregation_settings,
        clock=lambda: FIXED_NOW,
    )
