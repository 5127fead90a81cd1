"""
Derived snapshot models

Rollups produced by the aggregation engine. None of these are authoritative:
each one can be recomputed from the Event Store for its window, and the cached
copies are JSON documents validated back into these models on read.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .events import EventType


class PopularPage(BaseModel):
    """Page ranked by view count"""
    url: str
    views: int
    unique_sessions: int


class RealtimePage(BaseModel):
    """Page ranked by view count in the trailing realtime window"""
    url: str
    views: int


class HourlyBucket(BaseModel):
    """Event and session counts for one hour of a day"""
    hour: int = Field(ge=0, le=23)
    events: int = 0
    sessions: int = 0


class HourlyAggregation(BaseModel):
    """Rollup for one clock hour"""
    timestamp: datetime
    total_events: int
    unique_sessions: int
    page_views: int
    unique_visitors: int
    avg_session_duration: int
    bounce_rate: float
    popular_pages: List[PopularPage] = Field(default_factory=list)


class DailyAggregation(BaseModel):
    """Rollup for one calendar day"""
    date: datetime
    total_events: int
    unique_sessions: int
    page_views: int
    unique_visitors: int
    avg_session_duration: int
    bounce_rate: float
    popular_pages: List[PopularPage] = Field(default_factory=list)
    hourly_breakdown: List[HourlyBucket] = Field(default_factory=list)


class RealtimeMetrics(BaseModel):
    """
    Short-lived realtime snapshot.

    ``active_sessions`` is ``None`` when the cache backend could not be read,
    which keeps an outage distinguishable from an idle site.
    """
    active_sessions: Optional[int]
    page_views_last_hour: int
    unique_visitors_today: int
    popular_pages: List[RealtimePage] = Field(default_factory=list)
    timestamp: datetime


class ReferrerCount(BaseModel):
    referrer: str
    count: int


class DailyBreakdown(BaseModel):
    date: str
    events: int
    sessions: int
    visitors: int


class SummaryFilters(BaseModel):
    """Caller-supplied filters for a range summary"""
    date_from: datetime
    date_to: datetime
    event_type: Optional[EventType] = None
    url: Optional[str] = None


class SummaryStats(BaseModel):
    """Ad hoc statistics for an inclusive date range"""
    total_events: int
    unique_sessions: int
    unique_visitors: int
    page_views: int
    avg_session_duration: int
    bounce_rate: float
    top_pages: List[PopularPage] = Field(default_factory=list)
    top_referrers: List[ReferrerCount] = Field(default_factory=list)
    daily_breakdown: List[DailyBreakdown] = Field(default_factory=list)


class CacheStats(BaseModel):
    """Key counts per cache namespace"""
    sessions: int = 0
    metrics: int = 0
    realtime: int = 0
    visitors: int = 0
    total: int = 0


class JobStatus(BaseModel):
    """Scheduler state as reported to operators"""
    is_running: bool
    jobs: Dict[str, bool]
