"""
Data Models Module
"""
from .events import CachedVisitor, Event, EventType, Session, Visitor
from .snapshots import (
    CacheStats,
    DailyAggregation,
    DailyBreakdown,
    HourlyAggregation,
    HourlyBucket,
    JobStatus,
    PopularPage,
    RealtimeMetrics,
    RealtimePage,
    ReferrerCount,
    SummaryFilters,
    SummaryStats,
)

__all__ = [
    "CachedVisitor",
    "Event",
    "EventType",
    "Session",
    "Visitor",
    "CacheStats",
    "DailyAggregation",
    "DailyBreakdown",
    "HourlyAggregation",
    "HourlyBucket",
    "JobStatus",
    "PopularPage",
    "RealtimeMetrics",
    "RealtimePage",
    "ReferrerCount",
    "SummaryFilters",
    "SummaryStats",
]
