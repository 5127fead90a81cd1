"""
Prometheus metrics for the aggregation core
"""

from prometheus_client import Counter, Histogram

AGGREGATIONS_TOTAL = Counter(
    "beacon_aggregations_total",
    "Aggregation runs by granularity and outcome",
    ["granularity", "status"],
)

AGGREGATION_DURATION = Histogram(
    "beacon_aggregation_duration_seconds",
    "Time spent computing an aggregation",
    ["granularity"],
)

CACHE_LOOKUPS = Counter(
    "beacon_cache_lookups_total",
    "Cache-aside lookups by namespace and result",
    ["namespace", "result"],
)

CACHE_WRITE_FAILURES = Counter(
    "beacon_cache_write_failures_total",
    "Cache writes that failed and were skipped",
    ["namespace"],
)

JOB_RUNS = Counter(
    "beacon_job_runs_total",
    "Scheduled job ticks by job and outcome",
    ["job", "status"],
)

JOB_DURATION = Histogram(
    "beacon_job_duration_seconds",
    "Time spent in a scheduled job tick",
    ["job"],
)
