"""
Exception hierarchy for the aggregation core.

Event Store errors (SQLAlchemy / driver exceptions) are not part
of this hierarchy: they propagate to callers unmodified.
"""


class AnalyticsError(Exception):
    """Base class for aggregation core errors"""


class InvalidDateRangeError(AnalyticsError, ValueError):
    """Raised when a range starts after it ends"""

    def __init__(self, start, end):
        self.start = start
        self.end = end
        super().__init__(f"Range start {start} is after range end {end}")


class InvalidGranularityError(AnalyticsError, ValueError):
    """Raised for an aggregation granularity other than hourly or daily"""

    def __init__(self, granularity):
        self.granularity = granularity
        super().__init__(f"Granularity must be 'hourly' or 'daily', got {granularity!r}")


class CacheUnavailableError(AnalyticsError):
    """Raised when a cache read whose result the caller depends on fails"""
