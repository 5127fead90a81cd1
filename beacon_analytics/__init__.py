"""
Beacon Analytics

Event aggregation core: hourly, daily and realtime rollups over a
PostgreSQL event store, cached in Redis and refreshed by background jobs.
"""

__version__ = "1.0.0"
