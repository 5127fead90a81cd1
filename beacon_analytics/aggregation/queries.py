"""
Aggregate SQL

Read-only statements issued by the aggregation engine. Rollup windows are
half-open (``>= :start AND < :end``); range summaries are closed on both ends
(``>= :start AND <= :end``). Every statement is independent of the others so
a window's statements can run concurrently.
"""

# =============================================================================
# ROLLUP WINDOWS  [start, end)
# =============================================================================

EVENT_COUNT_SQL = """
    SELECT COUNT(*) AS total_events
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp < :end
"""

SESSIONS_AND_PAGE_VIEWS_SQL = """
    SELECT
        COUNT(DISTINCT session_id) AS unique_sessions,
        COUNT(CASE WHEN event_type = 'page_view' THEN 1 END) AS page_views
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp < :end
"""

UNIQUE_VISITORS_SQL = """
    SELECT COUNT(DISTINCT s.visitor_id) AS unique_visitors
    FROM analytics_sessions s
    WHERE s.start_time >= :start AND s.start_time < :end
      AND s.visitor_id IS NOT NULL
"""

AVG_SESSION_DURATION_SQL = """
    SELECT AVG(duration_seconds) AS avg_duration
    FROM analytics_sessions
    WHERE start_time >= :start AND start_time < :end
      AND duration_seconds IS NOT NULL
"""

BOUNCE_SQL = """
    SELECT
        COUNT(CASE WHEN page_views = 1 THEN 1 END) AS bounced_sessions,
        COUNT(*) AS total_sessions
    FROM analytics_sessions
    WHERE start_time >= :start AND start_time < :end
"""

POPULAR_PAGES_SQL = """
    SELECT
        url,
        COUNT(*) AS views,
        COUNT(DISTINCT session_id) AS unique_sessions
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp < :end
      AND event_type = 'page_view'
    GROUP BY url
    ORDER BY views DESC
    LIMIT :limit
"""

HOURLY_BREAKDOWN_SQL = """
    SELECT
        EXTRACT(HOUR FROM timestamp AT TIME ZONE :tz) AS hour,
        COUNT(*) AS events,
        COUNT(DISTINCT session_id) AS sessions
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp < :end
    GROUP BY EXTRACT(HOUR FROM timestamp AT TIME ZONE :tz)
    ORDER BY hour
"""

# =============================================================================
# REALTIME  [since, now]
# =============================================================================

REALTIME_PAGE_VIEWS_SQL = """
    SELECT COUNT(*) AS count
    FROM analytics_events
    WHERE timestamp >= :since
      AND event_type = 'page_view'
"""

REALTIME_VISITORS_SQL = """
    SELECT COUNT(DISTINCT s.visitor_id) AS count
    FROM analytics_sessions s
    WHERE s.start_time >= :since
      AND s.visitor_id IS NOT NULL
"""

REALTIME_POPULAR_PAGES_SQL = """
    SELECT
        url,
        COUNT(*) AS views
    FROM analytics_events
    WHERE timestamp >= :since
      AND event_type = 'page_view'
    GROUP BY url
    ORDER BY views DESC
    LIMIT :limit
"""

# =============================================================================
# RANGE SUMMARIES  [start, end]
# =============================================================================

SUMMARY_EVENT_COUNT_SQL = """
    SELECT COUNT(*) AS total_events
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp <= :end
"""

SUMMARY_SESSIONS_AND_PAGE_VIEWS_SQL = """
    SELECT
        COUNT(DISTINCT session_id) AS unique_sessions,
        COUNT(CASE WHEN event_type = 'page_view' THEN 1 END) AS page_views
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp <= :end
"""

SUMMARY_UNIQUE_VISITORS_SQL = """
    SELECT COUNT(DISTINCT s.visitor_id) AS unique_visitors
    FROM analytics_sessions s
    WHERE s.start_time >= :start AND s.start_time <= :end
      AND s.visitor_id IS NOT NULL
"""

SUMMARY_SESSION_STATS_SQL = """
    SELECT
        AVG(duration_seconds) AS avg_duration,
        COUNT(CASE WHEN page_views = 1 THEN 1 END) AS bounced_sessions,
        COUNT(*) AS total_sessions
    FROM analytics_sessions
    WHERE start_time >= :start AND start_time <= :end
"""

SUMMARY_TOP_PAGES_SQL = """
    SELECT
        url,
        COUNT(*) AS views,
        COUNT(DISTINCT session_id) AS unique_sessions
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp <= :end
      AND event_type = 'page_view'
    GROUP BY url
    ORDER BY views DESC
    LIMIT :limit
"""

SUMMARY_TOP_REFERRERS_SQL = """
    SELECT
        referrer,
        COUNT(*) AS count
    FROM analytics_events
    WHERE timestamp >= :start AND timestamp <= :end
      AND referrer IS NOT NULL
      AND referrer != ''
    GROUP BY referrer
    ORDER BY count DESC
    LIMIT :limit
"""

SUMMARY_DAILY_BREAKDOWN_SQL = """
    SELECT
        DATE(e.timestamp AT TIME ZONE :tz) AS date,
        COUNT(*) AS events,
        COUNT(DISTINCT e.session_id) AS sessions,
        COUNT(DISTINCT s.visitor_id) AS visitors
    FROM analytics_events e
    LEFT JOIN analytics_sessions s ON e.session_id = s.id
    WHERE e.timestamp >= :start AND e.timestamp <= :end
    GROUP BY DATE(e.timestamp AT TIME ZONE :tz)
    ORDER BY date
"""
