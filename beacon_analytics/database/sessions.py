"""
Session maintenance statements

The only writes the aggregation core issues against the Event Store:
timeout-based session expiry and age-based data retention.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from .store import EventStore

logger = structlog.get_logger(__name__)


# A session is idle once its most recent event (or its start, if it has no
# events) is older than the cutoff. It is closed at cleanup time, which is
# always after its last recorded event.
END_EXPIRED_SESSIONS_SQL = """
    WITH last_activity AS (
        SELECT s.id, COALESCE(MAX(e.timestamp), s.start_time) AS last_seen
        FROM analytics_sessions s
        LEFT JOIN analytics_events e ON e.session_id = s.id
        WHERE s.end_time IS NULL
        GROUP BY s.id, s.start_time
    )
    UPDATE analytics_sessions s
    SET end_time = CAST(:now AS TIMESTAMPTZ),
        duration_seconds = CAST(EXTRACT(EPOCH FROM (CAST(:now AS TIMESTAMPTZ) - s.start_time)) AS INTEGER)
    FROM last_activity la
    WHERE s.id = la.id
      AND la.last_seen < :cutoff
    RETURNING s.id
"""

DELETE_OLD_EVENTS_SQL = """
    DELETE FROM analytics_events
    WHERE timestamp < :before
"""

# Events cascade with their session, so only ended sessions with no events
# left are removed.
DELETE_OLD_SESSIONS_SQL = """
    DELETE FROM analytics_sessions s
    WHERE s.end_time IS NOT NULL
      AND s.end_time < :before
      AND NOT EXISTS (
          SELECT 1 FROM analytics_events e WHERE e.session_id = s.id
      )
"""


class SessionRepository:
    """
    Maintenance operations on the sessions table.

    Example:
        repo = SessionRepository(store)
        closed = await repo.end_expired_sessions(timeout_minutes=30)
    """

    def __init__(self, store: EventStore):
        self.store = store

    async def end_expired_sessions(
        self,
        timeout_minutes: int = 30,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Close sessions with no activity for more than ``timeout_minutes``.

        Returns:
            Number of sessions closed
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=timeout_minutes)

        result = await self.store.query(END_EXPIRED_SESSIONS_SQL, {"cutoff": cutoff, "now": now})
        return result.row_count

    async def delete_events_before(self, before: datetime) -> int:
        """Delete raw events recorded before ``before``"""
        result = await self.store.query(DELETE_OLD_EVENTS_SQL, {"before": before})
        return result.row_count

    async def delete_sessions_before(self, before: datetime) -> int:
        """Delete ended sessions with no remaining events that ended before ``before``"""
        result = await self.store.query(DELETE_OLD_SESSIONS_SQL, {"before": before})
        return result.row_count

    async def apply_retention(self, retention_days: int, now: Optional[datetime] = None) -> dict:
        """
        Delete events and sessions older than the retention period.

        Events go first so sessions whose events have all aged out can go
        in the same pass.
        """
        now = now or datetime.now(timezone.utc)
        before = now - timedelta(days=retention_days)

        events = await self.delete_events_before(before)
        sessions = await self.delete_sessions_before(before)

        logger.info(
            "Retention cleanup applied",
            before=before.isoformat(),
            events_deleted=events,
            sessions_deleted=sessions,
        )
        return {"events": events, "sessions": sessions}
