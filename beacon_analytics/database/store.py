"""
Event Store query interface

The aggregation core talks to the relational store only through
``EventStore.query``: parameterized SQL in, plain dict rows out. Drivers may
return aggregates as text, Decimal or None; callers normalize them with
``beacon_analytics.aggregation.normalize``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


@dataclass
class QueryResult:
    """Rows returned by a query plus the affected/returned row count"""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    def first(self) -> Dict[str, Any]:
        """First row, or an empty mapping when the query matched nothing"""
        return self.rows[0] if self.rows else {}


class EventStore(ABC):
    """Abstract parameterized query executor over events and sessions"""

    @abstractmethod
    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        """
        Execute a single statement.

        Args:
            sql: Statement text using named ``:param`` placeholders
            params: Bind parameter values

        Returns:
            QueryResult with the statement's rows and row count
        """
        pass


class SQLAlchemyEventStore(EventStore):
    """
    EventStore backed by an async SQLAlchemy engine.

    Each call checks out its own pooled connection, so concurrent queries from
    one aggregation never share a connection.

    Example:
        engine = await init_database()
        store = SQLAlchemyEventStore(engine)
        result = await store.query("SELECT COUNT(*) AS n FROM analytics_events")
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        async with self._engine.begin() as conn:
            result = await conn.execute(text(sql), params or {})

            if result.returns_rows:
                rows = [dict(row._mapping) for row in result.fetchall()]
                return QueryResult(rows=rows, row_count=len(rows))

            return QueryResult(rows=[], row_count=max(result.rowcount, 0))
