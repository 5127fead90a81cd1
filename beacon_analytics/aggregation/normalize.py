"""
Aggregate row normalization

Database drivers hand back COUNT/AVG results as int, Decimal, text or None
depending on the driver and on whether the window had any rows. Every
aggregation result goes through these helpers so that missing counts become
0, missing averages become None, and rounding is half-up like a dashboard
user expects (180.5 seconds -> 181).
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Mapping, Optional

from beacon_analytics.models import PopularPage, RealtimePage, ReferrerCount


def to_int(value: Any, default: int = 0) -> int:
    """Coerce a driver value to int; None, empty or unparseable gives ``default``"""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return int(value)
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return default


def to_float(value: Any) -> Optional[float]:
    """Coerce a driver value to float; None, empty or unparseable gives None"""
    if value is None or value == "":
        return None
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def round_half_up(value: Optional[float], places: int = 0) -> float:
    """Round half away from zero; None renders as 0"""
    if value is None:
        return 0.0
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_seconds(value: Optional[float]) -> int:
    return int(round_half_up(value))


def bounce_rate(bounced: int, total: int) -> float:
    """Percentage of single-page sessions, 2 decimals, 0 for an empty window"""
    if total <= 0:
        return 0.0
    rate = round_half_up(bounced / total * 100, 2)
    return min(max(rate, 0.0), 100.0)


def first_row(rows: List[Mapping[str, Any]]) -> Mapping[str, Any]:
    return rows[0] if rows else {}


def popular_pages(rows: Iterable[Mapping[str, Any]]) -> List[PopularPage]:
    return [
        PopularPage(
            url=row["url"],
            views=to_int(row.get("views")),
            unique_sessions=to_int(row.get("unique_sessions")),
        )
        for row in rows
    ]


def realtime_pages(rows: Iterable[Mapping[str, Any]]) -> List[RealtimePage]:
    return [RealtimePage(url=row["url"], views=to_int(row.get("views"))) for row in rows]


def referrer_counts(rows: Iterable[Mapping[str, Any]]) -> List[ReferrerCount]:
    return [
        ReferrerCount(referrer=row["referrer"], count=to_int(row.get("count")))
        for row in rows
        if row.get("referrer")
    ]
