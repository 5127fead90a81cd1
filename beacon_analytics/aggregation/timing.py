"""
Time bucketing utilities

All bucketing happens in one configured timezone. Window arithmetic is done
in UTC and converted back, so an hour is always 3600 real seconds even across
DST transitions, while a day runs from local midnight to the next local
midnight.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterator, Tuple, Union

DateLike = Union[datetime, date]

ONE_HOUR = timedelta(hours=1)


def localize(value: DateLike, tz: tzinfo, end_of_day: bool = False) -> datetime:
    """
    Interpret ``value`` as an aware datetime in ``tz``.

    Naive datetimes are taken to already be local to ``tz``. Plain dates
    become local midnight, or the last instant of the day with
    ``end_of_day``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value.astimezone(tz)
    return datetime.combine(value, time.max if end_of_day else time.min, tzinfo=tz)


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def _shift(value: datetime, delta: timedelta, tz: tzinfo) -> datetime:
    return (_utc(value) + delta).astimezone(tz)


def start_of_hour(value: DateLike, tz: tzinfo) -> datetime:
    local = localize(value, tz)
    return local.replace(minute=0, second=0, microsecond=0)


def start_of_day(value: DateLike, tz: tzinfo) -> datetime:
    local = localize(value, tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz)


def hour_window(value: DateLike, tz: tzinfo) -> Tuple[datetime, datetime]:
    """``[start, start + 1h)`` for the hour containing ``value``"""
    start = start_of_hour(value, tz)
    return start, _shift(start, ONE_HOUR, tz)


def day_window(value: DateLike, tz: tzinfo) -> Tuple[datetime, datetime]:
    """``[midnight, next midnight)`` for the day containing ``value``"""
    start = start_of_day(value, tz)
    end = datetime.combine(start.date() + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def hourly_cache_key(start: datetime) -> str:
    """``YYYY-MM-DDTHH`` of the window start in UTC"""
    return start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


def daily_cache_key(start: datetime) -> str:
    """``YYYY-MM-DD`` of the local day"""
    return start.date().isoformat()


def iter_hours(start: DateLike, end: DateLike, tz: tzinfo) -> Iterator[datetime]:
    """Every hour bucket from the one containing ``start`` through the one containing ``end``"""
    current = start_of_hour(start, tz)
    last = start_of_hour(end, tz)
    while _utc(current) <= _utc(last):
        yield current
        current = _shift(current, ONE_HOUR, tz)


def iter_days(start: DateLike, end: DateLike, tz: tzinfo) -> Iterator[datetime]:
    """Every day bucket from the one containing ``start`` through the one containing ``end``"""
    current = start_of_day(start, tz)
    last = start_of_day(end, tz)
    while _utc(current) <= _utc(last):
        yield current
        current = datetime.combine(current.date() + timedelta(days=1), time.min, tzinfo=tz)


def previous_hour(now: datetime, tz: tzinfo) -> datetime:
    """Start of the last completed hour"""
    return _shift(start_of_hour(now, tz), -ONE_HOUR, tz)


def previous_day(now: datetime, tz: tzinfo) -> datetime:
    """Local midnight of the last completed day"""
    today = start_of_day(now, tz)
    return datetime.combine(today.date() - timedelta(days=1), time.min, tzinfo=tz)


def seconds_until_next_hour(now: datetime, tz: tzinfo, offset_minutes: int = 0) -> float:
    """Delay until ``offset_minutes`` past the next wall-clock hour"""
    target = _shift(start_of_hour(now, tz), ONE_HOUR + timedelta(minutes=offset_minutes), tz)
    return (_utc(target) - _utc(localize(now, tz))).total_seconds()


def seconds_until_daily_run(now: datetime, tz: tzinfo, hour: int) -> float:
    """Delay until the next local ``hour``:00, today if not yet past"""
    local = localize(now, tz)
    target = datetime.combine(local.date(), time(hour=hour), tzinfo=tz)
    if _utc(target) <= _utc(local):
        target = datetime.combine(local.date() + timedelta(days=1), time(hour=hour), tzinfo=tz)
    return (_utc(target) - _utc(local)).total_seconds()
