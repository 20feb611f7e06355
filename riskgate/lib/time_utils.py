"""
Time utilities for trading operations.

This module provides timezone-aware helpers for:
- Bar timeframes and their durations
- Converting instants into the venue's clock
- Calendar day boundaries used by the daily risk reset
- Hour windows that wrap across midnight (session filter)

All engine decisions are keyed on venue time. Naive datetimes are assumed
to be UTC.
"""

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from riskgate.lib.constants import DEFAULT_VENUE_TIMEZONE


class Timeframe(Enum):
    """Bar timeframes supported by the engine."""
    M1 = "M1"
    M5 = "M5"
    M15 = "M15"
    M30 = "M30"
    H1 = "H1"
    H4 = "H4"
    D1 = "D1"

    @property
    def duration(self) -> timedelta:
        """Length of one bar."""
        return timedelta(seconds=_TIMEFRAME_SECONDS[self])

    @property
    def seconds(self) -> int:
        return _TIMEFRAME_SECONDS[self]

    @classmethod
    def parse(cls, value: Union[str, "Timeframe"]) -> "Timeframe":
        """
        Parse a timeframe from its name.

        Accepts "M15", "m15" or an existing Timeframe.

        Raises:
            ValueError: If the name is not a known timeframe
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown timeframe: {value!r}") from None


_TIMEFRAME_SECONDS = {
    Timeframe.M1: 60,
    Timeframe.M5: 300,
    Timeframe.M15: 900,
    Timeframe.M30: 1800,
    Timeframe.H1: 3600,
    Timeframe.H4: 14400,
    Timeframe.D1: 86400,
}


def get_venue_timezone(name: Optional[str] = None) -> ZoneInfo:
    """Resolve a venue timezone name (default from constants)."""
    return ZoneInfo(name or DEFAULT_VENUE_TIMEZONE)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware datetimes pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_venue_time(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Convert a datetime into the venue's clock.

    Args:
        dt: Datetime to convert (naive is treated as UTC)
        tz_name: Venue timezone name

    Returns:
        Datetime in venue timezone
    """
    return ensure_aware(dt).astimezone(get_venue_timezone(tz_name))


def venue_date(dt: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of an instant in the venue's clock."""
    return to_venue_time(dt, tz_name).date()


def bars_elapsed(since: datetime, now: datetime, timeframe: Timeframe) -> int:
    """
    Number of bars of a timeframe that closed between two instants.

    Counts bar boundaries crossed, so an instant in the middle of a bar
    starts counting from that bar's close. Returns 0 when now precedes since.
    """
    start = ensure_aware(since).timestamp() // timeframe.seconds
    end = ensure_aware(now).timestamp() // timeframe.seconds
    return max(0, int(end - start))


def hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """
    Check whether an hour falls inside [start_hour, end_hour).

    Windows wrap across midnight when start_hour > end_hour
    (e.g. 22 -> 6). Equal bounds cover the whole day.
    """
    if start_hour == end_hour:
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour
