# loanwatch/utils/timeutils.py
"""
Timestamp normalisation and calendar helpers.
Records may carry datetimes, ISO strings, epoch numbers or {"seconds": n}
objects (imported data). to_datetime() is the only place that knows about
those shapes. Everything downstream sees a naive datetime or None.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

DAY = timedelta(days=1)


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalise any supported timestamp encoding. Returns None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds are what most JS clients send
        seconds = value / 1000 if abs(value) > 1e11 else value
        return _from_epoch(seconds)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return to_datetime(parsed)
    if isinstance(value, dict) and isinstance(value.get("seconds"), (int, float)):
        return _from_epoch(value["seconds"])
    return None


def _from_epoch(seconds: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        # Out of range for the platform, or NaN
        return None


def isoformat(value: Any) -> Optional[str]:
    """JSON-safe timestamp for snapshots stored in JSON columns."""
    dt = to_datetime(value)
    return dt.isoformat() if dt else None


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max)


def day_bounds(value: datetime) -> Tuple[datetime, datetime]:
    return start_of_day(value), end_of_day(value)


def week_bounds(value: datetime) -> Tuple[datetime, datetime]:
    """Monday 00:00 to Sunday 23:59:59.999999 of the week containing value."""
    monday = start_of_day(value) - timedelta(days=value.weekday())
    return monday, end_of_day(monday + timedelta(days=6))


def daily_period(value: datetime) -> str:
    """YYYY-MM-DD"""
    return value.strftime("%Y-%m-%d")


def weekly_period(value: datetime) -> str:
    """ISO week, YYYY-Www. The ISO year can differ from the calendar year near January 1."""
    iso_year, iso_week, _ = value.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"
