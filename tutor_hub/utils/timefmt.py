"""Time helpers shared by the services — ISO stamps, month windows, "time ago"."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat()


def parse_ts(value: str | datetime) -> datetime:
    """Parse a store timestamp. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def next_month_start(year_month: str) -> str:
    """First day of the month after ``YYYY-MM`` as ``YYYY-MM-DD``."""
    year, month = (int(p) for p in year_month.split("-"))
    if month == 12:
        return f"{year + 1}-01-01"
    return f"{year}-{month + 1:02d}-01"


def month_window(year_month: str) -> tuple[str, str]:
    """Half-open ``[start, end)`` date range covering ``YYYY-MM``."""
    return f"{year_month}-01", next_month_start(year_month)


def current_month(now: datetime | None = None) -> str:
    return (now or utcnow()).strftime("%Y-%m")


def previous_month(now: datetime | None = None) -> str:
    now = now or utcnow()
    first = now.replace(day=1)
    return (first - timedelta(days=1)).strftime("%Y-%m")


def format_time_ago(when: str | datetime, now: datetime | None = None) -> str:
    now = now or utcnow()
    seconds = int((now - parse_ts(when)).total_seconds())

    if seconds < 60:
        return f"{seconds} seconds ago"
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
    if seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    days = seconds // 86400
    return f"{days} day{'s' if days > 1 else ''} ago"
