"""Human-readable relative timestamps."""

from __future__ import annotations

from datetime import datetime, timezone

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY
MONTH = 30 * DAY


def _aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def relative_time(timestamp: datetime, now: datetime | None = None) -> str:
    """Bucket ``timestamp`` relative to ``now``.

    "just now", "Nm ago", "Nh ago", "Nd ago", "Nw ago", then a calendar date
    such as "Mar 4, 2026" once it is 30 days or older. Future timestamps read
    as "just now".
    """
    if now is None:
        now = datetime.now(timezone.utc)
    timestamp = _aware(timestamp)
    seconds = int((_aware(now) - timestamp).total_seconds())

    if seconds < MINUTE:
        return "just now"
    if seconds < HOUR:
        return f"{seconds // MINUTE}m ago"
    if seconds < DAY:
        return f"{seconds // HOUR}h ago"
    if seconds < WEEK:
        return f"{seconds // DAY}d ago"
    if seconds < MONTH:
        return f"{seconds // WEEK}w ago"
    return f"{timestamp:%b} {timestamp.day}, {timestamp.year}"
