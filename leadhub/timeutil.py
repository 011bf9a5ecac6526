"""
Time helpers: all stored timestamps are UTC; "today" is tenant-local.
"""
import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from leadhub.config import DEFAULT_TIMEZONE

logger = logging.getLogger('leadhub.timeutil')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt):
    """Normalize a stored datetime to aware UTC (SQLite hands back naive values)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def tenant_today(tz_name, now=None) -> date:
    """Calendar date at `now` in the tenant's timezone."""
    now = as_utc(now) or utcnow()
    try:
        tz = ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", tz_name, DEFAULT_TIMEZONE)
        tz = ZoneInfo(DEFAULT_TIMEZONE)
    return now.astimezone(tz).date()


def isoformat(dt):
    dt = as_utc(dt)
    return dt.isoformat() if dt else None
