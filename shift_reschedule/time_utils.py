"""Time helpers: everything stored and compared in UTC; org timezone only for display-day logic."""
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from shift_reschedule.config import get_settings


def org_tz() -> ZoneInfo:
    """Org timezone (e.g. Asia/Ho_Chi_Minh) for calendar-day logic."""
    return ZoneInfo(get_settings().org_timezone)


def utc_now() -> datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalise to aware UTC. Naive values (SQLite drops tzinfo) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def org_now() -> datetime:
    """Current datetime in org timezone (timezone-aware)."""
    return datetime.now(org_tz())
