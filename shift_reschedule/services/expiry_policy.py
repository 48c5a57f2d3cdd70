from datetime import datetime, timedelta
from typing import Any

from shift_reschedule.services.state_machine import is_terminal
from shift_reschedule.time_utils import as_utc


def compute_expires_at(now: datetime, shift_start: datetime, ttl: timedelta) -> datetime:
    """``now + ttl``, capped at the start of the shift being given up."""
    return min(as_utc(now) + ttl, as_utc(shift_start))


def is_expired(request: Any, now: datetime) -> bool:
    return not is_terminal(request.status) and as_utc(now) > as_utc(request.expires_at)


def seconds_remaining(request: Any, now: datetime) -> int:
    if is_terminal(request.status):
        return 0
    return max(0, int((as_utc(request.expires_at) - as_utc(now)).total_seconds()))
