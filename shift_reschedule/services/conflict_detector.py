from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from shift_reschedule.schemas import WorkShiftStatus
from shift_reschedule.time_utils import as_utc


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: touching windows (09-10 and 10-11) do not conflict."""
    return as_utc(a_start) < as_utc(b_end) and as_utc(a_end) > as_utc(b_start)


def find_conflicts(
    existing_shifts: Iterable[Any],
    window_start: datetime,
    window_end: datetime,
    ignore_shift_ids: Iterable[UUID] = (),
) -> list[Any]:
    """Scheduled shifts in ``existing_shifts`` that overlap the given window."""
    ignored = set(ignore_shift_ids)
    return [
        shift
        for shift in existing_shifts
        if shift.status == WorkShiftStatus.scheduled
        and shift.id not in ignored
        and overlaps(shift.start_time, shift.end_time, window_start, window_end)
    ]


def has_conflict(
    existing_shifts: Iterable[Any],
    window_start: datetime,
    window_end: datetime,
    ignore_shift_ids: Iterable[UUID] = (),
) -> bool:
    return bool(find_conflicts(existing_shifts, window_start, window_end, ignore_shift_ids))
