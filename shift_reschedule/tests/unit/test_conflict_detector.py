"""Unit tests for shift overlap detection (half-open windows)."""
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest

from shift_reschedule.schemas import WorkShiftStatus
from shift_reschedule.services.conflict_detector import find_conflicts, has_conflict, overlaps

DAY = datetime(2026, 3, 2, tzinfo=UTC)


def _at(hour: int) -> datetime:
    return DAY + timedelta(hours=hour)


def _shift(start: int, end: int, status: WorkShiftStatus = WorkShiftStatus.scheduled):
    return SimpleNamespace(id=uuid4(), start_time=_at(start), end_time=_at(end), status=status)


@pytest.mark.unit
def test_touching_windows_do_not_overlap():
    assert not overlaps(_at(9), _at(10), _at(10), _at(11))
    assert not overlaps(_at(10), _at(11), _at(9), _at(10))


@pytest.mark.unit
def test_partial_and_nested_windows_overlap():
    assert overlaps(_at(9), _at(12), _at(11), _at(14))
    assert overlaps(_at(9), _at(17), _at(10), _at(11))


@pytest.mark.unit
def test_naive_datetimes_are_read_as_utc():
    naive_start = datetime(2026, 3, 2, 9)
    naive_end = datetime(2026, 3, 2, 12)
    assert overlaps(naive_start, naive_end, _at(11), _at(13))


@pytest.mark.unit
def test_find_conflicts_returns_overlapping_scheduled_shifts():
    morning = _shift(8, 12)
    evening = _shift(18, 22)
    assert find_conflicts([morning, evening], _at(10), _at(14)) == [morning]


@pytest.mark.unit
def test_cancelled_shifts_never_conflict():
    cancelled = _shift(9, 17, WorkShiftStatus.cancelled)
    assert not has_conflict([cancelled], _at(10), _at(12))


@pytest.mark.unit
def test_ignored_shift_is_skipped():
    offered = _shift(9, 17)
    assert has_conflict([offered], _at(10), _at(12))
    assert not has_conflict([offered], _at(10), _at(12), ignore_shift_ids=[offered.id])
