"""Unit tests for UTC normalisation and the org timezone (Ho Chi Minh City)."""
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from shift_reschedule.time_utils import as_utc, org_now, org_tz, utc_now


@pytest.mark.unit
def test_naive_value_is_taken_as_utc():
    assert as_utc(datetime(2026, 2, 19, 21, 35)) == datetime(2026, 2, 19, 21, 35, tzinfo=UTC)


@pytest.mark.unit
def test_aware_value_is_converted_to_utc():
    ict = timezone(timedelta(hours=7))
    converted = as_utc(datetime(2026, 2, 20, 4, 35, tzinfo=ict))
    assert converted == datetime(2026, 2, 19, 21, 35, tzinfo=UTC)
    assert converted.tzinfo == UTC


@pytest.mark.unit
def test_utc_now_is_aware():
    assert utc_now().tzinfo is not None


@pytest.mark.unit
def test_org_now_uses_configured_zone():
    assert org_tz().key == "Asia/Ho_Chi_Minh"
    assert org_now().utcoffset() == timedelta(hours=7)


@pytest.mark.unit
def test_org_day_differs_from_utc_day_late_evening():
    """At 2026-02-19 21:35 UTC it is already 2026-02-20 in Ho Chi Minh City."""
    fixed = datetime(2026, 2, 19, 21, 35, tzinfo=UTC)
    with patch("shift_reschedule.time_utils.datetime") as mock_dt:
        mock_dt.now.side_effect = lambda tz=None: fixed.astimezone(tz) if tz else fixed
        assert org_now().date().isoformat() == "2026-02-20"
