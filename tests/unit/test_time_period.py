from datetime import datetime, timedelta, timezone

import pytest

from prism_analytics.domain.exceptions import InvalidPeriodError
from prism_analytics.domain.models import TimePeriod

NOW = datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("name", ["today", "week", "month", "year", "all"])
def test_from_string_round_trips(name):
    period = TimePeriod.from_string(name)

    assert str(period) == name
    assert TimePeriod.from_string(str(period)) == period


def test_from_string_rejects_unknown_name():
    with pytest.raises(InvalidPeriodError) as excinfo:
        TimePeriod.from_string("bogus")
    assert "bogus" in str(excinfo.value)


def test_from_string_does_not_default_blank_input():
    with pytest.raises(InvalidPeriodError):
        TimePeriod.from_string("")


def test_presets_are_anchored_to_now():
    assert TimePeriod.today(NOW).start == datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert TimePeriod.week(NOW).start == NOW - timedelta(days=7)
    assert TimePeriod.month(NOW).start == NOW - timedelta(days=30)
    assert TimePeriod.year(NOW).start == NOW - timedelta(days=365)
    assert TimePeriod.all(NOW).start == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert TimePeriod.week(NOW).end == NOW


def test_naive_now_is_treated_as_utc():
    period = TimePeriod.week(datetime(2024, 3, 15, 14, 30))
    assert period.end == NOW


def test_equality_ignores_construction_instant():
    earlier = TimePeriod.week(NOW - timedelta(minutes=5))
    later = TimePeriod.week(NOW)

    assert earlier == later
    assert hash(earlier) == hash(later)
    assert TimePeriod.week(NOW) != TimePeriod.month(NOW)


def test_contains_is_inclusive():
    period = TimePeriod.week(NOW)

    assert period.contains(period.start)
    assert period.contains(NOW)
    assert not period.contains(NOW + timedelta(seconds=1))


def test_previous_window_has_equal_length():
    period = TimePeriod.week(NOW)

    start, end = period.previous_window()

    assert end == period.start
    assert end - start == timedelta(days=7)
    assert TimePeriod.all(NOW).previous_window() is None


def test_direct_construction_rejects_unknown_name():
    with pytest.raises(InvalidPeriodError):
        TimePeriod("fortnight", NOW - timedelta(days=14), NOW)
