"""Unit tests for the time-of-day filter."""

from datetime import UTC, datetime, time, timedelta

import pytest

from fusion_automation.core.automation.facts import LocationInfo
from fusion_automation.core.automation.time_filter import (
    TimeOfDayEvaluator,
    is_time_in_range,
    parse_clock,
    resolve_zone,
    shift_clock,
)
from fusion_automation.schemas.automation import TimeOfDayFilter

# 2025-01-15 is in EST (UTC-5)
WINTER_DAY = datetime(2025, 1, 15, tzinfo=UTC)


def at_local(hour, minute=0):
    """UTC instant for a New York wall-clock time on WINTER_DAY."""
    return WINTER_DAY + timedelta(hours=hour + 5, minutes=minute)


@pytest.fixture
def evaluator():
    return TimeOfDayEvaluator(default_time_zone="UTC", sun_times_max_age_days=7)


@pytest.fixture
def ny_location():
    return LocationInfo(
        id="loc-1",
        name="Head Office",
        time_zone="America/New_York",
        sunrise="07:00",
        sunset="17:00",
        sun_times_updated_at=WINTER_DAY - timedelta(days=1),
    )


def test_parse_clock():
    assert parse_clock("08:30") == time(8, 30)
    assert parse_clock(None) is None
    assert parse_clock("8h30") is None
    assert parse_clock("25:00") is None


def test_shift_clock_wraps_midnight():
    assert shift_clock(time(23, 30), 45) == time(0, 15)
    assert shift_clock(time(0, 10), -20) == time(23, 50)


def test_is_time_in_range():
    assert is_time_in_range(time(9, 0), time(9, 0), time(17, 0))
    assert is_time_in_range(time(17, 0), time(9, 0), time(17, 0))
    assert not is_time_in_range(time(17, 1), time(9, 0), time(17, 0))
    # Overnight
    assert is_time_in_range(time(23, 0), time(22, 0), time(6, 0))
    assert is_time_in_range(time(5, 59), time(22, 0), time(6, 0))
    assert not is_time_in_range(time(12, 0), time(22, 0), time(6, 0))


def test_resolve_zone_falls_back():
    assert resolve_zone("Mars/Olympus_Mons", "UTC") == resolve_zone("UTC")
    assert str(resolve_zone(None, "Europe/Paris")) == "Europe/Paris"


def test_no_filter_and_any_time_allow(evaluator):
    assert evaluator.is_allowed(None, WINTER_DAY)
    assert evaluator.is_allowed(TimeOfDayFilter(type="any_time"), WINTER_DAY)


def test_specific_times_use_location_zone(evaluator, ny_location):
    time_filter = TimeOfDayFilter(type="specific_times", start_time="09:00", end_time="17:00")

    assert evaluator.is_allowed(time_filter, at_local(9, 0), ny_location)
    assert evaluator.is_allowed(time_filter, at_local(17, 0), ny_location)
    assert not evaluator.is_allowed(time_filter, at_local(8, 59), ny_location)
    # 09:00 UTC is 04:00 in New York
    assert not evaluator.is_allowed(
        time_filter, WINTER_DAY + timedelta(hours=9), ny_location
    )


def test_specific_times_overnight(evaluator, ny_location):
    time_filter = TimeOfDayFilter(type="specific_times", start_time="22:00", end_time="06:00")

    assert evaluator.is_allowed(time_filter, at_local(23, 30), ny_location)
    assert evaluator.is_allowed(time_filter, at_local(3, 0), ny_location)
    assert not evaluator.is_allowed(time_filter, at_local(12, 0), ny_location)


def test_specific_times_without_bounds_blocks(evaluator):
    time_filter = TimeOfDayFilter(type="specific_times", start_time="09:00")
    assert evaluator.is_allowed(time_filter, WINTER_DAY) is False


def test_default_zone_without_location():
    evaluator = TimeOfDayEvaluator(default_time_zone="America/New_York")
    time_filter = TimeOfDayFilter(type="specific_times", start_time="09:00", end_time="10:00")

    assert evaluator.is_allowed(time_filter, at_local(9, 30))


def test_during_day_and_at_night(evaluator, ny_location):
    day = TimeOfDayFilter(type="during_day")
    night = TimeOfDayFilter(type="at_night")

    assert evaluator.is_allowed(day, at_local(12, 0), ny_location)
    assert not evaluator.is_allowed(night, at_local(12, 0), ny_location)
    assert evaluator.is_allowed(night, at_local(22, 0), ny_location)
    assert evaluator.is_allowed(night, at_local(5, 0), ny_location)
    assert not evaluator.is_allowed(day, at_local(5, 0), ny_location)


def test_sun_offsets(evaluator, ny_location):
    # Day starts 30 minutes after sunrise
    day = TimeOfDayFilter(type="during_day", sunrise_offset_minutes=30)

    assert not evaluator.is_allowed(day, at_local(7, 15), ny_location)
    assert evaluator.is_allowed(day, at_local(7, 30), ny_location)


def test_sun_filters_fail_open(evaluator, ny_location):
    night = TimeOfDayFilter(type="at_night")
    noon = at_local(12, 0)

    assert evaluator.is_allowed(night, noon, None)
    no_sun = LocationInfo(id="loc-2", name="Warehouse", time_zone="America/New_York")
    assert evaluator.is_allowed(night, noon, no_sun)

    stale = LocationInfo(
        id="loc-3",
        name="Depot",
        time_zone="America/New_York",
        sunrise="07:00",
        sunset="17:00",
        sun_times_updated_at=noon - timedelta(days=8),
    )
    assert evaluator.is_allowed(night, noon, stale)
