"""Unit tests for the cron scheduler."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from fusion_automation.core.automation.errors import SchedulerResolutionError
from fusion_automation.core.automation.scheduler import (
    CronScheduler,
    compute_next_fire,
    normalize_day_of_week,
    parse_cron,
)

NEW_YORK = ZoneInfo("America/New_York")
WEEKDAYS_AT_EIGHT = "0 8 * * MON-FRI"


@pytest.mark.parametrize(
    "field,expected",
    [
        ("MON-FRI", "mon,tue,wed,thu,fri"),
        ("1-5", "mon,tue,wed,thu,fri"),
        ("0,6", "sun,sat"),
        ("7", "sun"),
        ("5-7", "sun,fri,sat"),
        ("FRI-MON", "sun,mon,fri,sat"),
        ("*/2", "sun,tue,thu,sat"),
        ("*", "*"),
        ("0-6", "*"),
        ("sunday", "sun"),
    ],
)
def test_normalize_day_of_week(field, expected):
    assert normalize_day_of_week(field) == expected


@pytest.mark.parametrize("field", ["8", "funday", "1,,2", "*/0"])
def test_normalize_day_of_week_rejects_invalid(field):
    with pytest.raises(SchedulerResolutionError):
        normalize_day_of_week(field)


def test_fires_at_local_time_across_dst():
    """08:00 New York is 13:00 UTC before the 2025-03-09 DST change and 12:00 UTC after."""
    # Thursday 2025-03-06 07:00 EST
    before_dst = compute_next_fire(
        WEEKDAYS_AT_EIGHT, "America/New_York", datetime(2025, 3, 6, 12, 0, tzinfo=UTC)
    )
    assert before_dst.astimezone(UTC) == datetime(2025, 3, 6, 13, 0, tzinfo=UTC)

    # Friday 2025-03-07 09:00 EST: next run is Monday after the change
    after_dst = compute_next_fire(
        WEEKDAYS_AT_EIGHT, "America/New_York", datetime(2025, 3, 7, 14, 0, tzinfo=UTC)
    )
    assert after_dst.astimezone(UTC) == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
    assert after_dst.astimezone(NEW_YORK).hour == 8


def test_fires_on_weekdays_only():
    trigger = parse_cron(WEEKDAYS_AT_EIGHT, "America/New_York")
    # Saturday 2025-03-08
    now = datetime(2025, 3, 8, 0, 0, tzinfo=UTC)

    fire_times = []
    previous = None
    for _ in range(6):
        previous = trigger.get_next_fire_time(previous, now)
        fire_times.append(previous.astimezone(NEW_YORK))
        now = previous + timedelta(seconds=1)

    assert [t.strftime("%a") for t in fire_times] == ["Mon", "Tue", "Wed", "Thu", "Fri", "Mon"]
    assert all(t.hour == 8 and t.minute == 0 for t in fire_times)


def test_parse_cron_rejects_invalid_expressions():
    with pytest.raises(SchedulerResolutionError):
        parse_cron("0 8 * *", "UTC")
    with pytest.raises(SchedulerResolutionError):
        parse_cron("61 8 * * *", "UTC")
    with pytest.raises(SchedulerResolutionError):
        parse_cron("0 8 * * *", "Not/AZone")
    with pytest.raises(SchedulerResolutionError):
        parse_cron("0 8 * * *", None)


def test_schedule_and_cancel():
    scheduler = CronScheduler()
    rule_id = uuid4()

    next_fire = scheduler.schedule(rule_id, "*/5 * * * *", "UTC", AsyncMock())

    assert next_fire is not None
    assert scheduler.is_scheduled(rule_id)
    assert scheduler.scheduler.get_job(str(rule_id)) is not None

    scheduler.cancel(rule_id)

    assert not scheduler.is_scheduled(rule_id)
    assert scheduler.next_fire_time(rule_id) is None
    assert scheduler.scheduler.get_job(str(rule_id)) is None


@pytest.mark.asyncio
async def test_reschedule_replaces_job():
    scheduler = CronScheduler()
    rule_id = uuid4()
    after = datetime(2025, 1, 15, 7, 0, tzinfo=UTC)
    await scheduler.start()

    try:
        scheduler.schedule(rule_id, "0 8 * * *", "UTC", AsyncMock())
        scheduler.schedule(rule_id, "0 9 * * *", "UTC", AsyncMock())

        assert len(scheduler.scheduler.get_jobs()) == 1
        assert scheduler.next_fire_time(rule_id, after) == datetime(2025, 1, 15, 9, 0, tzinfo=UTC)
    finally:
        await scheduler.stop()


def test_cancel_unknown_rule_is_noop():
    scheduler = CronScheduler()
    scheduler.cancel(uuid4())


def test_invalid_schedule_is_not_armed():
    scheduler = CronScheduler()
    rule_id = uuid4()

    with pytest.raises(SchedulerResolutionError):
        scheduler.schedule(rule_id, "not a cron", "UTC", AsyncMock())

    assert not scheduler.is_scheduled(rule_id)
    assert scheduler.scheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_fire_invokes_callback_and_isolates_errors():
    scheduler = CronScheduler()
    rule_id = uuid4()
    callback = AsyncMock(side_effect=RuntimeError("boom"))

    await scheduler._fire(rule_id, callback)

    callback.assert_awaited_once()
    fired_rule_id, fired_at = callback.await_args.args
    assert fired_rule_id == rule_id
    assert fired_at.tzinfo is not None


@pytest.mark.asyncio
async def test_start_and_stop():
    scheduler = CronScheduler()
    scheduler.schedule(uuid4(), "0 8 * * *", "UTC", AsyncMock())

    await scheduler.start()
    assert scheduler.scheduler.running

    await scheduler.stop()
    assert scheduler._triggers == {}
