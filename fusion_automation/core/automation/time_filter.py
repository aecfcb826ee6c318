"""Time-of-day filter for automation rules."""

import logging
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fusion_automation.core.automation.facts import LocationInfo
from fusion_automation.schemas.automation import TimeOfDayFilter

logger = logging.getLogger(__name__)


def parse_clock(value: str | None) -> time | None:
    """Parse an ``HH:MM`` string, returning None when absent or malformed."""
    if not value:
        return None
    try:
        hours, minutes = value.split(":", 1)
        return time(int(hours), int(minutes))
    except ValueError:
        return None


def shift_clock(value: time, minutes: int) -> time:
    """Shift a wall-clock time by minutes, wrapping around midnight."""
    anchor = datetime.combine(datetime(2000, 1, 1).date(), value)
    return (anchor + timedelta(minutes=minutes)).time()


def is_time_in_range(current: time, start: time, end: time) -> bool:
    """Check ``start <= current <= end``, allowing ranges that cross midnight.

    Args:
        current: Time to check
        start: Range start (inclusive)
        end: Range end (inclusive)

    Returns:
        True if current falls in the range
    """
    if start <= end:
        return start <= current <= end
    # Overnight range, e.g. 22:00 - 06:00
    return current >= start or current <= end


def resolve_zone(time_zone: str | None, default: str = "UTC") -> ZoneInfo:
    """Resolve an IANA name, falling back to the default zone when unknown."""
    for candidate in (time_zone, default, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{candidate}', trying fallback")
    return ZoneInfo("UTC")


class TimeOfDayEvaluator:
    """Decides whether a rule may run at a given instant."""

    def __init__(self, default_time_zone: str = "UTC", sun_times_max_age_days: int = 7):
        """Initialize time-of-day evaluator.

        Args:
            default_time_zone: Zone used when no location context is available
            sun_times_max_age_days: Sun times older than this are ignored
        """
        self.default_time_zone = default_time_zone
        self.sun_times_max_age = timedelta(days=sun_times_max_age_days)

    def is_allowed(
        self,
        time_filter: TimeOfDayFilter | None,
        at: datetime,
        location: LocationInfo | None = None,
    ) -> bool:
        """Evaluate a time-of-day filter.

        Sun-based filters fail open when sun data is unavailable or stale;
        an incomplete ``specific_times`` range blocks execution.

        Args:
            time_filter: Filter from the rule (None means any time)
            at: Instant being checked (trigger timestamp)
            location: Location providing timezone and sun times

        Returns:
            True if the rule may execute
        """
        if time_filter is None or time_filter.type == "any_time":
            return True

        zone = resolve_zone(location.time_zone if location else None, self.default_time_zone)
        if at.tzinfo is None:
            at = at.replace(tzinfo=UTC)
        local_time = at.astimezone(zone).time().replace(second=0, microsecond=0)

        if time_filter.type == "specific_times":
            start = parse_clock(time_filter.start_time)
            end = parse_clock(time_filter.end_time)
            if start is None or end is None:
                logger.warning("specific_times filter without start/end time, blocking execution")
                return False
            return is_time_in_range(local_time, start, end)

        sunrise, sunset = self._sun_times(location, at)
        if sunrise is None or sunset is None:
            return True

        day_start = shift_clock(sunrise, time_filter.sunrise_offset_minutes)
        day_end = shift_clock(sunset, time_filter.sunset_offset_minutes)
        if time_filter.type == "during_day":
            return is_time_in_range(local_time, day_start, day_end)
        if time_filter.type == "at_night":
            return is_time_in_range(local_time, day_end, day_start)

        logger.warning(f"Unknown time-of-day filter type '{time_filter.type}', allowing")
        return True

    def _sun_times(
        self, location: LocationInfo | None, at: datetime
    ) -> tuple[time | None, time | None]:
        if location is None:
            logger.debug("No location context for sun-based filter, allowing execution")
            return None, None
        sunrise, sunset = parse_clock(location.sunrise), parse_clock(location.sunset)
        if sunrise is None or sunset is None:
            logger.debug(f"Location {location.id} has no sun times, allowing execution")
            return None, None
        updated_at = location.sun_times_updated_at
        if updated_at is not None:
            if updated_at.tzinfo is None:
                updated_at = updated_at.replace(tzinfo=UTC)
            if at - updated_at > self.sun_times_max_age:
                logger.warning(f"Sun times for location {location.id} are stale, allowing execution")
                return None, None
        return sunrise, sunset
