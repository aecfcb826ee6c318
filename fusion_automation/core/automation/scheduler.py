"""Timezone-aware cron scheduler for scheduled automation rules."""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from fusion_automation.core.automation.errors import SchedulerResolutionError
from fusion_automation.core.logging import get_logger

logger = get_logger(__name__)

# Cron numbering: 0 (and 7) is Sunday
_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _day_number(token: str, allow_seven: bool = False) -> int:
    token = token.strip().lower()
    if token[:3] in _DAY_NAMES and token.isalpha():
        return _DAY_NAMES.index(token[:3])
    if token.isdigit():
        number = int(token)
        if 0 <= number <= 6:
            return number
        if number == 7:
            return 7 if allow_seven else 0
    raise SchedulerResolutionError(f"Invalid day of week '{token}'")


def normalize_day_of_week(field: str) -> str:
    """Translate a cron day-of-week field into day names.

    Cron counts Sunday as 0 (or 7); the scheduler library counts Monday as 0.
    Names are unambiguous in both, so every day is rewritten as a name.

    Args:
        field: Day-of-week field, e.g. ``MON-FRI``, ``1-5``, ``0,6`` or ``*/2``

    Returns:
        ``*`` or a comma-separated list of day names
    """
    days: set[int] = set()
    for part in field.split(","):
        part = part.strip()
        if not part:
            raise SchedulerResolutionError(f"Invalid day-of-week field '{field}'")
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) < 1:
                raise SchedulerResolutionError(f"Invalid step in day-of-week field '{field}'")
            step = int(step_text)

        if part in ("*", "?"):
            sequence = list(range(0, 7))
        elif "-" in part:
            first, last = part.split("-", 1)
            start = _day_number(first)
            end = _day_number(last, allow_seven=True)
            if start <= end:
                sequence = list(range(start, end + 1))
            else:
                sequence = list(range(start, 7)) + list(range(0, end + 1))
        else:
            start = _day_number(part)
            sequence = list(range(start, 7)) if step > 1 else [start]

        days.update(day % 7 for day in sequence[::step])

    if len(days) == 7:
        return "*"
    return ",".join(_DAY_NAMES[day] for day in sorted(days))


def resolve_time_zone(time_zone: str | None) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        SchedulerResolutionError: If the name is empty or unknown
    """
    if not time_zone:
        raise SchedulerResolutionError("No timezone available for scheduled rule")
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise SchedulerResolutionError(f"Unknown timezone '{time_zone}'") from e


def parse_cron(cron_expression: str, time_zone: str | None) -> CronTrigger:
    """Build a cron trigger from a five-field expression and an IANA timezone.

    Day-of-month and day-of-week restrictions are both applied (AND).

    Args:
        cron_expression: ``minute hour day month day_of_week``
        time_zone: IANA timezone in which the expression is interpreted

    Returns:
        CronTrigger firing in the given timezone

    Raises:
        SchedulerResolutionError: If the expression or timezone is invalid
    """
    zone = resolve_time_zone(time_zone)
    fields = cron_expression.split()
    if len(fields) != 5:
        raise SchedulerResolutionError(
            f"Cron expression '{cron_expression}' must have 5 fields, got {len(fields)}"
        )
    minute, hour, day, month, day_of_week = fields
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day.replace("?", "*"),
            month=month,
            day_of_week=normalize_day_of_week(day_of_week),
            timezone=zone,
        )
    except ValueError as e:
        raise SchedulerResolutionError(f"Invalid cron expression '{cron_expression}': {e}") from e


def compute_next_fire(
    cron_expression: str, time_zone: str | None, after: datetime | None = None
) -> datetime | None:
    """Compute the first fire time at or after ``after`` (default: now)."""
    trigger = parse_cron(cron_expression, time_zone)
    now = after or datetime.now(UTC)
    return trigger.get_next_fire_time(None, now)


class CronScheduler:
    """Arms one cron job per scheduled rule."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        """Initialize cron scheduler.

        Args:
            scheduler: APScheduler instance (created if not provided)
        """
        self.scheduler = scheduler or AsyncIOScheduler(timezone=UTC)
        self._triggers: dict[UUID, CronTrigger] = {}
        self._running = False

    def schedule(
        self,
        rule_id: UUID,
        cron_expression: str,
        time_zone: str | None,
        callback: Callable[[UUID, datetime], Awaitable[None]],
    ) -> datetime | None:
        """Arm (or re-arm) the job of a rule.

        Args:
            rule_id: Rule ID
            cron_expression: Five-field cron expression
            time_zone: Resolved IANA timezone
            callback: Coroutine called with (rule_id, fired_at) on each tick

        Returns:
            Next fire time

        Raises:
            SchedulerResolutionError: If the expression or timezone is invalid
        """
        trigger = parse_cron(cron_expression, time_zone)
        self.scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[rule_id, callback],
            id=str(rule_id),
            name=f"Automation rule {rule_id}",
            replace_existing=True,
            max_instances=10,
            coalesce=True,
            misfire_grace_time=60,
        )
        self._triggers[rule_id] = trigger
        next_fire = self.next_fire_time(rule_id)
        logger.info(
            f"Scheduled rule {rule_id} with cron '{cron_expression}' in {time_zone}, "
            f"next fire at {next_fire}"
        )
        return next_fire

    def cancel(self, rule_id: UUID) -> None:
        """Cancel a rule's job; in-flight runs are not interrupted."""
        self._triggers.pop(rule_id, None)
        try:
            self.scheduler.remove_job(str(rule_id))
            logger.info(f"Cancelled schedule of rule {rule_id}")
        except JobLookupError:
            pass

    def next_fire_time(self, rule_id: UUID, after: datetime | None = None) -> datetime | None:
        trigger = self._triggers.get(rule_id)
        if trigger is None:
            return None
        return trigger.get_next_fire_time(None, after or datetime.now(UTC))

    def is_scheduled(self, rule_id: UUID) -> bool:
        return rule_id in self._triggers

    async def _fire(
        self, rule_id: UUID, callback: Callable[[UUID, datetime], Awaitable[None]]
    ) -> None:
        fired_at = datetime.now(UTC)
        try:
            await callback(rule_id, fired_at)
        except Exception as e:
            logger.error(f"Error in scheduled run of rule {rule_id}: {e}", exc_info=True)

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            logger.warning("CronScheduler is already running")
            return
        self.scheduler.start()
        self._running = True
        logger.info("CronScheduler started")

    async def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if not self._running:
            return
        try:
            self.scheduler.shutdown(wait=False)
        except Exception as e:
            logger.error(f"Error stopping CronScheduler: {e}", exc_info=True)
        self._running = False
        self._triggers.clear()
        logger.info("CronScheduler stopped")
