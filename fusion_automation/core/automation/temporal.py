"""Temporal window service: predicates over historical events around a trigger."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta

from fusion_automation.core.automation.condition_evaluator import ConditionEvaluator
from fusion_automation.core.automation.errors import HistoryQueryError
from fusion_automation.core.automation.facts import DeviceContext, FactResolver, TopologyStore
from fusion_automation.schemas.automation import StandardizedEvent, TemporalCondition

logger = logging.getLogger(__name__)


class EventHistoryStore(ABC):
    """Read access to previously received events."""

    @abstractmethod
    async def find_events(
        self,
        start: datetime,
        end: datetime,
        device_ids: Sequence[str] | None = None,
    ) -> list[StandardizedEvent]:
        """Find events with start <= timestamp <= end.

        Args:
            start: Window start (inclusive)
            end: Window end (inclusive)
            device_ids: Restrict to these external device IDs (None for all)

        Returns:
            Matching events
        """
        pass


def compute_window(
    condition: TemporalCondition, anchor: datetime
) -> tuple[datetime, datetime]:
    """Compute the [start, end] window of a temporal condition.

    An absent (or zero) bound collapses to the anchor instant.

    Args:
        condition: Temporal condition
        anchor: Trigger timestamp

    Returns:
        Tuple of (start, end), start <= end
    """
    start = anchor - timedelta(seconds=condition.time_window_seconds_before or 0)
    end = anchor + timedelta(seconds=condition.time_window_seconds_after or 0)
    return min(start, end), max(start, end)


def evaluate_count(condition: TemporalCondition, count: int) -> bool:
    """Apply a temporal condition's predicate to a matching-event count."""
    if condition.type == "eventOccurred":
        return count >= 1
    if condition.type == "noEventOccurred":
        return count == 0

    expected = condition.expected_event_count
    if expected is None:
        logger.warning(f"Temporal condition {condition.id}: missing expected_event_count")
        return False
    if condition.type == "eventCountEquals":
        return count == expected
    elif condition.type == "eventCountLessThan":
        return count < expected
    elif condition.type == "eventCountGreaterThan":
        return count > expected
    elif condition.type == "eventCountLessThanOrEqual":
        return count <= expected
    elif condition.type == "eventCountGreaterThanOrEqual":
        return count >= expected

    logger.warning(f"Temporal condition {condition.id}: unknown type '{condition.type}'")
    return False


class TemporalWindowService:
    """Evaluates temporal conditions against the event-history store."""

    def __init__(
        self,
        history_store: EventHistoryStore,
        topology: TopologyStore | None = None,
        evaluator: ConditionEvaluator | None = None,
        query_timeout: float = 10.0,
    ):
        """Initialize temporal window service.

        Args:
            history_store: Event-history store to query
            topology: Topology store used for sameArea/sameLocation scoping
            evaluator: Condition evaluator used on candidate events
            query_timeout: Timeout in seconds for each history query
        """
        self.history_store = history_store
        self.topology = topology
        self.evaluator = evaluator or ConditionEvaluator()
        self.query_timeout = query_timeout

    async def check(
        self,
        condition: TemporalCondition,
        anchor_event: StandardizedEvent,
        anchor_context: DeviceContext | None,
    ) -> bool:
        """Check whether a temporal condition is met around an anchor event.

        Query failures are logged and reported as not met.

        Args:
            condition: Temporal condition to check
            anchor_event: Triggering event (its timestamp anchors the window)
            anchor_context: Device context of the triggering event

        Returns:
            True if the condition is met, False otherwise
        """
        try:
            count = await self.count_matching_events(condition, anchor_event, anchor_context)
        except HistoryQueryError as e:
            logger.error(f"Temporal condition {condition.id} not evaluated: {e}")
            return False

        met = evaluate_count(condition, count)
        logger.debug(
            f"Temporal condition {condition.id} ({condition.type}): "
            f"{count} matching event(s), met={met}"
        )
        return met

    async def check_all(
        self,
        conditions: Sequence[TemporalCondition],
        anchor_event: StandardizedEvent,
        anchor_context: DeviceContext | None,
    ) -> bool:
        """AND all temporal conditions, stopping at the first unmet one."""
        for condition in conditions:
            if not await self.check(condition, anchor_event, anchor_context):
                logger.debug(f"Temporal condition {condition.id} not met")
                return False
        return True

    async def count_matching_events(
        self,
        condition: TemporalCondition,
        anchor_event: StandardizedEvent,
        anchor_context: DeviceContext | None,
    ) -> int:
        """Count in-window, in-scope events matching the condition's event filter.

        Raises:
            HistoryQueryError: If scoping or the history query fails or times out
        """
        device_ids = await self._scope_device_ids(condition, anchor_context)
        if device_ids is not None and not device_ids:
            # Nothing can have happened in an empty or unknown scope
            return 0

        start, end = compute_window(condition, anchor_event.timestamp)
        try:
            candidates = await asyncio.wait_for(
                self.history_store.find_events(start, end, device_ids),
                timeout=self.query_timeout,
            )
        except TimeoutError as e:
            raise HistoryQueryError(
                f"history query timed out after {self.query_timeout}s"
            ) from e
        except Exception as e:
            raise HistoryQueryError(f"history query failed: {e}") from e

        count = 0
        for candidate in candidates:
            facts = FactResolver.build_history_facts(candidate)
            if self.evaluator.evaluate(condition.event_filter, facts):
                count += 1
        return count

    async def _scope_device_ids(
        self, condition: TemporalCondition, anchor_context: DeviceContext | None
    ) -> list[str] | None:
        """Resolve the device filter for a scoping policy (None means unfiltered)."""
        if condition.scoping == "anywhere":
            return None

        if condition.scoping == "sameArea":
            scope_id = anchor_context.area_id if anchor_context else None
        else:
            scope_id = anchor_context.location_id if anchor_context else None

        if not scope_id:
            logger.warning(
                f"Temporal condition {condition.id}: cannot scope by {condition.scoping}, "
                f"trigger device has no {'area' if condition.scoping == 'sameArea' else 'location'}"
            )
            return []
        if self.topology is None:
            raise HistoryQueryError(f"no topology store available for {condition.scoping}")

        try:
            if condition.scoping == "sameArea":
                return await self.topology.list_device_ids(area_id=scope_id)
            return await self.topology.list_device_ids(location_id=scope_id)
        except Exception as e:
            raise HistoryQueryError(
                f"failed to list devices for {condition.scoping} {scope_id}: {e}"
            ) from e
