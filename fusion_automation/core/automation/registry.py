"""Trigger registry: holds registered rules and dispatches events and schedule ticks."""

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any
from uuid import UUID

from fusion_automation.core.automation.action_executor import ExecutionContext
from fusion_automation.core.automation.audit import ExecutionAuditService
from fusion_automation.core.automation.condition_evaluator import ConditionEvaluator
from fusion_automation.core.automation.errors import SchedulerResolutionError
from fusion_automation.core.automation.facts import (
    DeviceContext,
    FactResolver,
    LocationInfo,
    ResolvedFacts,
    TopologyStore,
)
from fusion_automation.core.automation.pipeline import ActionPipeline, ExecutionOutcome
from fusion_automation.core.automation.scheduler import CronScheduler
from fusion_automation.core.automation.temporal import TemporalWindowService
from fusion_automation.core.automation.time_filter import TimeOfDayEvaluator
from fusion_automation.core.logging import get_logger
from fusion_automation.schemas.automation import AutomationRule, StandardizedEvent

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuleRegistration:
    """A registered rule. Rules with an error are kept but never fire."""

    rule: AutomationRule
    time_zone: str | None = None
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.error is None


class TriggerRegistry:
    """Registry of enabled rules and entry point for events and schedule ticks.

    Readers take the current immutable snapshot without locking; writers
    serialize on a lock and publish a new snapshot.
    """

    def __init__(
        self,
        pipeline: ActionPipeline,
        audit: ExecutionAuditService,
        temporal: TemporalWindowService,
        scheduler: CronScheduler | None = None,
        topology: TopologyStore | None = None,
        fact_resolver: FactResolver | None = None,
        evaluator: ConditionEvaluator | None = None,
        time_filter: TimeOfDayEvaluator | None = None,
    ):
        """Initialize trigger registry.

        Args:
            pipeline: Action pipeline run for every matched rule
            audit: Execution audit service
            temporal: Temporal window service
            scheduler: Cron scheduler for scheduled rules
            topology: Topology store (location scopes, timezones)
            fact_resolver: Fact resolver for events
            evaluator: Condition evaluator
            time_filter: Time-of-day evaluator
        """
        self.pipeline = pipeline
        self.audit = audit
        self.temporal = temporal
        self.scheduler = scheduler or CronScheduler()
        self.topology = topology
        self.fact_resolver = fact_resolver or FactResolver(topology)
        self.evaluator = evaluator or ConditionEvaluator()
        self.time_filter = time_filter or TimeOfDayEvaluator()
        self._rules: Mapping[UUID, RuleRegistration] = MappingProxyType({})
        self._lock = asyncio.Lock()

    # Lifecycle
    async def init(self, rules: Iterable[AutomationRule] = ()) -> None:
        """Start the scheduler and register the given rules."""
        await self.scheduler.start()
        for rule in rules:
            await self.register_rule(rule)
        logger.info(f"Trigger registry initialized with {len(self._rules)} rule(s)")

    async def shutdown(self) -> None:
        """Stop the scheduler and drop all registrations."""
        async with self._lock:
            await self.scheduler.stop()
            self._rules = MappingProxyType({})
        logger.info("Trigger registry shut down")

    # Registration
    async def register_rule(self, rule: AutomationRule) -> RuleRegistration | None:
        """Register a rule, atomically replacing any previous definition.

        Disabled rules are unregistered. A scheduled rule whose cron expression
        or timezone cannot be resolved is kept in an error state.

        Args:
            rule: Rule to register

        Returns:
            The registration, or None for a disabled rule
        """
        async with self._lock:
            rules = dict(self._rules)
            previous = rules.pop(rule.id, None)
            if previous is not None and previous.rule.is_scheduled:
                self.scheduler.cancel(rule.id)

            if not rule.enabled:
                self._rules = MappingProxyType(rules)
                logger.info(f"Rule {rule.id} is disabled, not registered")
                return None

            registration = RuleRegistration(rule=rule)
            if rule.is_scheduled:
                registration = await self._arm_schedule(rule)

            rules[rule.id] = registration
            self._rules = MappingProxyType(rules)
            action = "Re-registered" if previous is not None else "Registered"
            logger.info(f"{action} rule {rule.id} ({rule.name})")
            return registration

    async def unregister_rule(self, rule_id: UUID) -> bool:
        """Unregister a rule and cancel its timer; in-flight executions finish.

        Returns:
            True if the rule was registered
        """
        async with self._lock:
            rules = dict(self._rules)
            previous = rules.pop(rule_id, None)
            if previous is None:
                return False
            if previous.rule.is_scheduled:
                self.scheduler.cancel(rule_id)
            self._rules = MappingProxyType(rules)
        logger.info(f"Unregistered rule {rule_id}")
        return True

    async def _arm_schedule(self, rule: AutomationRule) -> RuleRegistration:
        time_zone = await self.resolve_schedule_time_zone(rule)
        try:
            self.scheduler.schedule(
                rule.id, rule.trigger.cron_expression, time_zone, self.fire_scheduled
            )
        except SchedulerResolutionError as e:
            logger.error(f"Rule {rule.id} could not be scheduled: {e}")
            return RuleRegistration(rule=rule, time_zone=time_zone, error=str(e))
        return RuleRegistration(rule=rule, time_zone=time_zone)

    async def resolve_schedule_time_zone(self, rule: AutomationRule) -> str | None:
        """Timezone of a scheduled rule: its own, else its location scope's."""
        if rule.trigger.time_zone:
            return rule.trigger.time_zone
        location = await self._get_location(rule.location_scope_id)
        return location.time_zone if location else None

    # Queries
    def get_registration(self, rule_id: UUID) -> RuleRegistration | None:
        return self._rules.get(rule_id)

    def list_registrations(self) -> list[RuleRegistration]:
        return list(self._rules.values())

    def next_fire_time(self, rule_id: UUID) -> datetime | None:
        return self.scheduler.next_fire_time(rule_id)

    def __len__(self) -> int:
        return len(self._rules)

    # Dispatch
    async def dispatch_event(self, event: StandardizedEvent) -> list[ExecutionOutcome]:
        """Evaluate every registered event rule against an event.

        Rules are processed concurrently; an error in one rule never affects
        the others.

        Args:
            event: Incoming standardized event

        Returns:
            Outcomes of the executions that ran
        """
        snapshot = self._rules
        event_rules = [
            registration.rule
            for registration in snapshot.values()
            if registration.is_active and not registration.rule.is_scheduled
        ]
        if not event_rules:
            return []

        resolved = await self.fact_resolver.resolve(event)
        results = await asyncio.gather(
            *(self._process_event_rule(rule, event, resolved) for rule in event_rules)
        )
        return [outcome for outcome in results if outcome is not None]

    async def _process_event_rule(
        self, rule: AutomationRule, event: StandardizedEvent, resolved: ResolvedFacts
    ) -> ExecutionOutcome | None:
        try:
            if rule.location_scope_id and resolved.location_id != rule.location_scope_id:
                logger.debug(
                    f"Rule {rule.id} scoped to location {rule.location_scope_id}, "
                    f"skipping event from {resolved.location_id}"
                )
                return None

            if not self.evaluator.evaluate(rule.trigger.conditions, resolved.facts):
                return None

            location = await self._event_location(rule, resolved.device_context)
            if not self.time_filter.is_allowed(rule.time_of_day_filter, event.timestamp, location):
                logger.debug(f"Rule {rule.id} matched but is outside its time-of-day filter")
                return None

            temporal_met = None
            if rule.temporal_conditions:
                temporal_met = await self.temporal.check_all(
                    rule.temporal_conditions, event, resolved.device_context
                )
                if not temporal_met:
                    logger.debug(f"Rule {rule.id} matched but temporal conditions not met")
                    return None

            logger.info(f"Rule {rule.id} ({rule.name}) triggered by event {event.event_id}")
            return await self._execute(
                rule,
                resolved.facts,
                trigger_timestamp=event.timestamp,
                event=event,
                device_context=resolved.device_context,
                temporal_met=temporal_met,
            )
        except Exception as e:
            logger.error(
                f"Error processing rule {rule.id} for event {event.event_id}: {e}", exc_info=True
            )
            return None

    async def fire_scheduled(self, rule_id: UUID, fired_at: datetime) -> ExecutionOutcome | None:
        """Run a scheduled rule for one tick.

        Temporal conditions are vacuously true without an anchor event.

        Args:
            rule_id: Rule whose timer fired
            fired_at: Fire instant

        Returns:
            Execution outcome, or None when the rule did not run
        """
        registration = self._rules.get(rule_id)
        if registration is None or not registration.is_active:
            logger.debug(f"Scheduled tick for unregistered or inactive rule {rule_id}, ignoring")
            return None

        rule = registration.rule
        try:
            location = await self._get_location(rule.location_scope_id)
            if not self.time_filter.is_allowed(rule.time_of_day_filter, fired_at, location):
                logger.debug(f"Scheduled rule {rule_id} is outside its time-of-day filter")
                return None

            facts = FactResolver.build_schedule_facts(
                rule.trigger.cron_expression, registration.time_zone, fired_at, location
            )
            logger.info(f"Scheduled rule {rule_id} ({rule.name}) fired at {fired_at.isoformat()}")
            return await self._execute(rule, facts, trigger_timestamp=fired_at, fired_at=fired_at)
        except Exception as e:
            logger.error(f"Error running scheduled rule {rule_id}: {e}", exc_info=True)
            return None

    async def _execute(
        self,
        rule: AutomationRule,
        facts: dict[str, Any],
        trigger_timestamp: datetime,
        event: StandardizedEvent | None = None,
        device_context: DeviceContext | None = None,
        fired_at: datetime | None = None,
        temporal_met: bool | None = None,
    ) -> ExecutionOutcome:
        execution_id = self.audit.start_execution(
            rule.id,
            trigger_timestamp=trigger_timestamp,
            trigger_context=facts,
            total_actions=len(rule.actions),
            trigger_event_id=event.event_id if event else None,
        )
        self.audit.update_condition_results(
            execution_id,
            state_conditions_met=True if event else None,
            temporal_conditions_met=temporal_met,
        )
        context = ExecutionContext(
            rule=rule,
            facts=facts,
            event=event,
            device_context=device_context,
            fired_at=fired_at,
        )
        return await self.pipeline.run(execution_id, context)

    async def _event_location(
        self, rule: AutomationRule, device_context: DeviceContext | None
    ) -> LocationInfo | None:
        if device_context and device_context.location:
            return device_context.location
        return await self._get_location(rule.location_scope_id)

    async def _get_location(self, location_id: str | None) -> LocationInfo | None:
        if not location_id or self.topology is None:
            return None
        try:
            return await self.topology.get_location(location_id)
        except Exception as e:
            logger.error(f"Error fetching location {location_id}: {e}", exc_info=True)
            return None
