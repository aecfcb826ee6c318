"""Automation engine: wires the registry, pipeline, audit and stores together."""

import logging
from collections.abc import Callable
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fusion_automation.core.automation.action_executor import build_default_executors
from fusion_automation.core.automation.audit import ExecutionAuditService
from fusion_automation.core.automation.condition_evaluator import ConditionEvaluator
from fusion_automation.core.automation.facts import FactResolver, TopologyStore
from fusion_automation.core.automation.gateways import AreaGateway, DeviceGateway, VideoGateway
from fusion_automation.core.automation.pipeline import ActionPipeline, ExecutionOutcome
from fusion_automation.core.automation.registry import RuleRegistration, TriggerRegistry
from fusion_automation.core.automation.retry import RetryPolicy
from fusion_automation.core.automation.scheduler import CronScheduler
from fusion_automation.core.automation.service import AutomationService
from fusion_automation.core.automation.stores import (
    InMemoryEventHistoryStore,
    InMemoryTopologyStore,
)
from fusion_automation.core.automation.temporal import EventHistoryStore, TemporalWindowService
from fusion_automation.core.automation.time_filter import TimeOfDayEvaluator
from fusion_automation.core.config_file import Settings, get_settings
from fusion_automation.core.db.session import SessionLocal
from fusion_automation.schemas.automation import AutomationRule, StandardizedEvent

logger = logging.getLogger(__name__)


class AutomationEngine:
    """Engine owning one trigger registry and its collaborators."""

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        topology: TopologyStore | None = None,
        history_store: EventHistoryStore | None = None,
        device_gateway: DeviceGateway | None = None,
        video_gateway: VideoGateway | None = None,
        scheduler: CronScheduler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize automation engine.

        Args:
            settings: Application settings
            session_factory: Factory returning a new database session
            topology: Topology store (in-memory store if not provided)
            history_store: Event-history store (in-memory store if not provided)
            device_gateway: Gateway for device state actions
            video_gateway: Gateway for event and bookmark actions
            scheduler: Cron scheduler (created if not provided)
            transport: Optional httpx transport for HTTP-based actions
        """
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.topology = topology or InMemoryTopologyStore()
        self.history_store = history_store or InMemoryEventHistoryStore(
            self.settings.AUTOMATION_HISTORY_MAX_EVENTS
        )

        evaluator = ConditionEvaluator()
        area_gateway = self.topology if isinstance(self.topology, AreaGateway) else None
        executors = build_default_executors(
            self.settings,
            area_gateway=area_gateway,
            device_gateway=device_gateway,
            video_gateway=video_gateway,
            transport=transport,
        )

        self.audit = ExecutionAuditService(session_factory)
        self.pipeline = ActionPipeline(
            executors,
            self.audit,
            retry_policy=RetryPolicy.from_settings(self.settings),
            action_timeout=self.settings.AUTOMATION_ACTION_TIMEOUT,
        )
        self.temporal = TemporalWindowService(
            self.history_store,
            topology=self.topology,
            evaluator=evaluator,
            query_timeout=self.settings.AUTOMATION_HISTORY_QUERY_TIMEOUT,
        )
        self.registry = TriggerRegistry(
            pipeline=self.pipeline,
            audit=self.audit,
            temporal=self.temporal,
            scheduler=scheduler,
            topology=self.topology,
            fact_resolver=FactResolver(self.topology),
            evaluator=evaluator,
            time_filter=TimeOfDayEvaluator(
                default_time_zone=self.settings.AUTOMATION_DEFAULT_TIMEZONE,
                sun_times_max_age_days=self.settings.AUTOMATION_SUN_TIMES_MAX_AGE_DAYS,
            ),
        )

    async def start(self) -> None:
        """Start the registry and register every enabled persisted rule."""
        db = self.session_factory()
        try:
            rules = AutomationService(db).load_enabled_rules()
        finally:
            db.close()

        await self.registry.init()
        for rule in rules:
            await self.register_rule(rule)
        logger.info(f"Automation engine started with {len(self.registry)} registered rule(s)")

    async def stop(self) -> None:
        await self.registry.shutdown()
        logger.info("Automation engine stopped")

    async def register_rule(self, rule: AutomationRule) -> RuleRegistration | None:
        """Register a rule and persist its registration state."""
        registration = await self.registry.register_rule(rule)
        self._record_registration_state(rule, registration.error if registration else None)
        return registration

    async def unregister_rule(self, rule_id: UUID) -> bool:
        return await self.registry.unregister_rule(rule_id)

    async def dispatch_event(self, event: StandardizedEvent) -> list[ExecutionOutcome]:
        """Dispatch an event, then append it to the in-memory history."""
        outcomes = await self.registry.dispatch_event(event)
        if isinstance(self.history_store, InMemoryEventHistoryStore):
            self.history_store.add_event(event)
        return outcomes

    def _record_registration_state(self, rule: AutomationRule, error: str | None) -> None:
        db = self.session_factory()
        try:
            AutomationService(db).record_registration_state(rule.id, error)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not persist registration state of rule {rule.id}: {e}")
        finally:
            db.close()
