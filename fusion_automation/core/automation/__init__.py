"""Automation module: rule engine and execution audit."""

from fusion_automation.core.automation.action_executor import ActionExecutor
from fusion_automation.core.automation.audit import ExecutionAuditService
from fusion_automation.core.automation.audit_query import AutomationAuditQueryService
from fusion_automation.core.automation.condition_evaluator import ConditionEvaluator
from fusion_automation.core.automation.engine import AutomationEngine
from fusion_automation.core.automation.facts import FactResolver
from fusion_automation.core.automation.pipeline import ActionPipeline
from fusion_automation.core.automation.registry import TriggerRegistry
from fusion_automation.core.automation.rule_parser import RuleParser
from fusion_automation.core.automation.scheduler import CronScheduler
from fusion_automation.core.automation.service import AutomationService
from fusion_automation.core.automation.temporal import TemporalWindowService

__all__ = [
    "ActionExecutor",
    "ActionPipeline",
    "AutomationAuditQueryService",
    "AutomationEngine",
    "AutomationService",
    "ConditionEvaluator",
    "CronScheduler",
    "ExecutionAuditService",
    "FactResolver",
    "RuleParser",
    "TemporalWindowService",
    "TriggerRegistry",
]
