"""Pydantic schemas for API requests and responses."""

from fusion_automation.schemas.automation import (
    Action,
    AutomationRule,
    DispatchResponse,
    EventTrigger,
    ExecutionDetail,
    ExecutionStats,
    ExecutionSummary,
    RuleCondition,
    RuleCreate,
    RuleGroup,
    RuleResponse,
    RuleUpdate,
    ScheduledTrigger,
    StandardizedEvent,
    TemporalCondition,
    TimeOfDayFilter,
)
from fusion_automation.schemas.common import (
    ErrorDetail,
    ErrorResponse,
    PaginationMeta,
    StandardListResponse,
    StandardResponse,
)
