"""Automation schemas: rule definitions, events and audit responses."""

import re
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ConditionOperator = Literal[
    "equal",
    "notEqual",
    "lessThan",
    "lessThanInclusive",
    "greaterThan",
    "greaterThanInclusive",
    "in",
    "notIn",
    "contains",
    "doesNotContain",
]

TemporalConditionType = Literal[
    "eventOccurred",
    "noEventOccurred",
    "eventCountEquals",
    "eventCountLessThan",
    "eventCountGreaterThan",
    "eventCountLessThanOrEqual",
    "eventCountGreaterThanOrEqual",
]

COUNT_TEMPORAL_TYPES = frozenset(
    {
        "eventCountEquals",
        "eventCountLessThan",
        "eventCountGreaterThan",
        "eventCountLessThanOrEqual",
        "eventCountGreaterThanOrEqual",
    }
)

TemporalScoping = Literal["anywhere", "sameArea", "sameLocation"]

_CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Rule tree
# ---------------------------------------------------------------------------


class RuleCondition(BaseModel):
    """Leaf condition comparing one fact against a value."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {"fact": "event.type", "operator": "equal", "value": "DOOR_OPEN"}
        },
    )

    fact: str = Field(..., min_length=1, description="Fact name or dotted fact path")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(None, description="Value to compare against")
    path: str | None = Field(
        None, description="Optional dotted/bracket path into the fact value"
    )


class RuleGroup(BaseModel):
    """Boolean combinator over conditions and nested groups."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "all": [
                    {"fact": "event.type", "operator": "equal", "value": "DOOR_OPEN"},
                    {"fact": "area.armedState", "operator": "equal", "value": "ARMED_AWAY"},
                ]
            }
        },
    )

    all: tuple["RuleNode", ...] | None = Field(None, description="Every child must pass")
    any: tuple["RuleNode", ...] | None = Field(None, description="One child must pass")

    @model_validator(mode="after")
    def check_single_combinator(self) -> "RuleGroup":
        """Exactly one of all/any must be populated with at least one child."""
        if (self.all is None) == (self.any is None):
            raise ValueError("rule group must define exactly one of 'all' or 'any'")
        if not self.children:
            raise ValueError("rule group must contain at least one condition")
        return self

    @property
    def combinator(self) -> str:
        return "all" if self.all is not None else "any"

    @property
    def children(self) -> tuple["RuleNode", ...]:
        return self.all if self.all is not None else (self.any or ())


RuleNode = Union[RuleGroup, RuleCondition]
RuleGroup.model_rebuild()


# ---------------------------------------------------------------------------
# Triggers and conditions
# ---------------------------------------------------------------------------


class EventTrigger(BaseModel):
    """Trigger evaluated against every incoming standardized event."""

    model_config = ConfigDict(frozen=True)

    type: Literal["event"] = "event"
    conditions: RuleGroup = Field(..., description="Conditions over the event facts")


class ScheduledTrigger(BaseModel):
    """Trigger fired by a cron expression in an IANA timezone."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "type": "scheduled",
                "cron_expression": "0 8 * * MON-FRI",
                "time_zone": "America/New_York",
            }
        },
    )

    type: Literal["scheduled"] = "scheduled"
    cron_expression: str = Field(..., min_length=1, description="Five-field cron expression")
    time_zone: str | None = Field(None, description="IANA timezone name")


Trigger = Annotated[Union[EventTrigger, ScheduledTrigger], Field(discriminator="type")]


class TemporalCondition(BaseModel):
    """Predicate over historical events around the trigger instant."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: TemporalConditionType
    expected_event_count: int | None = Field(None, ge=0)
    scoping: TemporalScoping = "anywhere"
    event_filter: RuleGroup
    time_window_seconds_before: int | None = Field(None, ge=0)
    time_window_seconds_after: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def check_expected_count(self) -> "TemporalCondition":
        """Count-based types need expected_event_count; other types must not set it."""
        is_count_type = self.type in COUNT_TEMPORAL_TYPES
        if is_count_type and self.expected_event_count is None:
            raise ValueError(f"{self.type} requires expected_event_count")
        if not is_count_type and self.expected_event_count is not None:
            raise ValueError(f"{self.type} does not accept expected_event_count")
        return self


class TimeOfDayFilter(BaseModel):
    """Restricts rule execution to a time range of the local day."""

    model_config = ConfigDict(frozen=True)

    type: Literal["any_time", "specific_times", "during_day", "at_night"] = "any_time"
    start_time: str | None = Field(None, description="HH:MM (specific_times)")
    end_time: str | None = Field(None, description="HH:MM (specific_times)")
    sunrise_offset_minutes: int = Field(0, ge=-720, le=720)
    sunset_offset_minutes: int = Field(0, ge=-720, le=720)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_clock(cls, value: str | None) -> str | None:
        if value is not None and not _CLOCK_PATTERN.match(value):
            raise ValueError("time must use HH:MM 24-hour format")
        return value


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class CreateEventParams(BaseModel):
    """Create an event in the video management system."""

    source_template: str = Field(..., min_length=1)
    caption_template: str = Field(..., min_length=1)
    description_template: str = Field(..., min_length=1)
    target_connector_id: str = Field(..., min_length=1)


class CreateBookmarkParams(BaseModel):
    """Bookmark footage on every camera associated with the source device."""

    name_template: str = Field(..., min_length=1)
    description_template: str | None = None
    duration_ms_template: str = "5000"
    tags_template: str | None = None
    target_connector_id: str = Field(..., min_length=1)


class HttpHeader(BaseModel):
    """A templated HTTP header."""

    key_template: str
    value_template: str = ""


class SendHttpRequestParams(BaseModel):
    """Send an outbound HTTP request."""

    url_template: str = Field(..., min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    headers: list[HttpHeader] = Field(default_factory=list)
    body_template: str | None = None


class SetDeviceStateParams(BaseModel):
    """Switch a device on or off."""

    target_device_internal_id: str = Field(..., min_length=1)
    target_state: Literal["SET_ON", "SET_OFF"]


class SendPushNotificationParams(BaseModel):
    """Send a Pushover push notification."""

    title_template: str | None = None
    message_template: str = Field(..., min_length=1)
    target_user_key_template: str | None = None
    priority: int = Field(0, ge=-2, le=2)


class ArmAreaParams(BaseModel):
    """Arm one or more alarm areas."""

    scoping: Literal["SPECIFIC_AREAS", "ALL_AREAS_IN_SCOPE"]
    target_area_ids: list[str] = Field(default_factory=list)
    arm_mode: Literal["ARMED_AWAY", "ARMED_STAY"] = "ARMED_AWAY"


class DisarmAreaParams(BaseModel):
    """Disarm one or more alarm areas."""

    scoping: Literal["SPECIFIC_AREAS", "ALL_AREAS_IN_SCOPE"]
    target_area_ids: list[str] = Field(default_factory=list)


class CreateEventAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["createEvent"] = "createEvent"
    params: CreateEventParams


class CreateBookmarkAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["createBookmark"] = "createBookmark"
    params: CreateBookmarkParams


class SendHttpRequestAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["sendHttpRequest"] = "sendHttpRequest"
    params: SendHttpRequestParams


class SetDeviceStateAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["setDeviceState"] = "setDeviceState"
    params: SetDeviceStateParams


class SendPushNotificationAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["sendPushNotification"] = "sendPushNotification"
    params: SendPushNotificationParams


class ArmAreaAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["armArea"] = "armArea"
    params: ArmAreaParams


class DisarmAreaAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["disarmArea"] = "disarmArea"
    params: DisarmAreaParams


Action = Annotated[
    Union[
        CreateEventAction,
        CreateBookmarkAction,
        SendHttpRequestAction,
        SetDeviceStateAction,
        SendPushNotificationAction,
        ArmAreaAction,
        DisarmAreaAction,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES = (
    "createEvent",
    "createBookmark",
    "sendHttpRequest",
    "setDeviceState",
    "sendPushNotification",
    "armArea",
    "disarmArea",
)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class RuleDefinition(BaseModel):
    """Everything that defines a rule's behaviour, without its identity."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=255)
    enabled: bool = True
    trigger: Trigger
    temporal_conditions: tuple[TemporalCondition, ...] = ()
    time_of_day_filter: TimeOfDayFilter | None = None
    actions: tuple[Action, ...] = Field(..., min_length=1)
    location_scope_id: str | None = None

    @model_validator(mode="after")
    def check_schedule_timezone(self) -> "RuleDefinition":
        """A scheduled rule needs a timezone, explicit or via its location scope."""
        if (
            isinstance(self.trigger, ScheduledTrigger)
            and not self.trigger.time_zone
            and not self.location_scope_id
        ):
            raise ValueError(
                "scheduled trigger requires time_zone when no location_scope_id is set"
            )
        return self

    @property
    def is_scheduled(self) -> bool:
        return isinstance(self.trigger, ScheduledTrigger)


class AutomationRule(RuleDefinition):
    """A rule definition bound to its identity, as held by the registry."""

    id: UUID = Field(default_factory=uuid4)

    def definition(self) -> dict[str, Any]:
        """Serialize the behaviour-defining fields for storage."""
        return self.model_dump(mode="json", exclude={"id"})


class RuleCreate(RuleDefinition):
    """Schema for creating a rule."""

    description: str | None = Field(None, description="Rule description")


class RuleUpdate(RuleCreate):
    """Schema for replacing a rule definition."""

    pass


class RuleResponse(BaseModel):
    """Schema for rule response."""

    id: UUID
    name: str
    description: str | None
    enabled: bool
    location_scope_id: str | None
    definition: dict[str, Any]
    registered: bool = False
    registration_error: str | None = None
    next_fire_time: datetime | None = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class StandardizedEvent(BaseModel):
    """Vendor-neutral event delivered to the dispatch entry point."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "device_id": "front-door-sensor",
                "connector_id": "c-1",
                "timestamp": "2025-01-15T10:00:00Z",
                "category": "DEVICE_STATE",
                "type": "STATE_CHANGED",
                "subtype": None,
                "payload": {"displayState": "Open"},
            }
        },
    )

    event_id: UUID = Field(default_factory=uuid4)
    device_id: str = Field(..., min_length=1, description="External device identifier")
    connector_id: str | None = None
    timestamp: datetime
    category: str
    type: str
    subtype: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, value: datetime) -> datetime:
        """Naive timestamps are interpreted as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Audit responses
# ---------------------------------------------------------------------------


class ExecutionSummary(BaseModel):
    """One execution as shown in execution lists."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    rule_id: UUID
    rule_name: str | None = None
    trigger_timestamp: datetime
    trigger_event_id: UUID | None = None
    execution_status: str
    execution_duration_ms: int | None = None
    total_actions: int
    successful_actions: int
    failed_actions: int
    state_conditions_met: bool | None = None
    temporal_conditions_met: bool | None = None


class ActionExecutionDetail(BaseModel):
    """One action row of an execution."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action_index: int
    action_type: str
    action_params: dict[str, Any] | None = None
    status: str
    error_message: str | None = None
    retry_count: int
    execution_duration_ms: int | None = None
    result_data: dict[str, Any] | None = None
    started_at: datetime
    completed_at: datetime | None = None


class ExecutionDetail(ExecutionSummary):
    """Execution summary with trigger context and action rows."""

    trigger_context: dict[str, Any] | None = None
    actions: list[ActionExecutionDetail] = Field(default_factory=list)


class ExecutionStats(BaseModel):
    """Aggregate execution statistics."""

    total_executions: int = 0
    successful_executions: int = 0
    partial_failure_executions: int = 0
    failed_executions: int = 0
    average_execution_time_ms: int | None = None
    total_actions: int = 0
    successful_actions: int = 0
    failed_actions: int = 0


class ExecutionOutcomeResponse(BaseModel):
    """Outcome of one execution produced by a dispatch."""

    execution_id: UUID | None
    rule_id: UUID
    status: str
    total_actions: int
    successful_actions: int
    failed_actions: int
    duration_ms: int


class DispatchResponse(BaseModel):
    """Result of dispatching one event."""

    event_id: UUID
    executions: list[ExecutionOutcomeResponse]
