"""Automation router for rule management, event dispatch and execution history."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.orm import Session

from fusion_automation.core.automation.audit_query import AutomationAuditQueryService
from fusion_automation.core.automation.engine import AutomationEngine
from fusion_automation.core.automation.service import AutomationService
from fusion_automation.core.db.deps import get_db
from fusion_automation.core.exceptions import raise_not_found
from fusion_automation.models.automation import AutomationRuleRecord
from fusion_automation.schemas.automation import (
    DispatchResponse,
    ExecutionDetail,
    ExecutionOutcomeResponse,
    ExecutionStats,
    ExecutionSummary,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
    StandardizedEvent,
)
from fusion_automation.schemas.common import (
    ErrorResponse,
    StandardListResponse,
    StandardResponse,
)

router = APIRouter()

RULE_BODY_EXAMPLE = {
    "name": "Door opened while armed",
    "description": "Notify when the front door opens in an armed area",
    "trigger": {
        "type": "event",
        "conditions": {
            "all": [
                {"fact": "event.type", "operator": "equal", "value": "STATE_CHANGED"},
                {"fact": "event.displayState", "operator": "equal", "value": "Open"},
                {"fact": "area.armedState", "operator": "equal", "value": "ARMED_AWAY"},
            ]
        },
    },
    "actions": [
        {
            "type": "sendPushNotification",
            "params": {"message_template": "{{ device.name }} opened", "priority": 1},
        }
    ],
}


def get_automation_service(db: Annotated[Session, Depends(get_db)]) -> AutomationService:
    """Dependency to get AutomationService."""
    return AutomationService(db)


def get_audit_query_service(
    db: Annotated[Session, Depends(get_db)],
) -> AutomationAuditQueryService:
    """Dependency to get AutomationAuditQueryService."""
    return AutomationAuditQueryService(db)


def get_automation_engine(request: Request) -> AutomationEngine:
    """Dependency to get the AutomationEngine created at startup."""
    return request.app.state.automation_engine


def _rule_response(record: AutomationRuleRecord, engine: AutomationEngine) -> RuleResponse:
    registration = engine.registry.get_registration(record.id)
    return RuleResponse(
        id=record.id,
        name=record.name,
        description=record.description,
        enabled=record.enabled,
        location_scope_id=record.location_scope_id,
        definition=record.definition,
        registered=registration is not None and registration.is_active,
        registration_error=record.registration_error,
        next_fire_time=engine.registry.next_fire_time(record.id),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
}


def _page_meta(total: int, page: int, page_size: int) -> dict[str, int]:
    total_pages = (total + page_size - 1) // page_size if total > 0 else 0
    return {"total": total, "page": page, "page_size": page_size, "total_pages": total_pages}


@router.post(
    "/rules",
    response_model=StandardResponse[RuleResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create automation rule",
    description="Validate, persist and register a new automation rule.",
    responses=ERROR_RESPONSES,
)
async def create_rule(
    rule_data: Annotated[RuleCreate, Body(examples=[RULE_BODY_EXAMPLE])],
    service: Annotated[AutomationService, Depends(get_automation_service)],
    engine: Annotated[AutomationEngine, Depends(get_automation_engine)],
) -> StandardResponse[RuleResponse]:
    """Create a new automation rule."""
    record, rule = service.create_rule(
        rule_data.model_dump(mode="json", exclude={"description"}),
        description=rule_data.description,
    )
    await engine.register_rule(rule)
    service.db.refresh(record)
    return StandardResponse(data=_rule_response(record, engine))


@router.get(
    "/rules",
    response_model=StandardListResponse[RuleResponse],
    status_code=status.HTTP_200_OK,
    summary="List automation rules",
    description="List persisted automation rules with their registration state.",
)
async def list_rules(
    service: Annotated[AutomationService, Depends(get_automation_service)],
    engine: Annotated[AutomationEngine, Depends(get_automation_engine)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Page size"),
    enabled_only: bool = Query(default=False, description="Only return enabled rules"),
) -> StandardListResponse[RuleResponse]:
    """List all automation rules."""
    skip = (page - 1) * page_size
    rules = service.get_all_rules(enabled_only=enabled_only, skip=skip, limit=page_size)
    total = service.count_rules(enabled_only=enabled_only)

    return StandardListResponse(
        data=[_rule_response(rule, engine) for rule in rules],
        meta=_page_meta(total, page, page_size),
    )


@router.get(
    "/rules/{rule_id}",
    response_model=StandardResponse[RuleResponse],
    status_code=status.HTTP_200_OK,
    summary="Get automation rule",
    description="Get a specific automation rule by ID.",
    responses=ERROR_RESPONSES,
)
async def get_rule(
    rule_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
    engine: Annotated[AutomationEngine, Depends(get_automation_engine)],
) -> StandardResponse[RuleResponse]:
    """Get a specific automation rule."""
    record = service.get_rule(rule_id)
    if not record:
        raise_not_found("Automation rule", str(rule_id))

    return StandardResponse(data=_rule_response(record, engine))


@router.put(
    "/rules/{rule_id}",
    response_model=StandardResponse[RuleResponse],
    status_code=status.HTTP_200_OK,
    summary="Update automation rule",
    description="Replace a rule definition and re-register it atomically.",
    responses=ERROR_RESPONSES,
)
async def update_rule(
    rule_id: UUID,
    rule_data: Annotated[RuleUpdate, Body(examples=[RULE_BODY_EXAMPLE])],
    service: Annotated[AutomationService, Depends(get_automation_service)],
    engine: Annotated[AutomationEngine, Depends(get_automation_engine)],
) -> StandardResponse[RuleResponse]:
    """Update an automation rule."""
    result = service.update_rule(
        rule_id,
        rule_data.model_dump(mode="json", exclude={"description"}),
        description=rule_data.description,
    )
    if result is None:
        raise_not_found("Automation rule", str(rule_id))

    record, rule = result
    await engine.register_rule(rule)
    service.db.refresh(record)
    return StandardResponse(data=_rule_response(record, engine))


@router.delete(
    "/rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete automation rule",
    description="Unregister and delete an automation rule and its execution history.",
    responses=ERROR_RESPONSES,
)
async def delete_rule(
    rule_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
    engine: Annotated[AutomationEngine, Depends(get_automation_engine)],
) -> None:
    """Delete an automation rule."""
    if service.get_rule(rule_id) is None:
        raise_not_found("Automation rule", str(rule_id))

    await engine.unregister_rule(rule_id)
    service.delete_rule(rule_id)


@router.post(
    "/events",
    response_model=StandardResponse[DispatchResponse],
    status_code=status.HTTP_200_OK,
    summary="Dispatch event",
    description="Evaluate every registered event rule against a standardized event.",
)
async def dispatch_event(
    event: StandardizedEvent,
    engine: Annotated[AutomationEngine, Depends(get_automation_engine)],
) -> StandardResponse[DispatchResponse]:
    """Dispatch a standardized event to the automation engine."""
    outcomes = await engine.dispatch_event(event)
    return StandardResponse(
        data=DispatchResponse(
            event_id=event.event_id,
            executions=[
                ExecutionOutcomeResponse(
                    execution_id=outcome.execution_id,
                    rule_id=outcome.rule_id,
                    status=outcome.status.value,
                    total_actions=outcome.total_actions,
                    successful_actions=outcome.successful_actions,
                    failed_actions=outcome.failed_actions,
                    duration_ms=outcome.duration_ms,
                )
                for outcome in outcomes
            ],
        )
    )


@router.get(
    "/executions",
    response_model=StandardListResponse[ExecutionSummary],
    status_code=status.HTTP_200_OK,
    summary="List executions",
    description="Recent executions, newest first.",
)
async def list_executions(
    audit: Annotated[AutomationAuditQueryService, Depends(get_audit_query_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Page size"),
    rule_id: UUID | None = Query(default=None, description="Only executions of this rule"),
) -> StandardListResponse[ExecutionSummary]:
    """List recent executions."""
    executions = audit.get_recent_executions(
        limit=page_size, offset=(page - 1) * page_size, rule_id=rule_id
    )
    total = audit.get_execution_count(rule_id)
    return StandardListResponse(data=executions, meta=_page_meta(total, page, page_size))


@router.get(
    "/executions/stats",
    response_model=StandardResponse[ExecutionStats],
    status_code=status.HTTP_200_OK,
    summary="Execution statistics",
    description="Aggregate execution statistics with optional filters.",
)
async def get_execution_stats(
    audit: Annotated[AutomationAuditQueryService, Depends(get_audit_query_service)],
    rule_id: UUID | None = Query(default=None, description="Only executions of this rule"),
    start: datetime | None = Query(default=None, description="Earliest trigger timestamp"),
    end: datetime | None = Query(default=None, description="Latest trigger timestamp"),
    execution_status: str | None = Query(
        default=None, alias="status", description="Only executions with this status"
    ),
) -> StandardResponse[ExecutionStats]:
    """Get aggregate execution statistics."""
    stats = audit.get_execution_stats(rule_id=rule_id, start=start, end=end, status=execution_status)
    return StandardResponse(data=stats)


@router.get(
    "/executions/{execution_id}",
    response_model=StandardResponse[ExecutionDetail],
    status_code=status.HTTP_200_OK,
    summary="Get execution",
    description="Execution summary with trigger context and action rows.",
    responses=ERROR_RESPONSES,
)
async def get_execution(
    execution_id: UUID,
    audit: Annotated[AutomationAuditQueryService, Depends(get_audit_query_service)],
) -> StandardResponse[ExecutionDetail]:
    """Get one execution with its action rows."""
    detail = audit.get_execution_summary(execution_id)
    if detail is None:
        raise_not_found("Execution", str(execution_id))
    return StandardResponse(data=detail)
