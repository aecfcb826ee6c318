"""Automation repository for data access operations."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session, joinedload

from fusion_automation.models.automation import (
    AutomationActionExecution,
    AutomationExecution,
    AutomationRuleRecord,
    ExecutionStatus,
)


class AutomationRepository:
    """Repository for automation data access."""

    def __init__(self, db: Session):
        """Initialize repository with database session."""
        self.db = db

    # Rule operations
    def create_rule(self, rule_data: dict) -> AutomationRuleRecord:
        """Create a new rule."""
        rule = AutomationRuleRecord(**rule_data)
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def get_rule_by_id(self, rule_id: UUID) -> AutomationRuleRecord | None:
        """Get rule by ID."""
        return (
            self.db.query(AutomationRuleRecord)
            .filter(AutomationRuleRecord.id == rule_id)
            .first()
        )

    def get_all_rules(
        self,
        enabled_only: bool = False,
        skip: int = 0,
        limit: int | None = 100,
    ) -> list[AutomationRuleRecord]:
        """Get all rules with pagination."""
        query = self.db.query(AutomationRuleRecord)
        if enabled_only:
            query = query.filter(AutomationRuleRecord.enabled.is_(True))
        query = query.order_by(AutomationRuleRecord.created_at).offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count_all_rules(self, enabled_only: bool = False) -> int:
        """Count all rules."""
        query = self.db.query(func.count(AutomationRuleRecord.id))
        if enabled_only:
            query = query.filter(AutomationRuleRecord.enabled.is_(True))
        return query.scalar() or 0

    def update_rule(self, rule_id: UUID, rule_data: dict) -> AutomationRuleRecord | None:
        """Update a rule."""
        rule = self.get_rule_by_id(rule_id)
        if not rule:
            return None
        for key, value in rule_data.items():
            setattr(rule, key, value)
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_rule(self, rule_id: UUID) -> bool:
        """Delete a rule."""
        rule = self.get_rule_by_id(rule_id)
        if not rule:
            return False
        self.db.delete(rule)
        self.db.commit()
        return True

    # AutomationExecution operations
    def create_execution(self, execution_data: dict) -> AutomationExecution:
        """Create a new automation execution record."""
        execution = AutomationExecution(**execution_data)
        self.db.add(execution)
        self.db.commit()
        self.db.refresh(execution)
        return execution

    def update_execution(
        self, execution_id: UUID, execution_data: dict
    ) -> AutomationExecution | None:
        """Update fields of an execution record."""
        execution = self.db.get(AutomationExecution, execution_id)
        if not execution:
            return None
        for key, value in execution_data.items():
            setattr(execution, key, value)
        self.db.commit()
        return execution

    def get_execution_by_id(self, execution_id: UUID) -> AutomationExecution | None:
        """Get execution by ID with its rule and action rows loaded."""
        return (
            self.db.query(AutomationExecution)
            .options(
                joinedload(AutomationExecution.rule),
                joinedload(AutomationExecution.actions),
            )
            .filter(AutomationExecution.id == execution_id)
            .first()
        )

    def get_recent_executions(
        self,
        limit: int = 50,
        offset: int = 0,
        rule_id: UUID | None = None,
    ) -> list[AutomationExecution]:
        """Get executions ordered by trigger time, newest first."""
        query = self.db.query(AutomationExecution).options(
            joinedload(AutomationExecution.rule)
        )
        if rule_id:
            query = query.filter(AutomationExecution.rule_id == rule_id)
        return (
            query.order_by(AutomationExecution.trigger_timestamp.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_executions(self, rule_id: UUID | None = None) -> int:
        """Count executions, optionally for one rule."""
        query = self.db.query(func.count(AutomationExecution.id))
        if rule_id:
            query = query.filter(AutomationExecution.rule_id == rule_id)
        return query.scalar() or 0

    def get_latest_execution_per_rule(self) -> list[AutomationExecution]:
        """Get the most recent execution of every rule."""
        latest = (
            self.db.query(
                AutomationExecution.rule_id.label("rule_id"),
                func.max(AutomationExecution.trigger_timestamp).label("max_timestamp"),
            )
            .group_by(AutomationExecution.rule_id)
            .subquery()
        )
        return (
            self.db.query(AutomationExecution)
            .options(joinedload(AutomationExecution.rule))
            .join(
                latest,
                (AutomationExecution.rule_id == latest.c.rule_id)
                & (AutomationExecution.trigger_timestamp == latest.c.max_timestamp),
            )
            .all()
        )

    def get_execution_stats(
        self,
        rule_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        """Aggregate execution counters with optional filters."""

        def count_status(value: ExecutionStatus):
            return func.sum(
                case((AutomationExecution.execution_status == value.value, 1), else_=0)
            )

        query = self.db.query(
            func.count(AutomationExecution.id).label("total_executions"),
            count_status(ExecutionStatus.SUCCESS).label("successful_executions"),
            count_status(ExecutionStatus.PARTIAL_FAILURE).label("partial_failure_executions"),
            count_status(ExecutionStatus.FAILURE).label("failed_executions"),
            func.avg(AutomationExecution.execution_duration_ms).label(
                "average_execution_time_ms"
            ),
            func.sum(AutomationExecution.total_actions).label("total_actions"),
            func.sum(AutomationExecution.successful_actions).label("successful_actions"),
            func.sum(AutomationExecution.failed_actions).label("failed_actions"),
        )
        if rule_id:
            query = query.filter(AutomationExecution.rule_id == rule_id)
        if start:
            query = query.filter(AutomationExecution.trigger_timestamp >= start)
        if end:
            query = query.filter(AutomationExecution.trigger_timestamp <= end)
        if status:
            query = query.filter(AutomationExecution.execution_status == status)
        return dict(query.one()._mapping)

    # AutomationActionExecution operations
    def create_action_execution(self, action_data: dict) -> AutomationActionExecution:
        """Create a new action execution record."""
        action_execution = AutomationActionExecution(**action_data)
        self.db.add(action_execution)
        self.db.commit()
        self.db.refresh(action_execution)
        return action_execution

    def update_action_execution(
        self, action_execution_id: UUID, action_data: dict
    ) -> AutomationActionExecution | None:
        """Update fields of an action execution record."""
        action_execution = self.db.get(AutomationActionExecution, action_execution_id)
        if not action_execution:
            return None
        for key, value in action_data.items():
            setattr(action_execution, key, value)
        self.db.commit()
        return action_execution
