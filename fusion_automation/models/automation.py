"""Automation models for rules and execution audit records."""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from fusion_automation.core.db.session import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ExecutionStatus(str, Enum):
    """Aggregate status of an automation execution."""

    RUNNING = "running"  # Provisional, until the pipeline finalizes the record
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class ActionExecutionStatus(str, Enum):
    """Status of a single action within an execution."""

    RUNNING = "running"  # Provisional, until the action completes
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class AutomationRuleRecord(Base):
    """Persisted automation rule definition."""

    __tablename__ = "automation_rules"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False, index=True)
    location_scope_id = Column(String(255), nullable=True, index=True)
    definition = Column(JSONType, nullable=False)  # Validated rule definition
    registration_error = Column(Text, nullable=True)  # Last scheduler resolution error
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    # Relationships
    executions = relationship(
        "AutomationExecution", back_populates="rule", cascade="all, delete-orphan"
    )


class AutomationExecution(Base):
    """One end-to-end run of a rule's actions."""

    __tablename__ = "automation_executions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    rule_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("automation_rules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trigger_timestamp = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    trigger_event_id = Column(Uuid(as_uuid=True), nullable=True)  # Null for scheduled triggers
    trigger_context = Column(JSONType, nullable=True)  # Facts snapshot used for templating
    total_actions = Column(Integer, nullable=False, default=0)
    execution_status = Column(
        String(20), nullable=False, default=ExecutionStatus.RUNNING.value, index=True
    )
    successful_actions = Column(Integer, nullable=False, default=0)
    failed_actions = Column(Integer, nullable=False, default=0)
    state_conditions_met = Column(Boolean, nullable=True)
    temporal_conditions_met = Column(Boolean, nullable=True)
    execution_duration_ms = Column(Integer, nullable=True)

    # Relationships
    rule = relationship("AutomationRuleRecord", back_populates="executions")
    actions = relationship(
        "AutomationActionExecution",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="AutomationActionExecution.action_index",
    )

    __table_args__ = (
        Index("idx_automation_executions_rule_timestamp", "rule_id", "trigger_timestamp"),
        Index("idx_automation_executions_trigger_timestamp", "trigger_timestamp"),
    )

    @property
    def rule_name(self) -> str | None:
        return self.rule.name if self.rule is not None else None


class AutomationActionExecution(Base):
    """Outcome of one action of an execution; retries accumulate on the same row."""

    __tablename__ = "automation_action_executions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    execution_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("automation_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action_index = Column(Integer, nullable=False)
    action_type = Column(String(50), nullable=False)
    action_params = Column(JSONType, nullable=True)  # Params after template resolution
    status = Column(
        String(20), nullable=False, default=ActionExecutionStatus.RUNNING.value
    )
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    execution_duration_ms = Column(Integer, nullable=True)
    result_data = Column(JSONType, nullable=True)
    started_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    execution = relationship("AutomationExecution", back_populates="actions")

    __table_args__ = (
        Index(
            "idx_automation_action_executions_execution_index",
            "execution_id",
            "action_index",
            unique=True,
        ),
    )
