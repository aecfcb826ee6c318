"""Create automation tables: automation_rules, automation_executions, automation_action_executions

Revision ID: create_automation_tables
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "create_automation_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create automation_rules table
    op.create_table(
        "automation_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("location_scope_id", sa.String(length=255), nullable=True),
        sa.Column("definition", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("registration_error", sa.Text(), nullable=True),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_automation_rules_enabled", "automation_rules", ["enabled"], unique=False)
    op.create_index(
        "ix_automation_rules_location_scope_id", "automation_rules", ["location_scope_id"], unique=False
    )

    # Create automation_executions table
    op.create_table(
        "automation_executions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("trigger_timestamp", postgresql.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("trigger_event_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("trigger_context", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("total_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("execution_status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("successful_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("state_conditions_met", sa.Boolean(), nullable=True),
        sa.Column("temporal_conditions_met", sa.Boolean(), nullable=True),
        sa.Column("execution_duration_ms", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["rule_id"], ["automation_rules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_automation_executions_rule_id", "automation_executions", ["rule_id"], unique=False)
    op.create_index(
        "ix_automation_executions_execution_status", "automation_executions", ["execution_status"], unique=False
    )
    op.create_index(
        "idx_automation_executions_rule_timestamp",
        "automation_executions",
        ["rule_id", "trigger_timestamp"],
        unique=False,
    )
    op.create_index(
        "idx_automation_executions_trigger_timestamp", "automation_executions", ["trigger_timestamp"], unique=False
    )

    # Create automation_action_executions table
    op.create_table(
        "automation_action_executions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("execution_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action_index", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("action_params", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("execution_duration_ms", sa.Integer(), nullable=True),
        sa.Column("result_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("started_at", postgresql.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("completed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["execution_id"], ["automation_executions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_action_executions_execution_id",
        "automation_action_executions",
        ["execution_id"],
        unique=False,
    )
    op.create_index(
        "idx_automation_action_executions_execution_index",
        "automation_action_executions",
        ["execution_id", "action_index"],
        unique=True,
    )


def downgrade() -> None:
    # Drop indexes
    op.drop_index("idx_automation_action_executions_execution_index", table_name="automation_action_executions")
    op.drop_index("ix_automation_action_executions_execution_id", table_name="automation_action_executions")
    op.drop_index("idx_automation_executions_trigger_timestamp", table_name="automation_executions")
    op.drop_index("idx_automation_executions_rule_timestamp", table_name="automation_executions")
    op.drop_index("ix_automation_executions_execution_status", table_name="automation_executions")
    op.drop_index("ix_automation_executions_rule_id", table_name="automation_executions")
    op.drop_index("ix_automation_rules_location_scope_id", table_name="automation_rules")
    op.drop_index("ix_automation_rules_enabled", table_name="automation_rules")

    # Drop tables
    op.drop_table("automation_action_executions")
    op.drop_table("automation_executions")
    op.drop_table("automation_rules")
