"""Read side of the execution audit trail."""

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from fusion_automation.repositories.automation_repository import AutomationRepository
from fusion_automation.schemas.automation import (
    ExecutionDetail,
    ExecutionStats,
    ExecutionSummary,
)


class AutomationAuditQueryService:
    """Queries over executions and their action rows."""

    def __init__(self, db: Session):
        """Initialize audit query service.

        Args:
            db: Database session
        """
        self.db = db
        self.repository = AutomationRepository(db)

    def get_recent_executions(
        self, limit: int = 50, offset: int = 0, rule_id: UUID | None = None
    ) -> list[ExecutionSummary]:
        """Get executions newest first, with their rule name."""
        executions = self.repository.get_recent_executions(limit, offset, rule_id)
        return [ExecutionSummary.model_validate(execution) for execution in executions]

    def get_execution_detail(self, execution_id: UUID) -> ExecutionDetail | None:
        """Get one execution with trigger context and action rows ordered by index."""
        execution = self.repository.get_execution_by_id(execution_id)
        if execution is None:
            return None
        return ExecutionDetail.model_validate(execution)

    def get_execution_summary(self, execution_id: UUID) -> ExecutionDetail | None:
        return self.get_execution_detail(execution_id)

    def get_execution_count(self, rule_id: UUID | None = None) -> int:
        return self.repository.count_executions(rule_id)

    def get_execution_stats(
        self,
        rule_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
    ) -> ExecutionStats:
        """Aggregate statistics over executions matching the filters.

        Args:
            rule_id: Restrict to one rule
            start: Earliest trigger timestamp (inclusive)
            end: Latest trigger timestamp (inclusive)
            status: Restrict to one execution status

        Returns:
            ExecutionStats with per-status totals, average duration and action totals
        """
        row = self.repository.get_execution_stats(rule_id, start, end, status)
        average = row.get("average_execution_time_ms")
        return ExecutionStats(
            total_executions=row.get("total_executions") or 0,
            successful_executions=row.get("successful_executions") or 0,
            partial_failure_executions=row.get("partial_failure_executions") or 0,
            failed_executions=row.get("failed_executions") or 0,
            average_execution_time_ms=round(float(average)) if average is not None else None,
            total_actions=row.get("total_actions") or 0,
            successful_actions=row.get("successful_actions") or 0,
            failed_actions=row.get("failed_actions") or 0,
        )

    def get_last_run_summary(self) -> dict[UUID, ExecutionSummary]:
        """Get the latest execution of every rule, keyed by rule ID."""
        return {
            execution.rule_id: ExecutionSummary.model_validate(execution)
            for execution in self.repository.get_latest_execution_per_rule()
        }
