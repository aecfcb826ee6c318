"""Execution audit service: durable record of executions and action outcomes."""

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fusion_automation.core.automation.errors import AuditWriteError
from fusion_automation.core.db.session import SessionLocal
from fusion_automation.core.logging import get_logger, log_audit_write_failure
from fusion_automation.models.automation import ActionExecutionStatus, ExecutionStatus
from fusion_automation.repositories.automation_repository import AutomationRepository

logger = get_logger(__name__)


def json_safe(value: Any) -> Any:
    """Convert a structure to plain JSON types (datetimes and UUIDs become strings)."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


class ExecutionAuditService:
    """Records the execution and per-action lifecycle.

    Every write opens its own short-lived session. Write failures are logged
    on the audit logger and never propagated to the caller.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        """Initialize audit service.

        Args:
            session_factory: Factory returning a new database session
        """
        self.session_factory = session_factory

    def _write(self, operation: str, record_id: Any, callback: Callable[[AutomationRepository], Any]) -> Any:
        db = self.session_factory()
        try:
            return callback(AutomationRepository(db))
        except (SQLAlchemyError, AuditWriteError) as e:
            try:
                db.rollback()
            except SQLAlchemyError:
                logger.debug(f"Rollback failed after audit error in {operation}")
            log_audit_write_failure(operation, record_id, e)
            return None
        finally:
            db.close()

    def start_execution(
        self,
        rule_id: UUID,
        trigger_timestamp: datetime,
        trigger_context: dict[str, Any] | None,
        total_actions: int,
        trigger_event_id: UUID | None = None,
        state_conditions_met: bool | None = None,
        temporal_conditions_met: bool | None = None,
    ) -> UUID | None:
        """Open an execution record with a provisional status.

        Returns:
            Execution ID, or None when the record could not be written
        """

        def create(repository: AutomationRepository) -> UUID:
            execution = repository.create_execution(
                {
                    "rule_id": rule_id,
                    "trigger_timestamp": trigger_timestamp,
                    "trigger_event_id": trigger_event_id,
                    "trigger_context": json_safe(trigger_context),
                    "total_actions": total_actions,
                    "execution_status": ExecutionStatus.RUNNING.value,
                    "state_conditions_met": state_conditions_met,
                    "temporal_conditions_met": temporal_conditions_met,
                }
            )
            return execution.id

        return self._write("start_execution", rule_id, create)

    def update_condition_results(
        self,
        execution_id: UUID | None,
        state_conditions_met: bool | None = None,
        temporal_conditions_met: bool | None = None,
    ) -> None:
        """Record condition evaluation results on an execution."""
        if execution_id is None:
            return
        data: dict[str, Any] = {}
        if state_conditions_met is not None:
            data["state_conditions_met"] = state_conditions_met
        if temporal_conditions_met is not None:
            data["temporal_conditions_met"] = temporal_conditions_met
        if not data:
            return

        def update(repository: AutomationRepository) -> None:
            if repository.update_execution(execution_id, data) is None:
                raise AuditWriteError(f"execution {execution_id} not found")

        self._write("update_condition_results", execution_id, update)

    def start_action_execution(
        self,
        execution_id: UUID | None,
        action_index: int,
        action_type: str,
        action_params: dict[str, Any] | None,
    ) -> UUID | None:
        """Open the audit row of one action.

        Returns:
            Action execution ID, or None when the row could not be written
        """
        if execution_id is None:
            return None

        def create(repository: AutomationRepository) -> UUID:
            action_execution = repository.create_action_execution(
                {
                    "execution_id": execution_id,
                    "action_index": action_index,
                    "action_type": action_type,
                    "action_params": json_safe(action_params),
                    "status": ActionExecutionStatus.RUNNING.value,
                    "retry_count": 0,
                    "started_at": datetime.now(UTC),
                }
            )
            return action_execution.id

        return self._write("start_action_execution", execution_id, create)

    def complete_action_execution(
        self,
        action_execution_id: UUID | None,
        status: ActionExecutionStatus,
        retry_count: int,
        duration_ms: int,
        error_message: str | None = None,
        result_data: dict[str, Any] | None = None,
    ) -> None:
        """Finalize the audit row of one action."""
        if action_execution_id is None:
            return

        def update(repository: AutomationRepository) -> None:
            updated = repository.update_action_execution(
                action_execution_id,
                {
                    "status": status.value,
                    "error_message": error_message,
                    "retry_count": retry_count,
                    "execution_duration_ms": duration_ms,
                    "result_data": json_safe(result_data),
                    "completed_at": datetime.now(UTC),
                },
            )
            if updated is None:
                raise AuditWriteError(f"action execution {action_execution_id} not found")

        self._write("complete_action_execution", action_execution_id, update)

    def complete_execution(
        self,
        execution_id: UUID | None,
        status: ExecutionStatus,
        successful_actions: int,
        failed_actions: int,
        duration_ms: int,
    ) -> None:
        """Finalize an execution with its aggregate status."""
        if execution_id is None:
            return

        def update(repository: AutomationRepository) -> None:
            updated = repository.update_execution(
                execution_id,
                {
                    "execution_status": status.value,
                    "successful_actions": successful_actions,
                    "failed_actions": failed_actions,
                    "execution_duration_ms": duration_ms,
                },
            )
            if updated is None:
                raise AuditWriteError(f"execution {execution_id} not found")

        self._write("complete_execution", execution_id, update)
