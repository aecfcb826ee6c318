"""Action pipeline: ordered, templated actions with per-action retry and timeout."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from fusion_automation.core.automation.action_executor import (
    ActionExecutor,
    ActionOk,
    ActionResult,
    ActionSkipped,
    ExecutionContext,
    PermanentFailure,
    TransientFailure,
)
from fusion_automation.core.automation.audit import ExecutionAuditService
from fusion_automation.core.automation.retry import RetryPolicy
from fusion_automation.core.automation.templating import resolve_templates
from fusion_automation.core.logging import log_execution_completed
from fusion_automation.models.automation import ActionExecutionStatus, ExecutionStatus
from fusion_automation.schemas.automation import Action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionOutcome:
    """Final outcome of one action."""

    action_index: int
    action_type: str
    status: ActionExecutionStatus
    retry_count: int = 0
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class ExecutionOutcome:
    """Final outcome of one execution."""

    execution_id: UUID | None
    rule_id: UUID
    status: ExecutionStatus
    total_actions: int
    successful_actions: int
    failed_actions: int
    duration_ms: int
    actions: tuple[ActionOutcome, ...] = ()


def determine_execution_status(total_actions: int, failed_actions: int) -> ExecutionStatus:
    """Aggregate action failures into an execution status.

    Args:
        total_actions: Number of actions in the execution
        failed_actions: Number of failed actions

    Returns:
        SUCCESS when nothing failed, FAILURE when everything failed,
        PARTIAL_FAILURE otherwise
    """
    if failed_actions == 0:
        return ExecutionStatus.SUCCESS
    if failed_actions == total_actions:
        return ExecutionStatus.FAILURE
    return ExecutionStatus.PARTIAL_FAILURE


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ActionPipeline:
    """Runs a rule's actions sequentially, isolating each action's failure."""

    def __init__(
        self,
        executors: Mapping[str, ActionExecutor],
        audit: ExecutionAuditService,
        retry_policy: RetryPolicy | None = None,
        action_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize action pipeline.

        Args:
            executors: Executor per action type
            audit: Execution audit service
            retry_policy: Retry policy for transient failures
            action_timeout: Timeout in seconds for each executor call
            sleep: Coroutine used to wait between retries
        """
        self.executors = executors
        self.audit = audit
        self.retry_policy = retry_policy or RetryPolicy()
        self.action_timeout = action_timeout
        self.sleep = sleep

    async def run(
        self,
        execution_id: UUID | None,
        context: ExecutionContext,
        actions: Sequence[Action] | None = None,
    ) -> ExecutionOutcome:
        """Run actions in order and finalize the execution record.

        Actions never short-circuit: a failed action is recorded and the next
        one runs. Each action's result data is exposed to later templates as
        ``actions.<index>``.

        Args:
            execution_id: Audit record opened for this execution (None if unwritten)
            context: Execution context; its facts are the template context
            actions: Actions to run (defaults to the rule's actions)

        Returns:
            ExecutionOutcome with aggregate status and per-action outcomes
        """
        actions = list(context.rule.actions if actions is None else actions)
        started = time.monotonic()
        template_context: dict[str, Any] = {**context.facts, "actions": {}}

        outcomes: list[ActionOutcome] = []
        for index, action in enumerate(actions):
            outcome = await self._run_action(execution_id, index, action, context, template_context)
            outcomes.append(outcome)
            template_context["actions"][str(index)] = outcome.result_data or {}

        successful = sum(1 for o in outcomes if o.status == ActionExecutionStatus.SUCCESS)
        failed = sum(1 for o in outcomes if o.status == ActionExecutionStatus.FAILURE)
        status = determine_execution_status(len(actions), failed)
        duration_ms = _elapsed_ms(started)

        self.audit.complete_execution(execution_id, status, successful, failed, duration_ms)
        log_execution_completed(
            context.rule.id, execution_id, status.value, successful, failed, duration_ms
        )
        return ExecutionOutcome(
            execution_id=execution_id,
            rule_id=context.rule.id,
            status=status,
            total_actions=len(actions),
            successful_actions=successful,
            failed_actions=failed,
            duration_ms=duration_ms,
            actions=tuple(outcomes),
        )

    async def _run_action(
        self,
        execution_id: UUID | None,
        index: int,
        action: Action,
        context: ExecutionContext,
        template_context: Mapping[str, Any],
    ) -> ActionOutcome:
        started = time.monotonic()
        resolved = resolve_templates(action.params.model_dump(mode="json"), template_context)
        action_execution_id = self.audit.start_action_execution(
            execution_id, index, action.type, resolved
        )

        retry_count = 0
        try:
            params = type(action.params).model_validate(resolved)
        except ValidationError as e:
            result: ActionResult = PermanentFailure(f"Invalid params after templating: {e}")
        else:
            executor = self.executors.get(action.type)
            if executor is None:
                result = PermanentFailure(f"No executor registered for action type {action.type}")
            else:
                result = await self._invoke(executor, params, context, action.type, index)
                while isinstance(result, TransientFailure) and self.retry_policy.allows_retry(
                    retry_count
                ):
                    delay = self.retry_policy.delay_for(retry_count)
                    logger.warning(
                        f"Action {index} ({action.type}) of rule {context.rule.id} failed "
                        f"(retry {retry_count + 1}/{self.retry_policy.max_retries}): "
                        f"{result.message}. Retrying in {delay}s..."
                    )
                    await self.sleep(delay)
                    retry_count += 1
                    result = await self._invoke(executor, params, context, action.type, index)

        outcome = self._to_outcome(index, action.type, result, retry_count, _elapsed_ms(started))
        self.audit.complete_action_execution(
            action_execution_id,
            outcome.status,
            retry_count=outcome.retry_count,
            duration_ms=outcome.duration_ms,
            error_message=outcome.error_message,
            result_data=outcome.result_data,
        )
        return outcome

    async def _invoke(
        self,
        executor: ActionExecutor,
        params: Any,
        context: ExecutionContext,
        action_type: str,
        index: int,
    ) -> ActionResult:
        try:
            return await asyncio.wait_for(
                executor.execute(params, context), timeout=self.action_timeout
            )
        except TimeoutError:
            return TransientFailure(f"Action timed out after {self.action_timeout}s")
        except Exception as e:
            logger.error(
                f"Unexpected error in action {index} ({action_type}) of rule {context.rule.id}: {e}",
                exc_info=True,
            )
            return PermanentFailure(str(e) or type(e).__name__)

    @staticmethod
    def _to_outcome(
        index: int, action_type: str, result: ActionResult, retry_count: int, duration_ms: int
    ) -> ActionOutcome:
        if isinstance(result, ActionOk):
            return ActionOutcome(
                index, action_type, ActionExecutionStatus.SUCCESS, retry_count,
                result_data=result.result_data, duration_ms=duration_ms,
            )
        if isinstance(result, ActionSkipped):
            logger.info(f"Action {index} ({action_type}) skipped: {result.reason}")
            return ActionOutcome(
                index, action_type, ActionExecutionStatus.SKIPPED, retry_count,
                result_data={"skipped_reason": result.reason}, duration_ms=duration_ms,
            )
        message = result.message
        if isinstance(result, TransientFailure) and retry_count:
            message = f"{message} (after {retry_count} retries)"
        logger.error(f"Action {index} ({action_type}) failed: {message}")
        return ActionOutcome(
            index, action_type, ActionExecutionStatus.FAILURE, retry_count,
            error_message=message, duration_ms=duration_ms,
        )
