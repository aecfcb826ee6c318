"""Integration tests for the execution audit trail."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from fusion_automation.core.automation.action_executor import ActionExecutor, ExecutionContext
from fusion_automation.core.automation.audit import ExecutionAuditService
from fusion_automation.core.automation.audit_query import AutomationAuditQueryService
from fusion_automation.core.automation.errors import PermanentActionError, TransientActionError
from fusion_automation.core.automation.pipeline import ActionPipeline
from fusion_automation.core.db.session import SessionLocal
from fusion_automation.models.automation import ActionExecutionStatus, ExecutionStatus

TRIGGER_TIME = datetime(2025, 1, 15, 15, 0, tzinfo=UTC)


class ScriptedExecutor(ActionExecutor):
    action_type = "sendHttpRequest"

    def __init__(self, script):
        self.script = list(script)

    async def _execute(self, params, context):
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def http_action(url="https://hooks.example.com/a"):
    return {"type": "sendHttpRequest", "params": {"url_template": url}}


@pytest.fixture
def audit(setup_database):
    return ExecutionAuditService(SessionLocal)


@pytest.fixture
def query_service(db_session):
    return AutomationAuditQueryService(db_session)


def record_execution(audit, rule_id, status, duration_ms, trigger_timestamp=TRIGGER_TIME, actions=2):
    failed = {
        ExecutionStatus.SUCCESS: 0,
        ExecutionStatus.PARTIAL_FAILURE: 1,
        ExecutionStatus.FAILURE: actions,
    }[status]
    execution_id = audit.start_execution(
        rule_id,
        trigger_timestamp=trigger_timestamp,
        trigger_context={"event": {"type": "STATE_CHANGED"}},
        total_actions=actions,
    )
    audit.complete_execution(execution_id, status, actions - failed, failed, duration_ms)
    return execution_id


def test_execution_lifecycle(audit, query_service, db_session, make_rule, persisted_rule):
    rule = make_rule()
    persisted_rule(rule)
    event_id = uuid4()

    execution_id = audit.start_execution(
        rule.id,
        trigger_timestamp=TRIGGER_TIME,
        trigger_context={"event": {"id": event_id, "at": TRIGGER_TIME}},
        total_actions=1,
        trigger_event_id=event_id,
    )
    assert execution_id is not None

    running = query_service.get_execution_detail(execution_id)
    assert running.execution_status == "running"
    db_session.expire_all()

    audit.update_condition_results(execution_id, state_conditions_met=True, temporal_conditions_met=False)
    action_id = audit.start_action_execution(
        execution_id, 0, "sendHttpRequest", {"url_template": "https://hooks.example.com/a"}
    )
    audit.complete_action_execution(
        action_id,
        ActionExecutionStatus.SUCCESS,
        retry_count=1,
        duration_ms=42,
        result_data={"status_code": 200},
    )
    audit.complete_execution(execution_id, ExecutionStatus.SUCCESS, 1, 0, 50)

    detail = query_service.get_execution_detail(execution_id)
    assert detail.execution_status == "success"
    assert detail.rule_name == rule.name
    assert detail.trigger_event_id == event_id
    assert detail.trigger_context["event"]["id"] == str(event_id)
    assert detail.state_conditions_met is True
    assert detail.temporal_conditions_met is False
    assert detail.successful_actions == 1
    assert detail.execution_duration_ms == 50
    action = detail.actions[0]
    assert action.status == "success"
    assert action.retry_count == 1
    assert action.result_data == {"status_code": 200}
    assert action.completed_at is not None


def test_none_ids_are_ignored(audit):
    audit.update_condition_results(None, state_conditions_met=True)
    assert audit.start_action_execution(None, 0, "armArea", {}) is None
    audit.complete_action_execution(None, ActionExecutionStatus.SUCCESS, 0, 1)
    audit.complete_execution(None, ExecutionStatus.SUCCESS, 1, 0, 1)


def test_write_failure_is_logged_not_raised():
    session = MagicMock()
    session.commit.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
    audit = ExecutionAuditService(lambda: session)

    with patch("fusion_automation.core.automation.audit.log_audit_write_failure") as log_failure:
        execution_id = audit.start_execution(
            uuid4(), trigger_timestamp=TRIGGER_TIME, trigger_context=None, total_actions=1
        )

    assert execution_id is None
    session.rollback.assert_called_once()
    session.close.assert_called_once()
    assert log_failure.call_args.args[0] == "start_execution"


def test_missing_execution_update_is_logged(audit):
    with patch("fusion_automation.core.automation.audit.log_audit_write_failure") as log_failure:
        audit.complete_execution(uuid4(), ExecutionStatus.SUCCESS, 1, 0, 10)

    log_failure.assert_called_once()


@pytest.mark.asyncio
async def test_pipeline_records_partial_failure(audit, query_service, make_rule, persisted_rule):
    """Audit rows of a run where the middle action fails permanently."""
    rule = make_rule(actions=[http_action(), http_action(), http_action()])
    persisted_rule(rule)
    pipeline = ActionPipeline(
        {"sendHttpRequest": ScriptedExecutor([{"n": 1}, PermanentActionError("HTTP 404"), {"n": 3}])},
        audit,
        sleep=AsyncMock(),
    )
    execution_id = audit.start_execution(
        rule.id, trigger_timestamp=TRIGGER_TIME, trigger_context={}, total_actions=3
    )

    await pipeline.run(execution_id, ExecutionContext(rule=rule))

    detail = query_service.get_execution_detail(execution_id)
    assert detail.execution_status == "partial_failure"
    assert detail.successful_actions == 2
    assert detail.failed_actions == 1
    assert [a.action_index for a in detail.actions] == [0, 1, 2]
    assert [a.status for a in detail.actions] == ["success", "failure", "success"]
    assert detail.actions[1].error_message == "HTTP 404"


@pytest.mark.asyncio
async def test_pipeline_records_retries_on_one_row(audit, query_service, make_rule, persisted_rule):
    rule = make_rule()
    persisted_rule(rule)
    pipeline = ActionPipeline(
        {
            "sendHttpRequest": ScriptedExecutor(
                [TransientActionError("503"), TransientActionError("503"), {"status_code": 200}]
            )
        },
        audit,
        sleep=AsyncMock(),
    )
    execution_id = audit.start_execution(
        rule.id, trigger_timestamp=TRIGGER_TIME, trigger_context={}, total_actions=1
    )

    await pipeline.run(execution_id, ExecutionContext(rule=rule))

    detail = query_service.get_execution_detail(execution_id)
    assert len(detail.actions) == 1
    assert detail.actions[0].status == "success"
    assert detail.actions[0].retry_count == 2
    assert detail.execution_status == "success"


def test_recent_executions_newest_first(audit, query_service, make_rule, persisted_rule):
    first, second = make_rule(name="First"), make_rule(name="Second")
    persisted_rule(first)
    persisted_rule(second)
    older = record_execution(audit, first.id, ExecutionStatus.SUCCESS, 10)
    newer = record_execution(
        audit, second.id, ExecutionStatus.FAILURE, 30, TRIGGER_TIME + timedelta(minutes=5)
    )

    executions = query_service.get_recent_executions()
    assert [e.id for e in executions] == [newer, older]
    assert executions[0].rule_name == "Second"

    assert [e.id for e in query_service.get_recent_executions(rule_id=first.id)] == [older]
    assert [e.id for e in query_service.get_recent_executions(limit=1, offset=1)] == [older]
    assert query_service.get_execution_count() == 2
    assert query_service.get_execution_count(first.id) == 1


def test_execution_stats(audit, query_service, make_rule, persisted_rule):
    rule, other = make_rule(), make_rule(name="Other")
    persisted_rule(rule)
    persisted_rule(other)
    record_execution(audit, rule.id, ExecutionStatus.SUCCESS, 10)
    record_execution(audit, rule.id, ExecutionStatus.PARTIAL_FAILURE, 20)
    record_execution(
        audit, rule.id, ExecutionStatus.FAILURE, 40, TRIGGER_TIME + timedelta(hours=2)
    )
    record_execution(audit, other.id, ExecutionStatus.SUCCESS, 100)

    stats = query_service.get_execution_stats(rule_id=rule.id)
    assert stats.total_executions == 3
    assert stats.successful_executions == 1
    assert stats.partial_failure_executions == 1
    assert stats.failed_executions == 1
    assert stats.average_execution_time_ms == 23
    assert stats.total_actions == 6
    assert stats.successful_actions == 3
    assert stats.failed_actions == 3

    windowed = query_service.get_execution_stats(
        rule_id=rule.id, start=TRIGGER_TIME, end=TRIGGER_TIME + timedelta(hours=1)
    )
    assert windowed.total_executions == 2

    failures = query_service.get_execution_stats(status="failure")
    assert failures.total_executions == 1

    assert query_service.get_execution_stats().total_executions == 4


def test_execution_stats_empty(query_service):
    stats = query_service.get_execution_stats()

    assert stats.total_executions == 0
    assert stats.average_execution_time_ms is None
    assert stats.total_actions == 0


def test_last_run_summary(audit, query_service, make_rule, persisted_rule):
    rule, other = make_rule(), make_rule(name="Other")
    persisted_rule(rule)
    persisted_rule(other)
    record_execution(audit, rule.id, ExecutionStatus.SUCCESS, 10)
    latest = record_execution(
        audit, rule.id, ExecutionStatus.FAILURE, 10, TRIGGER_TIME + timedelta(minutes=1)
    )
    other_latest = record_execution(audit, other.id, ExecutionStatus.SUCCESS, 10)

    summary = query_service.get_last_run_summary()

    assert summary[rule.id].id == latest
    assert summary[rule.id].execution_status == "failure"
    assert summary[other.id].id == other_latest


def test_unknown_execution(query_service):
    assert query_service.get_execution_detail(uuid4()) is None
