"""Integration tests for Automation API endpoints."""

import json
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from fusion_automation.core.automation.engine import AutomationEngine
from fusion_automation.core.automation.errors import RuleValidationError
from fusion_automation.core.config_file import get_settings
from fusion_automation.main import app, rule_validation_exception_handler

settings = get_settings()

RULES_URL = "/api/v1/automation/rules"
EVENTS_URL = "/api/v1/automation/events"
EXECUTIONS_URL = "/api/v1/automation/executions"


@pytest.fixture
def arm_rule_data():
    """Rule arming the garage when the front door reports a state change."""
    return {
        "name": "Arm garage on door change",
        "description": "Arms area-2 when the front door changes state",
        "trigger": {
            "type": "event",
            "conditions": {
                "all": [
                    {"fact": "event.type", "operator": "equal", "value": "STATE_CHANGED"},
                    {"fact": "device.externalId", "operator": "equal", "value": "front-door"},
                ]
            },
        },
        "actions": [
            {
                "type": "armArea",
                "params": {"scoping": "SPECIFIC_AREAS", "target_area_ids": ["area-2"]},
            }
        ],
    }


@pytest.fixture
def door_event():
    return {
        "device_id": "front-door",
        "connector_id": "c-1",
        "timestamp": "2025-01-15T15:00:00Z",
        "category": "DEVICE_STATE",
        "type": "STATE_CHANGED",
        "payload": {"displayState": "Open"},
    }


def create_rule(client, rule_data):
    response = client.post(RULES_URL, json=rule_data)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_rule(client, arm_rule_data):
    """Test creating an automation rule."""
    response = client.post(RULES_URL, json=arm_rule_data)

    assert response.status_code == 201
    body = response.json()
    assert body["error"] is None
    data = body["data"]
    assert data["name"] == "Arm garage on door change"
    assert data["description"] == "Arms area-2 when the front door changes state"
    assert data["enabled"] is True
    assert data["registered"] is True
    assert data["registration_error"] is None
    assert data["next_fire_time"] is None
    assert data["definition"]["actions"][0]["params"]["arm_mode"] == "ARMED_AWAY"
    assert "description" not in data["definition"]


def test_create_invalid_rule(client, arm_rule_data):
    """Test that a malformed rule is rejected with field details."""
    arm_rule_data["actions"] = []

    response = client.post(RULES_URL, json=arm_rule_data)

    assert response.status_code == 422
    body = response.json()
    assert body["data"] is None
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert "actions" in body["error"]["details"]
    assert client.get(RULES_URL).json()["meta"]["total"] == 0


def test_create_rule_ignores_client_id(client, arm_rule_data):
    """Rule ids are always assigned by the server."""
    first = create_rule(client, arm_rule_data)

    response = client.post(RULES_URL, json={**arm_rule_data, "id": first["id"]})

    assert response.status_code == 201
    second = response.json()["data"]
    assert second["id"] != first["id"]
    assert client.get(RULES_URL).json()["meta"]["total"] == 2


def test_update_rule_ignores_body_id(client, arm_rule_data):
    first = create_rule(client, arm_rule_data)
    second = create_rule(client, {**arm_rule_data, "name": "Second"})

    body = {**arm_rule_data, "id": first["id"], "name": "Renamed"}
    response = client.put(f"{RULES_URL}/{second['id']}", json=body)

    assert response.status_code == 200
    assert response.json()["data"]["id"] == second["id"]
    assert client.get(f"{RULES_URL}/{first['id']}").json()["data"]["name"] == arm_rule_data["name"]


def test_create_scheduled_rule(client):
    data = create_rule(
        client,
        {
            "name": "Weekday morning disarm",
            "trigger": {
                "type": "scheduled",
                "cron_expression": "0 8 * * MON-FRI",
                "time_zone": "America/New_York",
            },
            "actions": [{"type": "disarmArea", "params": {"scoping": "ALL_AREAS_IN_SCOPE"}}],
        },
    )

    assert data["registered"] is True
    assert data["next_fire_time"] is not None


def test_create_scheduled_rule_with_bad_cron(client):
    """A schedule that cannot be resolved is saved but left in an error state."""
    data = create_rule(
        client,
        {
            "name": "Broken schedule",
            "trigger": {"type": "scheduled", "cron_expression": "0 99 * * *", "time_zone": "UTC"},
            "actions": [{"type": "disarmArea", "params": {"scoping": "ALL_AREAS_IN_SCOPE"}}],
        },
    )

    assert data["registered"] is False
    assert "Invalid cron expression" in data["registration_error"]

    fetched = client.get(f"{RULES_URL}/{data['id']}").json()["data"]
    assert fetched["registration_error"] == data["registration_error"]


def test_list_rules(client, arm_rule_data):
    """Test listing automation rules."""
    create_rule(client, arm_rule_data)
    create_rule(client, {**arm_rule_data, "name": "Disabled rule", "enabled": False})

    response = client.get(RULES_URL)

    assert response.status_code == 200
    body = response.json()
    assert body["meta"]["total"] == 2
    assert body["meta"]["total_pages"] == 1
    assert {rule["name"] for rule in body["data"]} == {"Arm garage on door change", "Disabled rule"}

    enabled = client.get(RULES_URL, params={"enabled_only": True}).json()
    assert [rule["name"] for rule in enabled["data"]] == ["Arm garage on door change"]

    paged = client.get(RULES_URL, params={"page": 2, "page_size": 1}).json()
    assert len(paged["data"]) == 1
    assert paged["meta"]["total_pages"] == 2


def test_get_rule(client, arm_rule_data):
    created = create_rule(client, arm_rule_data)

    response = client.get(f"{RULES_URL}/{created['id']}")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == created["id"]


def test_get_rule_not_found(client):
    response = client.get(f"{RULES_URL}/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "AUTOMATION_RULE_NOT_FOUND"


def test_update_rule(client, arm_rule_data):
    """Test that an update replaces the definition and re-registers the rule."""
    created = create_rule(client, arm_rule_data)

    response = client.put(
        f"{RULES_URL}/{created['id']}",
        json={**arm_rule_data, "name": "Renamed", "enabled": False},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == created["id"]
    assert data["name"] == "Renamed"
    assert data["enabled"] is False
    assert data["registered"] is False
    assert client.get("/healthz").json()["registered_rules"] == 0


def test_update_rule_invalid_and_missing(client, arm_rule_data):
    created = create_rule(client, arm_rule_data)

    invalid = client.put(f"{RULES_URL}/{created['id']}", json={"name": "No trigger"})
    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "VALIDATION_ERROR"
    assert "trigger" in invalid.json()["error"]["details"]

    missing = client.put(f"{RULES_URL}/{uuid4()}", json=arm_rule_data)
    assert missing.status_code == 404


def test_delete_rule(client, arm_rule_data, door_event):
    created = create_rule(client, arm_rule_data)
    client.post(EVENTS_URL, json=door_event)

    response = client.delete(f"{RULES_URL}/{created['id']}")

    assert response.status_code == 204
    assert client.get(f"{RULES_URL}/{created['id']}").status_code == 404
    assert client.get(EXECUTIONS_URL).json()["meta"]["total"] == 0
    assert client.post(EVENTS_URL, json=door_event).json()["data"]["executions"] == []
    assert client.delete(f"{RULES_URL}/{created['id']}").status_code == 404


def test_dispatch_event_runs_matching_rule(client, topology, arm_rule_data, door_event):
    """Test that an event runs the matching rule and is recorded in the audit trail."""
    created = create_rule(client, arm_rule_data)

    response = client.post(EVENTS_URL, json=door_event)

    assert response.status_code == 200
    executions = response.json()["data"]["executions"]
    assert len(executions) == 1
    assert executions[0]["rule_id"] == created["id"]
    assert executions[0]["status"] == "success"
    assert executions[0]["successful_actions"] == 1
    assert topology.get_area("area-2").armed_state == "ARMED_AWAY"

    execution_id = executions[0]["execution_id"]
    detail = client.get(f"{EXECUTIONS_URL}/{execution_id}").json()["data"]
    assert detail["rule_name"] == "Arm garage on door change"
    assert detail["state_conditions_met"] is True
    assert detail["trigger_context"]["device"]["name"] == "Front Door"
    assert detail["actions"][0]["action_type"] == "armArea"
    assert detail["actions"][0]["result_data"] == {"areas": ["area-2"], "failed_areas": {}}


def test_dispatch_event_without_match(client, arm_rule_data, door_event):
    create_rule(client, arm_rule_data)

    response = client.post(EVENTS_URL, json={**door_event, "device_id": "garage-door"})

    assert response.status_code == 200
    assert response.json()["data"]["executions"] == []


def test_dispatch_invalid_event(client, door_event):
    del door_event["device_id"]

    response = client.post(EVENTS_URL, json=door_event)

    assert response.status_code == 422
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert "device_id" in body["error"]["details"]


def test_executions_list_and_stats(client, arm_rule_data, door_event):
    ok_rule = create_rule(client, arm_rule_data)
    failing = dict(arm_rule_data, name="Arm missing area")
    failing["actions"] = [
        {"type": "armArea", "params": {"scoping": "SPECIFIC_AREAS", "target_area_ids": ["area-404"]}}
    ]
    create_rule(client, failing)

    client.post(EVENTS_URL, json=door_event)

    listing = client.get(EXECUTIONS_URL).json()
    assert listing["meta"]["total"] == 2
    assert {e["execution_status"] for e in listing["data"]} == {"success", "failure"}

    filtered = client.get(EXECUTIONS_URL, params={"rule_id": ok_rule["id"]}).json()
    assert [e["rule_id"] for e in filtered["data"]] == [ok_rule["id"]]

    stats = client.get(f"{EXECUTIONS_URL}/stats").json()["data"]
    assert stats["total_executions"] == 2
    assert stats["successful_executions"] == 1
    assert stats["failed_executions"] == 1
    assert stats["failed_actions"] == 1

    failures = client.get(f"{EXECUTIONS_URL}/stats", params={"status": "failure"}).json()["data"]
    assert failures["total_executions"] == 1

    windowed = client.get(
        f"{EXECUTIONS_URL}/stats",
        params={"start": "2025-01-16T00:00:00Z"},
    ).json()["data"]
    assert windowed["total_executions"] == 0


def test_get_execution_not_found(client):
    response = client.get(f"{EXECUTIONS_URL}/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "EXECUTION_NOT_FOUND"


def test_healthz(client, arm_rule_data):
    create_rule(client, arm_rule_data)

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["registered_rules"] == 1


@pytest.mark.asyncio
async def test_rule_validation_error_handler():
    error = RuleValidationError(
        "Invalid rule definition: actions: too short",
        details={"errors": [{"field": "actions", "message": "too short"}]},
    )

    response = await rule_validation_exception_handler(None, error)

    assert response.status_code == 400
    assert json.loads(response.body) == {
        "error": {
            "code": "AUTOMATION_RULE_INVALID",
            "message": "Invalid rule definition: actions: too short",
            "details": {"errors": [{"field": "actions", "message": "too short"}]},
        },
        "data": None,
    }


def test_each_startup_builds_fresh_engine(setup_database, topology):
    """Restarting the app builds a new engine whose scheduler runs on the new loop."""
    engines = []

    def build_engine():
        engines.append(AutomationEngine(settings, topology=topology))
        return engines[-1]

    app.state.automation_engine_factory = build_engine
    try:
        for attempt in range(2):
            with TestClient(app) as test_client:
                data = create_rule(
                    test_client,
                    {
                        "name": f"Nightly check {attempt}",
                        "trigger": {
                            "type": "scheduled",
                            "cron_expression": "0 2 * * *",
                            "time_zone": "UTC",
                        },
                        "actions": [
                            {"type": "disarmArea", "params": {"scoping": "ALL_AREAS_IN_SCOPE"}}
                        ],
                    },
                )
                assert data["registered"] is True
                assert data["next_fire_time"] is not None
                assert test_client.get("/healthz").json()["registered_rules"] == attempt + 1
            assert app.state.automation_engine is None
    finally:
        del app.state.automation_engine_factory

    assert len(engines) == 2
    assert engines[0] is not engines[1]
