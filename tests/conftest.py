import os

# Tests run against an in-memory SQLite database; must be set before settings load
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PUSHOVER_ENABLED"] = "false"
os.environ["AUTOMATION_RETRY_MIN_DELAY"] = "0"
os.environ["AUTOMATION_RETRY_MAX_DELAY"] = "0"

from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from fusion_automation.core.config_file import get_settings  # noqa: E402

get_settings.cache_clear()

from fusion_automation.core.automation.facts import (  # noqa: E402
    AreaInfo,
    DeviceContext,
    LocationInfo,
)
from fusion_automation.core.automation.stores import (  # noqa: E402
    InMemoryEventHistoryStore,
    InMemoryTopologyStore,
)
from fusion_automation.core.db.session import Base, SessionLocal, engine  # noqa: E402
from fusion_automation.models import AutomationRuleRecord  # noqa: E402
from fusion_automation.schemas.automation import (  # noqa: E402
    AutomationRule,
    StandardizedEvent,
)

settings = get_settings()


@pytest.fixture(scope="function")
def setup_database():
    """Create all tables for one test and drop them afterwards."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(setup_database):
    """Database session bound to the test database."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def location():
    """Location with fresh sun times."""
    return LocationInfo(
        id="loc-1",
        name="Head Office",
        time_zone="America/New_York",
        sunrise="06:30",
        sunset="19:45",
        sun_times_updated_at=datetime.now(UTC) - timedelta(hours=6),
    )


@pytest.fixture
def topology(location):
    """Topology with two areas in one location and three devices."""
    return InMemoryTopologyStore(
        locations=[location],
        areas=[
            AreaInfo(id="area-1", name="Lobby", location_id="loc-1", armed_state="ARMED_AWAY"),
            AreaInfo(id="area-2", name="Garage", location_id="loc-1", armed_state="DISARMED"),
        ],
        devices=[
            DeviceContext(
                id="dev-1",
                external_id="front-door",
                name="Front Door",
                type="Door",
                subtype="Contact",
                connector_id="c-1",
                area=AreaInfo(id="area-1", name="Lobby", location_id="loc-1"),
            ),
            DeviceContext(
                id="dev-2",
                external_id="hall-motion",
                name="Hall Motion",
                type="Motion",
                connector_id="c-1",
                area=AreaInfo(id="area-1", name="Lobby", location_id="loc-1"),
            ),
            DeviceContext(
                id="dev-3",
                external_id="garage-door",
                name="Garage Door",
                type="Door",
                connector_id="c-1",
                area=AreaInfo(id="area-2", name="Garage", location_id="loc-1"),
            ),
        ],
    )


@pytest.fixture
def history_store():
    """Empty in-memory event history."""
    return InMemoryEventHistoryStore(max_events=1000)


@pytest.fixture
def make_event():
    """Factory for standardized events."""

    def _make_event(
        device_id: str = "front-door",
        type: str = "STATE_CHANGED",
        category: str = "DEVICE_STATE",
        timestamp: datetime | None = None,
        connector_id: str = "c-1",
        **payload: Any,
    ) -> StandardizedEvent:
        return StandardizedEvent(
            device_id=device_id,
            connector_id=connector_id,
            timestamp=timestamp or datetime(2025, 1, 15, 15, 0, tzinfo=UTC),
            category=category,
            type=type,
            payload=payload,
        )

    return _make_event


@pytest.fixture
def make_rule():
    """Factory for validated automation rules."""

    def _make_rule(**overrides: Any) -> AutomationRule:
        definition: dict[str, Any] = {
            "name": "Front door opened",
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
                    "type": "sendHttpRequest",
                    "params": {
                        "url_template": "https://hooks.example.com/door",
                        "method": "POST",
                        "body_template": '{"device": "{{ device.name }}"}',
                    },
                }
            ],
        }
        definition.update(overrides)
        return AutomationRule.model_validate(definition)

    return _make_rule


@pytest.fixture
def persisted_rule(db_session):
    """Factory persisting a rule record so audit rows satisfy the foreign key."""

    def _persist(rule: AutomationRule) -> AutomationRuleRecord:
        record = AutomationRuleRecord(
            id=rule.id,
            name=rule.name,
            enabled=rule.enabled,
            location_scope_id=rule.location_scope_id,
            definition=rule.definition(),
        )
        db_session.add(record)
        db_session.commit()
        return record

    return _persist


@pytest.fixture(scope="function")
def client(setup_database, topology):
    """Test client whose app runs a fresh automation engine per test."""
    from fusion_automation.core.automation.engine import AutomationEngine
    from fusion_automation.main import app

    app.state.automation_engine_factory = lambda: AutomationEngine(settings, topology=topology)
    with TestClient(app) as test_client:
        yield test_client
    del app.state.automation_engine_factory
