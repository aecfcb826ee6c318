"""Fact resolution: turn events and topology context into fact maps."""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from fusion_automation.schemas.automation import StandardizedEvent

logger = logging.getLogger(__name__)

# Payload keys lifted into the `event` fact block
EVENT_PAYLOAD_FACTS = (
    "displayState",
    "statusType",
    "rawStateValue",
    "rawStatusValue",
    "originalEventType",
    "detectionType",
    "confidence",
    "zone",
)

_PATH_TOKEN = re.compile(r"\[(\d+)\]|\[['\"]([^'\"\]]+)['\"]\]|([^.\[\]]+)")


class _Missing:
    """Marker for a fact or path that does not resolve."""

    def __repr__(self) -> str:
        return "<MISSING>"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def split_path(path: str) -> list[str | int]:
    """Split a dotted/bracket path into keys and list indexes.

    Accepts ``a.b.c``, ``a[0].b``, ``a['b c']`` and JSONPath-style ``$.a.b``.
    """
    path = path.strip()
    if path.startswith("$"):
        path = path[1:].lstrip(".")
    tokens: list[str | int] = []
    for match in _PATH_TOKEN.finditer(path):
        index, quoted, plain = match.groups()
        if index is not None:
            tokens.append(int(index))
        elif quoted is not None:
            tokens.append(quoted)
        else:
            tokens.append(plain)
    return tokens


def lookup_path(value: Any, path: str) -> Any:
    """Walk a path into nested mappings and lists.

    Args:
        value: Root object
        path: Dotted/bracket path

    Returns:
        The value at the path, or MISSING when any segment does not resolve
    """
    current = value
    for token in split_path(path):
        if isinstance(token, int):
            if isinstance(current, (list, tuple)) and token < len(current):
                current = current[token]
                continue
            return MISSING
        if isinstance(current, Mapping) and token in current:
            current = current[token]
        else:
            return MISSING
    return current


def resolve_fact(facts: Mapping[str, Any], fact: str) -> Any:
    """Get a fact by exact key, falling back to a dotted path into the map."""
    if fact in facts:
        return facts[fact]
    return lookup_path(facts, fact)


@dataclass(frozen=True)
class LocationInfo:
    """A site with its own timezone and sun times."""

    id: str
    name: str
    time_zone: str = "UTC"
    sunrise: str | None = None  # "HH:MM" local time
    sunset: str | None = None  # "HH:MM" local time
    sun_times_updated_at: datetime | None = None


@dataclass(frozen=True)
class AreaInfo:
    """An alarm area inside a location."""

    id: str
    name: str
    location_id: str | None = None
    armed_state: str = "DISARMED"


@dataclass(frozen=True)
class DeviceContext:
    """Denormalized device → area → location context of an event's device."""

    id: str
    external_id: str
    name: str | None = None
    type: str | None = None
    subtype: str | None = None
    connector_id: str | None = None
    area: AreaInfo | None = None
    location: LocationInfo | None = None

    @property
    def area_id(self) -> str | None:
        return self.area.id if self.area else None

    @property
    def location_id(self) -> str | None:
        if self.location:
            return self.location.id
        return self.area.location_id if self.area else None


class TopologyStore(ABC):
    """Read access to the device → area → location topology."""

    @abstractmethod
    async def get_device_context(
        self, device_id: str, connector_id: str | None = None
    ) -> DeviceContext | None:
        """Get the denormalized context of a device by its external ID."""
        pass

    @abstractmethod
    async def get_location(self, location_id: str) -> LocationInfo | None:
        """Get a location by ID."""
        pass

    @abstractmethod
    async def list_area_ids(self, location_id: str | None = None) -> list[str]:
        """List area IDs, optionally restricted to one location."""
        pass

    @abstractmethod
    async def list_device_ids(
        self, area_id: str | None = None, location_id: str | None = None
    ) -> list[str]:
        """List external device IDs in an area or location."""
        pass


@dataclass(frozen=True)
class ResolvedFacts:
    """Facts for one event together with the device context they came from."""

    facts: dict[str, Any]
    device_context: DeviceContext | None

    @property
    def location_id(self) -> str | None:
        return self.device_context.location_id if self.device_context else None


class FactResolver:
    """Builds fact maps from events, history and schedule ticks."""

    def __init__(self, topology: TopologyStore | None = None):
        """Initialize fact resolver.

        Args:
            topology: Topology store used to denormalize device context
        """
        self.topology = topology

    async def resolve(self, event: StandardizedEvent) -> ResolvedFacts:
        """Resolve facts for an incoming event.

        Topology lookup failures are logged and produce facts without
        device/area/location context.

        Args:
            event: Triggering event

        Returns:
            ResolvedFacts with the fact map and device context
        """
        device_context = await self.load_device_context(event)
        return ResolvedFacts(
            facts=self.build_event_facts(event, device_context),
            device_context=device_context,
        )

    async def load_device_context(self, event: StandardizedEvent) -> DeviceContext | None:
        if self.topology is None:
            return None
        try:
            device_context = await self.topology.get_device_context(
                event.device_id, event.connector_id
            )
        except Exception as e:
            logger.error(
                f"Error fetching device context for {event.device_id}: {e}", exc_info=True
            )
            return None
        if device_context is None:
            logger.warning(f"No device record found for external device {event.device_id}")
        return device_context

    @staticmethod
    def build_event_facts(
        event: StandardizedEvent, device_context: DeviceContext | None
    ) -> dict[str, Any]:
        """Build the full fact map for an event."""
        facts = FactResolver.build_history_facts(event)
        facts["event"].update(
            {
                "id": str(event.event_id),
                "timestamp": event.timestamp.isoformat(),
                "timestampMs": int(event.timestamp.timestamp() * 1000),
                "deviceId": event.device_id,
                "deviceName": device_context.name if device_context else None,
                "connectorId": event.connector_id,
            }
        )
        if device_context:
            facts["device"].update(
                {
                    "id": device_context.id,
                    "name": device_context.name,
                    "type": device_context.type,
                    "subtype": device_context.subtype,
                }
            )
        area = device_context.area if device_context else None
        facts["area"] = (
            {"id": area.id, "name": area.name, "armedState": area.armed_state}
            if area
            else None
        )
        location = device_context.location if device_context else None
        facts["location"] = FactResolver.location_facts(location)
        return facts

    @staticmethod
    def build_history_facts(event: StandardizedEvent) -> dict[str, Any]:
        """Build facts for a historical event, from the event alone."""
        event_facts: dict[str, Any] = {
            "category": event.category,
            "type": event.type,
            "subtype": event.subtype,
            "payload": dict(event.payload),
        }
        for key in EVENT_PAYLOAD_FACTS:
            event_facts[key] = event.payload.get(key)
        return {
            "event": event_facts,
            "device": {
                "id": None,
                "externalId": event.device_id,
                "name": None,
                "type": None,
                "subtype": None,
            },
            "connector": {"id": event.connector_id},
        }

    @staticmethod
    def build_schedule_facts(
        cron_expression: str,
        time_zone: str,
        fired_at: datetime,
        location: LocationInfo | None = None,
    ) -> dict[str, Any]:
        """Build facts for a scheduled tick."""
        local_time = fired_at.astimezone(ZoneInfo(time_zone))
        facts: dict[str, Any] = {
            "schedule": {
                "cronExpression": cron_expression,
                "timeZone": time_zone,
                "triggeredAtUTC": fired_at.astimezone(ZoneInfo("UTC")).isoformat(),
                "triggeredAtLocal": local_time.isoformat(),
                "triggeredAtMs": int(fired_at.timestamp() * 1000),
            }
        }
        if location is not None:
            facts["location"] = FactResolver.location_facts(location)
        return facts

    @staticmethod
    def location_facts(location: LocationInfo | None) -> dict[str, Any] | None:
        if location is None:
            return None
        return {"id": location.id, "name": location.name, "timeZone": location.time_zone}
