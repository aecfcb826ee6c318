"""In-memory topology and event-history stores."""

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime

from fusion_automation.core.automation.errors import PermanentActionError
from fusion_automation.core.automation.facts import (
    AreaInfo,
    DeviceContext,
    LocationInfo,
    TopologyStore,
)
from fusion_automation.core.automation.gateways import AreaGateway
from fusion_automation.core.automation.temporal import EventHistoryStore
from fusion_automation.core.logging import get_logger
from fusion_automation.schemas.automation import StandardizedEvent

logger = get_logger(__name__)


class InMemoryTopologyStore(TopologyStore, AreaGateway):
    """Device → area → location topology held in memory.

    Also arms and disarms its areas, so it can back the area actions.
    """

    def __init__(
        self,
        locations: Iterable[LocationInfo] = (),
        areas: Iterable[AreaInfo] = (),
        devices: Iterable[DeviceContext] = (),
    ):
        self._locations: dict[str, LocationInfo] = {}
        self._areas: dict[str, AreaInfo] = {}
        self._devices: list[DeviceContext] = []
        for location in locations:
            self.add_location(location)
        for area in areas:
            self.add_area(area)
        for device in devices:
            self.add_device(device)

    def add_location(self, location: LocationInfo) -> None:
        self._locations[location.id] = location

    def add_area(self, area: AreaInfo) -> None:
        self._areas[area.id] = area

    def add_device(self, device: DeviceContext) -> None:
        self._devices = [
            existing
            for existing in self._devices
            if not (
                existing.external_id == device.external_id
                and existing.connector_id == device.connector_id
            )
        ]
        self._devices.append(device)

    def get_area(self, area_id: str) -> AreaInfo | None:
        return self._areas.get(area_id)

    def _current(self, device: DeviceContext) -> DeviceContext:
        """Refresh a device's area and location from the current records."""
        area = self._areas.get(device.area_id) if device.area_id else None
        location_id = area.location_id if area and area.location_id else device.location_id
        location = self._locations.get(location_id) if location_id else device.location
        return replace(device, area=area or device.area, location=location)

    async def get_device_context(
        self, device_id: str, connector_id: str | None = None
    ) -> DeviceContext | None:
        for device in self._devices:
            if device.external_id != device_id:
                continue
            if connector_id and device.connector_id and device.connector_id != connector_id:
                continue
            return self._current(device)
        return None

    async def get_location(self, location_id: str) -> LocationInfo | None:
        return self._locations.get(location_id)

    async def list_area_ids(self, location_id: str | None = None) -> list[str]:
        return [
            area.id
            for area in self._areas.values()
            if location_id is None or area.location_id == location_id
        ]

    async def list_device_ids(
        self, area_id: str | None = None, location_id: str | None = None
    ) -> list[str]:
        device_ids = []
        for device in self._devices:
            current = self._current(device)
            if area_id is not None and current.area_id != area_id:
                continue
            if location_id is not None and current.location_id != location_id:
                continue
            device_ids.append(device.external_id)
        return device_ids

    async def arm_area(self, area_id: str, mode: str) -> None:
        self._set_armed_state(area_id, mode)

    async def disarm_area(self, area_id: str) -> None:
        self._set_armed_state(area_id, "DISARMED")

    def _set_armed_state(self, area_id: str, state: str) -> None:
        area = self._areas.get(area_id)
        if area is None:
            raise PermanentActionError(f"Area {area_id} not found")
        self._areas[area_id] = replace(area, armed_state=state)
        logger.info(f"Area {area_id} set to {state}")


class InMemoryEventHistoryStore(EventHistoryStore):
    """Bounded, append-only window of recently dispatched events."""

    def __init__(self, max_events: int = 10000):
        """Initialize event history store.

        Args:
            max_events: Number of most recent events kept
        """
        self._events: deque[StandardizedEvent] = deque(maxlen=max_events)

    def add_event(self, event: StandardizedEvent) -> None:
        self._events.append(event)

    def __len__(self) -> int:
        return len(self._events)

    async def find_events(
        self,
        start: datetime,
        end: datetime,
        device_ids: Sequence[str] | None = None,
    ) -> list[StandardizedEvent]:
        allowed = set(device_ids) if device_ids is not None else None
        matches = [
            event
            for event in self._events
            if start <= event.timestamp <= end
            and (allowed is None or event.device_id in allowed)
        ]
        return sorted(matches, key=lambda event: event.timestamp)
