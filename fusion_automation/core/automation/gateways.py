"""Gateways to the systems that automation actions act upon.

Implementations raise ``TransientActionError`` for failures worth retrying and
``PermanentActionError`` for the rest.
"""

from abc import ABC, abstractmethod
from typing import Any

from fusion_automation.core.automation.facts import DeviceContext


class DeviceGateway(ABC):
    """Switches devices through their connector."""

    @abstractmethod
    async def set_device_state(self, device_internal_id: str, state: str) -> dict[str, Any] | None:
        """Set a device to SET_ON or SET_OFF.

        Args:
            device_internal_id: Internal device ID
            state: Target state (SET_ON or SET_OFF)

        Returns:
            Optional result data
        """
        pass


class VideoGateway(ABC):
    """Creates events and bookmarks in a video management system."""

    @abstractmethod
    async def create_event(self, connector_id: str, event: dict[str, Any]) -> dict[str, Any] | None:
        """Create an event on the given connector."""
        pass

    @abstractmethod
    async def list_associated_cameras(self, device: DeviceContext) -> list[str]:
        """List camera IDs associated with a device."""
        pass

    @abstractmethod
    async def create_bookmark(
        self, connector_id: str, camera_id: str, bookmark: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Create a bookmark on one camera."""
        pass


class AreaGateway(ABC):
    """Arms and disarms alarm areas."""

    @abstractmethod
    async def list_area_ids(self, location_id: str | None = None) -> list[str]:
        """List area IDs, optionally restricted to one location."""
        pass

    @abstractmethod
    async def arm_area(self, area_id: str, mode: str) -> None:
        """Arm an area in ARMED_AWAY or ARMED_STAY mode."""
        pass

    @abstractmethod
    async def disarm_area(self, area_id: str) -> None:
        """Disarm an area."""
        pass
