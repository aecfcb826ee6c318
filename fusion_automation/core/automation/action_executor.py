"""Action executors for automation rules."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

import httpx
from pydantic import BaseModel

from fusion_automation.core.automation.errors import PermanentActionError, TransientActionError
from fusion_automation.core.automation.facts import DeviceContext
from fusion_automation.core.automation.gateways import AreaGateway, DeviceGateway, VideoGateway
from fusion_automation.schemas.automation import (
    ArmAreaParams,
    AutomationRule,
    CreateBookmarkParams,
    CreateEventParams,
    DisarmAreaParams,
    SendHttpRequestParams,
    SendPushNotificationParams,
    SetDeviceStateParams,
    StandardizedEvent,
)

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")
PUSHOVER_ALL_RECIPIENTS = "__all__"
MAX_RESPONSE_BODY = 1000


@dataclass(frozen=True)
class ActionOk:
    result_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class ActionSkipped:
    reason: str


@dataclass(frozen=True)
class TransientFailure:
    message: str


@dataclass(frozen=True)
class PermanentFailure:
    message: str


ActionResult = Union[ActionOk, ActionSkipped, TransientFailure, PermanentFailure]


@dataclass
class ExecutionContext:
    """What an executor knows about the execution it runs in."""

    rule: AutomationRule
    facts: dict[str, Any] = field(default_factory=dict)
    event: StandardizedEvent | None = None
    device_context: DeviceContext | None = None
    fired_at: datetime | None = None

    @property
    def trigger_timestamp(self) -> datetime | None:
        if self.event is not None:
            return self.event.timestamp
        return self.fired_at


class ActionExecutor(ABC):
    """Base class for the executor of one action type."""

    action_type: str = ""

    async def execute(self, params: BaseModel, context: ExecutionContext) -> ActionResult:
        """Execute an action with resolved params.

        Args:
            params: Action params after template resolution
            context: Execution context

        Returns:
            Explicit result variant; action errors never propagate
        """
        try:
            result = await self._execute(params, context)
        except TransientActionError as e:
            return TransientFailure(str(e))
        except PermanentActionError as e:
            return PermanentFailure(str(e))

        if isinstance(result, ActionSkipped):
            return result
        return ActionOk(result)

    @abstractmethod
    async def _execute(
        self, params: BaseModel, context: ExecutionContext
    ) -> dict[str, Any] | ActionSkipped | None:
        pass


def _classify_status(status_code: int, description: str) -> None:
    """Raise the matching action error for a non-2xx HTTP status."""
    if status_code >= 500 or status_code == 429:
        raise TransientActionError(f"{description} returned HTTP {status_code}")
    raise PermanentActionError(f"{description} returned HTTP {status_code}")


def _looks_like_json(body: str) -> bool:
    stripped = body.strip()
    if not stripped or stripped[0] not in "{[":
        return False
    try:
        json.loads(stripped)
    except ValueError:
        return False
    return True


class HttpRequestExecutor(ActionExecutor):
    """Sends outbound HTTP requests."""

    action_type = "sendHttpRequest"

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "FusionBridge Automation/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP request executor.

        Args:
            timeout: Request timeout in seconds
            user_agent: User-Agent header sent with every request
            transport: Optional httpx transport (used in tests)
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    async def _execute(
        self, params: SendHttpRequestParams, context: ExecutionContext
    ) -> dict[str, Any]:
        headers: dict[str, str] = {}
        for header in params.headers:
            key = header.key_template.strip()
            if key:
                headers[key] = header.value_template
        headers["User-Agent"] = self.user_agent

        content = None
        if params.method in BODY_METHODS and params.body_template:
            content = params.body_template
            has_content_type = any(key.lower() == "content-type" for key in headers)
            if not has_content_type and _looks_like_json(content):
                headers["Content-Type"] = "application/json"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method=params.method,
                    url=params.url_template,
                    headers=headers,
                    content=content,
                )
        except httpx.InvalidURL as e:
            raise PermanentActionError(f"Invalid URL '{params.url_template}': {e}") from e
        except httpx.UnsupportedProtocol as e:
            raise PermanentActionError(f"Unsupported URL '{params.url_template}': {e}") from e
        except httpx.TimeoutException as e:
            raise TransientActionError(f"HTTP request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientActionError(f"HTTP request failed: {e}") from e

        if not response.is_success:
            _classify_status(
                response.status_code, f"{params.method} {params.url_template}"
            )

        logger.info(
            f"HTTP action for rule {context.rule.id}: {params.method} "
            f"{params.url_template} -> {response.status_code}"
        )
        result: dict[str, Any] = {
            "status_code": response.status_code,
            "body": response.text[:MAX_RESPONSE_BODY],
        }
        try:
            result["json"] = response.json()
        except ValueError:
            pass
        return result


class PushNotificationExecutor(ActionExecutor):
    """Sends Pushover push notifications."""

    action_type = "sendPushNotification"

    def __init__(
        self,
        api_token: str | None,
        group_key: str | None,
        api_url: str = "https://api.pushover.net/1/messages.json",
        enabled: bool = True,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize push notification executor.

        Args:
            api_token: Pushover application token
            group_key: Pushover group key used for ``__all__`` or empty recipients
            api_url: Pushover messages endpoint
            enabled: Whether push notifications are enabled
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used in tests)
        """
        self.api_token = api_token
        self.group_key = group_key
        self.api_url = api_url
        self.enabled = enabled
        self.timeout = timeout
        self.transport = transport

    async def _execute(
        self, params: SendPushNotificationParams, context: ExecutionContext
    ) -> dict[str, Any]:
        if not self.enabled or not self.api_token:
            raise PermanentActionError("Pushover is not configured or disabled")

        recipient = (params.target_user_key_template or "").strip()
        if not recipient or recipient == PUSHOVER_ALL_RECIPIENTS:
            recipient = self.group_key or ""
        if not recipient:
            raise PermanentActionError("No Pushover recipient and no group key configured")

        data: dict[str, Any] = {
            "token": self.api_token,
            "user": recipient,
            "message": params.message_template,
            "priority": params.priority,
        }
        if params.title_template:
            data["title"] = params.title_template
        if params.priority == 2:
            # Emergency priority requires retry/expire
            data["retry"] = 60
            data["expire"] = 3600

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, data=data)
        except httpx.TimeoutException as e:
            raise TransientActionError(f"Pushover request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientActionError(f"Pushover request failed: {e}") from e

        if not response.is_success:
            _classify_status(response.status_code, "Pushover API")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if body.get("status") != 1:
            errors = ", ".join(body.get("errors", [])) or "unknown error"
            raise PermanentActionError(f"Pushover rejected notification: {errors}")

        logger.info(f"Push notification sent for rule {context.rule.id}")
        return {"request_id": body.get("request"), "recipient": recipient}


class SetDeviceStateExecutor(ActionExecutor):
    """Switches a device on or off."""

    action_type = "setDeviceState"

    def __init__(self, gateway: DeviceGateway | None):
        self.gateway = gateway

    async def _execute(
        self, params: SetDeviceStateParams, context: ExecutionContext
    ) -> dict[str, Any]:
        if self.gateway is None:
            raise PermanentActionError("No device gateway configured")
        result = await self.gateway.set_device_state(
            params.target_device_internal_id, params.target_state
        )
        logger.info(
            f"Device {params.target_device_internal_id} set to {params.target_state} "
            f"by rule {context.rule.id}"
        )
        return {
            "device_id": params.target_device_internal_id,
            "state": params.target_state,
            **(result or {}),
        }


class CreateEventExecutor(ActionExecutor):
    """Creates an event in the video management system."""

    action_type = "createEvent"

    def __init__(self, gateway: VideoGateway | None):
        self.gateway = gateway

    async def _execute(
        self, params: CreateEventParams, context: ExecutionContext
    ) -> dict[str, Any]:
        if self.gateway is None:
            raise PermanentActionError("No video gateway configured")
        timestamp = context.trigger_timestamp
        event = {
            "source": params.source_template,
            "caption": params.caption_template,
            "description": params.description_template,
            "timestamp": timestamp.isoformat() if timestamp else None,
        }
        result = await self.gateway.create_event(params.target_connector_id, event)
        return {"connector_id": params.target_connector_id, **event, **(result or {})}


class CreateBookmarkExecutor(ActionExecutor):
    """Bookmarks footage on every camera associated with the source device."""

    action_type = "createBookmark"

    def __init__(self, gateway: VideoGateway | None):
        self.gateway = gateway

    async def _execute(
        self, params: CreateBookmarkParams, context: ExecutionContext
    ) -> dict[str, Any] | ActionSkipped:
        if self.gateway is None:
            raise PermanentActionError("No video gateway configured")
        if context.device_context is None:
            return ActionSkipped("no source device to find associated cameras")

        try:
            duration_ms = int(params.duration_ms_template.strip() or "5000")
        except ValueError as e:
            raise PermanentActionError(
                f"Invalid bookmark duration '{params.duration_ms_template}'"
            ) from e
        tags = [tag.strip() for tag in (params.tags_template or "").split(",") if tag.strip()]

        cameras = await self.gateway.list_associated_cameras(context.device_context)
        if not cameras:
            return ActionSkipped(f"no cameras associated with device {context.device_context.id}")

        timestamp = context.trigger_timestamp
        bookmark = {
            "name": params.name_template,
            "description": params.description_template,
            "start_time": timestamp.isoformat() if timestamp else None,
            "duration_ms": duration_ms,
            "tags": tags,
        }
        created = []
        for camera_id in cameras:
            result = await self.gateway.create_bookmark(params.target_connector_id, camera_id, bookmark)
            created.append({"camera_id": camera_id, **(result or {})})
        return {"bookmarks": created}


class _AreaExecutor(ActionExecutor):
    """Shared area resolution for arm/disarm executors."""

    def __init__(self, gateway: AreaGateway | None):
        self.gateway = gateway

    async def _resolve_area_ids(
        self, params: ArmAreaParams | DisarmAreaParams, context: ExecutionContext
    ) -> list[str]:
        if params.scoping == "SPECIFIC_AREAS":
            return [area_id for area_id in params.target_area_ids if area_id]
        return await self.gateway.list_area_ids(context.rule.location_scope_id)

    async def _apply_to_areas(
        self, params: ArmAreaParams | DisarmAreaParams, context: ExecutionContext
    ) -> dict[str, Any] | ActionSkipped:
        if self.gateway is None:
            raise PermanentActionError("No area gateway configured")
        area_ids = await self._resolve_area_ids(params, context)
        if not area_ids:
            return ActionSkipped("no target areas resolved")

        succeeded: list[str] = []
        failed: dict[str, str] = {}
        for area_id in area_ids:
            try:
                await self._apply(area_id, params)
                succeeded.append(area_id)
            except Exception as e:
                logger.error(
                    f"{self.action_type} failed for area {area_id} (rule {context.rule.id}): {e}"
                )
                failed[area_id] = str(e)

        if not succeeded:
            raise PermanentActionError(
                f"{self.action_type} failed for all areas: "
                + "; ".join(f"{area_id}: {error}" for area_id, error in failed.items())
            )
        return {"areas": succeeded, "failed_areas": failed}

    @abstractmethod
    async def _apply(self, area_id: str, params: ArmAreaParams | DisarmAreaParams) -> None:
        pass


class ArmAreaExecutor(_AreaExecutor):
    """Arms alarm areas."""

    action_type = "armArea"

    async def _execute(self, params: ArmAreaParams, context: ExecutionContext):
        return await self._apply_to_areas(params, context)

    async def _apply(self, area_id: str, params: ArmAreaParams) -> None:
        await self.gateway.arm_area(area_id, params.arm_mode)


class DisarmAreaExecutor(_AreaExecutor):
    """Disarms alarm areas."""

    action_type = "disarmArea"

    async def _execute(self, params: DisarmAreaParams, context: ExecutionContext):
        return await self._apply_to_areas(params, context)

    async def _apply(self, area_id: str, params: DisarmAreaParams) -> None:
        await self.gateway.disarm_area(area_id)


def build_default_executors(
    settings,
    area_gateway: AreaGateway | None = None,
    device_gateway: DeviceGateway | None = None,
    video_gateway: VideoGateway | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, ActionExecutor]:
    """Build one executor per action type.

    Args:
        settings: Application settings
        area_gateway: Gateway for arm/disarm actions
        device_gateway: Gateway for device state actions
        video_gateway: Gateway for event and bookmark actions
        transport: Optional httpx transport shared by HTTP-based executors

    Returns:
        Dictionary mapping action type to executor
    """
    executors: list[ActionExecutor] = [
        CreateEventExecutor(video_gateway),
        CreateBookmarkExecutor(video_gateway),
        HttpRequestExecutor(
            timeout=settings.AUTOMATION_ACTION_TIMEOUT,
            user_agent=settings.HTTP_ACTION_USER_AGENT,
            transport=transport,
        ),
        SetDeviceStateExecutor(device_gateway),
        PushNotificationExecutor(
            api_token=settings.PUSHOVER_API_TOKEN,
            group_key=settings.PUSHOVER_GROUP_KEY,
            api_url=settings.PUSHOVER_API_URL,
            enabled=settings.PUSHOVER_ENABLED,
            timeout=settings.AUTOMATION_ACTION_TIMEOUT,
            transport=transport,
        ),
        ArmAreaExecutor(area_gateway),
        DisarmAreaExecutor(area_gateway),
    ]
    return {executor.action_type: executor for executor in executors}
