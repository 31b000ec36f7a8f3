"""Yoto cloud HTTP client for device discovery, status/config pulls and config writes.

Token acquisition and refresh are the caller's responsibility: a 401 raises
YotoAuthenticationError and the caller is expected to update
``access_token`` before the next call.
"""

from __future__ import annotations

import json
from typing import Any, TypedDict, cast

import aiohttp

from yoto_sync.const import YOTO_API_BASE, YOTO_API_TIMEOUT
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.transport.exceptions import YotoSyncError

logger = get_logger(__name__)

HTTP_NO_CONTENT = 204
HTTP_UNAUTHORIZED = 401


class YotoApiError(YotoSyncError):
    """Non-2xx response from the Yoto API.

    Attributes:
        status: HTTP status code
        endpoint: Requested path

    """

    def __init__(self, status: int, endpoint: str, detail: str = "") -> None:
        self.status: int = status
        self.endpoint: str = endpoint
        self.detail: str = detail
        super().__init__(f"API request {endpoint} failed: {status} {detail}".rstrip())


class YotoAuthenticationError(YotoApiError):
    """Access token rejected (401)."""


class DeviceInfo(TypedDict, total=False):
    """One entry of ``/device-v2/devices/mine``."""

    deviceId: str
    name: str
    description: str
    online: bool
    releaseChannel: str
    deviceType: str
    deviceFamily: str
    deviceGroup: str


class YotoCloudAPI:
    """Thin aiohttp client for the device endpoints."""

    lp: str = "YotoCloudAPI"
    http_session: aiohttp.ClientSession | None = None

    def __init__(
        self,
        access_token: str,
        base_url: str = YOTO_API_BASE,
        api_timeout: int = YOTO_API_TIMEOUT,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.api_timeout = api_timeout

    async def close(self) -> None:
        """Close the aiohttp session if it exists and is not closed."""
        lp = f"{self.lp}:close:"
        if self.http_session and not self.http_session.closed:
            logger.debug("%s Closing aiohttp ClientSession", lp)
            await self.http_session.close()
        self.http_session = None

    async def _check_session(self) -> aiohttp.ClientSession:
        if not self.http_session or self.http_session.closed:
            logger.debug("%s:_check_session: Creating new aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
        return self.http_session

    async def request(self, endpoint: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET an endpoint, or PUT ``payload`` to it, and return the JSON object body.

        Raises:
            YotoAuthenticationError: 401 response
            YotoApiError: Any other non-2xx response, or a body that is not a JSON object
            aiohttp.ClientError: Network failure

        """
        lp = f"{self.lp}:request:"
        sesh = await self._check_session()
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self.api_timeout)
        try:
            if payload is None:
                logger.debug("%s GET %s", lp, endpoint)
                r = await sesh.get(url, headers=headers, timeout=timeout)
            else:
                logger.debug("%s PUT %s", lp, endpoint)
                r = await sesh.put(url, headers=headers, json=payload, timeout=timeout)
        except aiohttp.ClientError:
            logger.exception("%s Request to %s failed", lp, endpoint)
            raise

        try:
            if r.status == HTTP_UNAUTHORIZED:
                raise YotoAuthenticationError(r.status, endpoint, await r.text())
            if not 200 <= r.status < 300:
                detail = await r.text()
                logger.error("%s Request failed: %s %s", lp, r.status, detail)
                raise YotoApiError(r.status, endpoint, detail)
            if r.status == HTTP_NO_CONTENT:
                return {}
            try:
                body: object = cast("object", await r.json(content_type=None))
            except json.JSONDecodeError as exc:
                raise YotoApiError(r.status, endpoint, "response is not JSON") from exc
        finally:
            r.release()

        if not isinstance(body, dict):
            raise YotoApiError(r.status, endpoint, "expected a JSON object")
        return cast("dict[str, Any]", body)

    async def get_devices(self) -> list[DeviceInfo]:
        lp = f"{self.lp}:get_devices:"
        response = await self.request("/device-v2/devices/mine")
        devices = response.get("devices")
        if not isinstance(devices, list):
            raise YotoApiError(200, "/device-v2/devices/mine", "missing 'devices' list")
        logger.info("%s Found %d device(s)", lp, len(devices))
        return cast("list[DeviceInfo]", devices)

    async def get_device_status(self, device_id: str) -> dict[str, Any]:
        return await self.request(f"/device-v2/{device_id}/status")

    async def get_device_config(self, device_id: str) -> dict[str, Any]:
        return await self.request(f"/device-v2/{device_id}/config")

    async def update_device_config(self, device_id: str, config: dict[str, Any]) -> dict[str, Any]:
        """Write device settings and return the config as the cloud now holds it.

        ``config`` uses the same shape ``get_device_config`` returns. An empty
        dict means the API acknowledged the write without echoing the config.
        """
        lp = f"{self.lp}:update_device_config:"
        logger.debug("%s Updating config for %s", lp, device_id, extra={"device_id": device_id})
        return await self.request(f"/device-v2/{device_id}/config", config)
