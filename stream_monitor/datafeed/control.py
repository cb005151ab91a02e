"""
Publisher control API client.

Plain request/response calls against the publisher's HTTP endpoints, plus a
background poller for /status/publisher. Nothing here touches the stream;
the Session decides when a control call should cycle the connection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson

from ..config import ENDPOINTS
from ..errors import ControlAPIError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 10.0
DEFAULT_POLL_INTERVAL_SEC = 5.0


class ControlClient:
    """
    Async client for the publisher control endpoints.

    Usage:
        async with ControlClient("http://127.0.0.1:8000") as control:
            await control.switch_profile("burst-mode")
    """

    def __init__(
        self,
        server_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> ControlClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(self, method: str, endpoint: str) -> Any:
        url = f"{self.server_url}{endpoint}"
        session = self._get_session()
        try:
            async with session.request(
                method, url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            ) as resp:
                body = await resp.read()
                if resp.status >= 400:
                    text = body.decode("utf-8", errors="replace")
                    raise ControlAPIError(
                        f"{method} {endpoint} failed: {resp.status} - {text}",
                        status=resp.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ControlAPIError(f"{method} {endpoint} failed: {e}") from e

        if not body:
            return {}
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise ControlAPIError(f"{method} {endpoint} returned invalid JSON: {e}") from e

    async def health(self) -> dict:
        return await self._request("GET", ENDPOINTS["health"])

    async def status(self) -> dict:
        return await self._request("GET", ENDPOINTS["status"])

    async def metrics_summary(self) -> dict:
        return await self._request("GET", ENDPOINTS["metrics"])

    async def profiles(self) -> Any:
        return await self._request("GET", ENDPOINTS["profiles"])

    async def start(self) -> dict:
        return await self._request("POST", ENDPOINTS["start"])

    async def stop(self) -> dict:
        return await self._request("POST", ENDPOINTS["stop"])

    async def switch_profile(self, name: str) -> dict:
        if not name or "/" in name:
            raise ValueError(f"Invalid profile name: {name!r}")
        return await self._request("POST", f"{ENDPOINTS['profile_switch']}/{name}")

    async def publisher_status(self) -> dict:
        return await self._request("GET", ENDPOINTS["publisher_status"])

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None


def publisher_is_running(status: Any) -> Optional[bool]:
    """Extract publisher.is_running from a /status/publisher body, if present."""
    if not isinstance(status, dict):
        return None
    publisher = status.get("publisher")
    if isinstance(publisher, dict) and isinstance(publisher.get("is_running"), bool):
        return publisher["is_running"]
    return None


class PublisherStatusPoller:
    """
    Polls /status/publisher on a fixed interval.

    Failures are logged and polling continues; the last known value is kept.
    """

    def __init__(
        self,
        control: ControlClient,
        interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
    ) -> None:
        self.control = control
        self.interval_sec = interval_sec
        self.is_running: Optional[bool] = None
        self.last_status: Optional[dict] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> Optional[bool]:
        try:
            status = await self.control.publisher_status()
        except ControlAPIError as e:
            logger.warning("Error checking publisher status: %s", e)
            self.last_error = str(e)
            return self.is_running

        self.last_status = status
        self.last_error = None
        running = publisher_is_running(status)
        if running is not None:
            self.is_running = running
        logger.debug("Publisher status: %s", status)
        return self.is_running

    async def _loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval_sec)

    def start(self) -> None:
        if not self.active:
            self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
