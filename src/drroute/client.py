"""Async client for a running Dr. Route instance."""

import logging
from typing import Any, Dict, Optional

import aiohttp

from drroute.core.errors import DrRouteError

logger = logging.getLogger(__name__)


class ControlClientError(DrRouteError):
    """The control server answered with an unexpected status."""

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status


class ControlClient:
    """Talks to the ``/start``, ``/stop`` and ``/health`` endpoints."""

    def __init__(self, base_url: str = "http://localhost:8080", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(self, method: str, path: str, **kwargs) -> aiohttp.ClientResponse:
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.request(method, url, **kwargs) as resp:
                await resp.read()
                return resp

    async def start(self, endpoint: Optional[str] = None) -> None:
        payload = {"Endpoint": endpoint} if endpoint else {}
        resp = await self._request("POST", "/start", json=payload)
        if resp.status != 204:
            raise ControlClientError(resp.status, (await resp.text()).strip())

    async def stop(self) -> None:
        resp = await self._request("POST", "/stop")
        if resp.status != 204:
            raise ControlClientError(resp.status, (await resp.text()).strip())

    async def health(self) -> Dict[str, Any]:
        """Fetch the current results as ``{"TotalRequests": ..., "Responses": {...}}``."""
        resp = await self._request("GET", "/health")
        if resp.status != 200:
            raise ControlClientError(resp.status, (await resp.text()).strip())
        return await resp.json()
