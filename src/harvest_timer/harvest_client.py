"""
Read-only client for the Harvest time-tracking REST API.

Every call is a single page at ``per_page=2000``; the account sizes this
server targets fit in one page.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .config import HarvestConfig
from .models import ActiveTimerRecord, TrackingAccount, TrackingProject, TrackingTask

logger = logging.getLogger(__name__)

PAGE_SIZE = 2000
TIMER_CHECK_TIMEOUT_SECONDS = 5.0
DIRECTORY_TIMEOUT_SECONDS = 10.0


class TrackingApiError(RuntimeError):
    """Raised when a tracking API call fails."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class HarvestClient:
    def __init__(
        self,
        config: HarvestConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._config.has_credentials

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.access_token}",
            "Harvest-Account-Id": self._config.account_id,
            "User-Agent": self._config.user_agent,
        }

    async def _fetch(self, url: str, params: dict[str, Any], timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.get(url, params=params, headers=self._headers())

    async def _get(self, path: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        if not self.configured:
            raise TrackingApiError("not_configured", "Harvest API credentials not configured")

        url = f"{self._config.api_base_url}/{path}"
        try:
            # httpx timeouts are per phase; wait_for bounds the whole call.
            resp = await asyncio.wait_for(self._fetch(url, params, timeout), timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise TrackingApiError("timeout", f"Harvest API {path} timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TrackingApiError("network", f"Harvest API {path} request failed: {exc}") from exc

        if not resp.is_success:
            raise TrackingApiError("http_status", f"Harvest API returned {resp.status_code} for {path}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise TrackingApiError("bad_response", f"Harvest API {path} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise TrackingApiError("bad_response", f"Harvest API {path} returned unexpected payload")
        return data

    async def list_running_entries(
        self,
        user_id: str | None = None,
        timeout: float = TIMER_CHECK_TIMEOUT_SECONDS,
    ) -> list[ActiveTimerRecord]:
        params: dict[str, Any] = {"is_running": "true", "per_page": PAGE_SIZE}
        if user_id:
            params["user_id"] = user_id
        data = await self._get("time_entries", params, timeout)
        return [ActiveTimerRecord.from_api(r) for r in data.get("time_entries") or []]

    async def list_projects(self, timeout: float = DIRECTORY_TIMEOUT_SECONDS) -> list[TrackingProject]:
        data = await self._get("projects", {"is_active": "true", "per_page": PAGE_SIZE}, timeout)
        return [TrackingProject.from_api(r) for r in data.get("projects") or []]

    async def list_tasks(self, timeout: float = DIRECTORY_TIMEOUT_SECONDS) -> list[TrackingTask]:
        data = await self._get("tasks", {"is_active": "true", "per_page": PAGE_SIZE}, timeout)
        return [TrackingTask.from_api(r) for r in data.get("tasks") or []]

    async def list_users(self, timeout: float = DIRECTORY_TIMEOUT_SECONDS) -> list[TrackingAccount]:
        data = await self._get("users", {"is_active": "true", "per_page": PAGE_SIZE}, timeout)
        return [TrackingAccount.from_api(r) for r in data.get("users") or []]
