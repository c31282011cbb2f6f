"""
Run-lifetime caches for the tracking API's user, project, and task lists.

Each cache keeps at most one fetch in flight: concurrent callers await the
same task instead of issuing duplicate requests. Empty results are handed
back but never memoized, and a failed fetch leaves the cache unfetched so the
next call retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .harvest_client import HarvestClient
from .models import TrackingAccount, TrackingProject, TrackingTask

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DirectoryHealth:
    """Health state for one directory cache."""

    fetch_count: int = 0
    failure_count: int = 0
    last_error: str | None = None
    last_error_at: float | None = None
    last_success_at: float | None = None


class DirectoryCache(Generic[T]):
    """Memoized remote list with a shared in-flight fetch."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[list[T]]],
        is_configured: Callable[[], bool],
    ):
        self._name = name
        self._fetch = fetch
        self._is_configured = is_configured
        self._records: list[T] | None = None
        self._inflight: asyncio.Task[list[T]] | None = None
        self._generation = 0
        self._loaded_at = 0.0
        self._health = DirectoryHealth()

    @property
    def name(self) -> str:
        return self._name

    def is_loaded(self) -> bool:
        return self._records is not None

    def is_fetching(self) -> bool:
        return self._inflight is not None

    async def get(self) -> list[T]:
        # Credentials are checked on every call; an unconfigured state is
        # never stored as a cached empty list.
        if not self._is_configured():
            logger.warning("Harvest API credentials not configured; %s directory unavailable", self._name)
            return []

        if self._records is not None:
            return self._records

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load(self._generation))

        # Shielded so a cancelled caller (e.g. a timeout) does not abort the
        # fetch other callers are waiting on.
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop cached records; a fetch already in flight will not repopulate."""
        self._generation += 1
        self._records = None
        self._inflight = None
        self._loaded_at = 0.0

    async def _load(self, generation: int) -> list[T]:
        self._health.fetch_count += 1
        logger.info("Fetching Harvest %s...", self._name)
        try:
            records = await self._fetch()
        except Exception as exc:
            self._record_failure(exc)
            raise
        finally:
            if generation == self._generation:
                self._inflight = None

        self._record_success()
        if not records:
            logger.warning("Harvest returned no %s; not caching empty result", self._name)
            return records

        if generation == self._generation:
            self._records = records
            self._loaded_at = time.time()
            logger.info("Cached %d Harvest %s", len(records), self._name)
        return records

    def _record_failure(self, exc: Exception) -> None:
        self._health.failure_count += 1
        self._health.last_error = f"{exc.__class__.__name__}: {exc}"
        self._health.last_error_at = time.time()
        logger.warning("Failed to fetch Harvest %s (%s): %s", self._name, exc.__class__.__name__, exc)

    def _record_success(self) -> None:
        self._health.failure_count = 0
        self._health.last_error = None
        self._health.last_success_at = time.time()

    def get_health(self) -> dict[str, Any]:
        return {
            "loaded": self._records is not None,
            "recordCount": len(self._records) if self._records is not None else 0,
            "loadedAt": self._loaded_at,
            "fetching": self._inflight is not None,
            "fetchCount": self._health.fetch_count,
            "failureCount": self._health.failure_count,
            "lastError": self._health.last_error,
            "lastErrorAt": self._health.last_error_at,
            "lastSuccessAt": self._health.last_success_at,
        }


class Directories:
    """The three tracking directories the power-up reads from."""

    def __init__(self, client: HarvestClient):
        self.client = client

        def configured() -> bool:
            return client.configured

        self.accounts: DirectoryCache[TrackingAccount] = DirectoryCache(
            "users", client.list_users, configured
        )
        self.projects: DirectoryCache[TrackingProject] = DirectoryCache(
            "projects", client.list_projects, configured
        )
        self.tasks: DirectoryCache[TrackingTask] = DirectoryCache(
            "tasks", client.list_tasks, configured
        )

    def _all(self) -> list[DirectoryCache[Any]]:
        return [self.accounts, self.projects, self.tasks]

    async def warm(self) -> None:
        """Prefetch every directory; failures are logged and retried on demand."""
        caches = self._all()
        results = await asyncio.gather(*(c.get() for c in caches), return_exceptions=True)
        for cache, result in zip(caches, results):
            if isinstance(result, BaseException):
                logger.warning("Initial Harvest %s fetch failed, will retry when needed: %s", cache.name, result)

    def invalidate_all(self) -> None:
        for cache in self._all():
            cache.invalidate()

    def get_health(self) -> dict[str, Any]:
        return {cache.name: cache.get_health() for cache in self._all()}
