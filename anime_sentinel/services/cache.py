# anime_sentinel/services/cache.py

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from ..config import CacheSettings, logger
from ..models import CanonicalShow, LocalShow, utcnow

RefreshCallback = Callable[[LocalShow], Awaitable[Any]]


class CachePolicy:
    """Decides when a locally owned show's cached metadata is stale.

    Each check draws a fresh threshold uniformly from ``[min_hours,
    max_hours]`` so refreshes of shows created together spread out over time.
    """

    def __init__(
        self,
        min_hours: float = 168,
        max_hours: float = 336,
        *,
        rng: random.Random | None = None,
    ) -> None:
        if min_hours > max_hours:
            raise ValueError("min_hours must not exceed max_hours")
        self.min_hours = min_hours
        self.max_hours = max_hours
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "CachePolicy":
        return cls(settings.min_hours, settings.max_hours)

    def threshold(self) -> timedelta:
        return timedelta(hours=self._rng.uniform(self.min_hours, self.max_hours))

    def is_stale(self, show: CanonicalShow, now: datetime | None = None) -> bool:
        # Catalog mirrors are fetched fresh and never cached here.
        if not isinstance(show, LocalShow):
            return False
        elapsed = (now or utcnow()) - show.cache_updated_at
        return elapsed >= self.threshold()


class RefreshCoalescer(Protocol):
    """Grants at most one refresh per key at a time."""

    def try_acquire(self, key: str) -> bool: ...

    def release(self, key: str) -> None: ...


class InMemoryRefreshCoalescer:
    """Per-key leases that expire after ``ttl_seconds``.

    Only coordinates refreshes inside one process. Deployments running
    several workers need a coalescer backed by a shared store.
    """

    def __init__(
        self, ttl_seconds: float = 300, *, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._leases: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "InMemoryRefreshCoalescer":
        return cls(settings.refresh_lease_seconds)

    def try_acquire(self, key: str) -> bool:
        now = self._clock()
        expires_at = self._leases.get(key)
        if expires_at is not None and now < expires_at:
            return False
        self._leases[key] = now + self.ttl_seconds
        return True

    def release(self, key: str) -> None:
        self._leases.pop(key, None)


class ShowCacheMonitor:
    """Schedules a background refresh when a stale show is read."""

    def __init__(
        self,
        policy: CachePolicy,
        coalescer: RefreshCoalescer,
        refresh: RefreshCallback,
    ) -> None:
        self.policy = policy
        self.coalescer = coalescer
        self.refresh = refresh
        self._tasks: set[asyncio.Task[Any]] = set()

    @staticmethod
    def _key(show: LocalShow) -> str:
        return f"show:{show.id if show.id is not None else show.title.casefold()}"

    def check(self, show: CanonicalShow, now: datetime | None = None) -> bool:
        """Return whether a refresh was scheduled for ``show``.

        Must be called from a running event loop.
        """
        if not isinstance(show, LocalShow) or not self.policy.is_stale(show, now):
            return False
        key = self._key(show)
        if not self.coalescer.try_acquire(key):
            logger.debug(f"[CACHE] Refresh of '{show.title}' already in progress")
            return False

        logger.info(f"[CACHE] Scheduling refresh for stale show '{show.title}'")
        task = asyncio.get_running_loop().create_task(self._run(show, key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, show: LocalShow, key: str) -> None:
        # A failed refresh keeps its lease until the TTL runs out, so repeated
        # reads of a broken show do not retry on every access.
        try:
            await self.refresh(show)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                f"[CACHE] Refresh of '{show.title}' failed: {exc}", exc_info=True
            )
            return
        self.coalescer.release(key)

    async def drain(self) -> None:
        """Wait for every scheduled refresh to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
