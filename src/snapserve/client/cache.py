"""Client-side collection cache with staleness flags.

Learn: Pushed events never carry deltas we apply locally. An event only
says "the orders collection changed", the cache flags that entry stale
and re-fetches the whole collection over HTTP. Without sequence numbers,
patching local state from out-of-order events would be unsafe; a full
re-fetch is always correct.

Invalidation is idempotent: ten NEW_ORDER events in a burst mark the
entry stale ten times but run at most one fetch at a time. If an event
arrives while a fetch is in flight, the entry stays stale and is fetched
again once that fetch returns.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

Fetcher = Callable[[str], Awaitable[Any]]


@dataclass
class CacheEntry:
    key: str
    data: Any = None
    stale: bool = True
    fetched_at: Optional[float] = None
    generation: int = 0  # bumped on every invalidation


class ResourceCache:
    """Whole-collection cache keyed by resource name ("orders", "feedback")."""

    def __init__(self, fetcher: Optional[Fetcher] = None):
        self._fetcher = fetcher
        self._entries: dict[str, CacheEntry] = {}
        self._refreshing: dict[str, asyncio.Task] = {}

    def keys(self) -> list[str]:
        return list(self._entries)

    def peek(self, key: str) -> Any:
        """Cached data without fetching (None when never fetched)."""
        entry = self._entries.get(key)
        return entry.data if entry else None

    def is_stale(self, key: str) -> bool:
        """True once an entry has been invalidated and not yet re-fetched.

        Entries that were never created are absent, not stale.
        """
        entry = self._entries.get(key)
        return entry.stale if entry else False

    def set(self, key: str, data: Any) -> None:
        """Store fresh data (initial load, or data fetched elsewhere)."""
        entry = self._entries.setdefault(key, CacheEntry(key))
        entry.data = data
        entry.stale = False
        entry.fetched_at = time.time()

    def invalidate(self, key: str) -> None:
        """Mark ``key`` stale and schedule a background re-fetch."""
        entry = self._entries.setdefault(key, CacheEntry(key))
        entry.stale = True
        entry.generation += 1
        logger.debug("snapserve.cache.invalidated", key=key, generation=entry.generation)

        if self._fetcher is None:
            return
        task = self._refreshing.get(key)
        if task is None or task.done():
            self._refreshing[key] = asyncio.get_running_loop().create_task(
                self._background_refresh(key)
            )

    async def get(self, key: str) -> Any:
        """Cached data, re-fetched first when missing or stale."""
        entry = self._entries.get(key)
        if self._fetcher is not None and (entry is None or entry.stale):
            return await self.refresh(key)
        return entry.data if entry else None

    async def refresh(self, key: str) -> Any:
        """Fetch the whole collection now. Fetch errors propagate."""
        if self._fetcher is None:
            raise RuntimeError("ResourceCache has no fetcher")
        entry = self._entries.setdefault(key, CacheEntry(key))
        generation = entry.generation
        data = await self._fetcher(key)
        entry.data = data
        entry.fetched_at = time.time()
        # Invalidated again while we were fetching: still stale
        entry.stale = entry.generation != generation
        logger.debug("snapserve.cache.refreshed", key=key, stale=entry.stale)
        return data

    async def _background_refresh(self, key: str) -> None:
        try:
            while self._entries[key].stale:
                try:
                    await self.refresh(key)
                except Exception as e:
                    # Entry stays stale; the next get() or event retries
                    logger.warning("snapserve.cache.refresh_failed", key=key, error=str(e))
                    return
        finally:
            self._refreshing.pop(key, None)

    async def wait_idle(self) -> None:
        """Wait for every scheduled re-fetch to finish."""
        while self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel pending re-fetches."""
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshing.clear()
