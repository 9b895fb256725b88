#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Response Cache

Process-wide key/value store with per-entry expiration, used to avoid
re-querying the NASA APIs on every request.

Expired entries are dropped lazily on read; CacheSweeper reclaims memory
for entries nobody reads again.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger("zima_wallpaper")


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload with its creation time and time to live."""
    payload: Any
    created_at: float  # seconds, from the cache clock
    ttl_millis: int

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) * 1000 > self.ttl_millis


class ResponseCache:
    """
    In-memory TTL cache.

    Construct once per process and inject it where it is needed. Entries are
    immutable and replaced whole, so readers see either the old or the new
    entry for a key. The clock is injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_minutes: float = 60) -> None:
        entry = CacheEntry(
            payload=value,
            created_at=self._clock(),
            ttl_millis=int(ttl_minutes * 60 * 1000),
        )
        with self._lock:
            self._entries[key] = entry

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                logger.debug(f"Cache entry expired: {key}")
                return None

            return entry.payload

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Cache cleanup removed {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "keys": list(self._entries.keys()),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheSweeper:
    """Runs ResponseCache.cleanup() on a fixed interval as an asyncio task."""

    def __init__(self, cache: ResponseCache, interval_minutes: float = 30):
        self.cache = cache
        self.interval_sec = interval_minutes * 60
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Cache sweeper started (every {self.interval_sec:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            self.cache.cleanup()
