"""In-process TTL cache with a periodic expiry sweep.

The application holds one instance and injects it into the
DashboardAggregator. All access happens on the event loop, so no locking
is needed. The sweep runs as an asyncio task
started with ``start()`` and cancelled with ``stop()`` at shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheConfig:
    default_ttl: float = 300.0
    cleanup_interval: float = 600.0
    max_items: int = 1000


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    evictions: int

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "evictions": self.evictions,
        }


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Key/value store whose entries expire after a per-entry TTL."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._items: dict[str, _Entry] = {}
        self._sweeper: asyncio.Task | None = None
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the live value for ``key``, or None on miss or expiry."""
        entry = self._items.get(key)
        if entry is None or self._clock() >= entry.expires_at:
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value``. A ttl of None or 0 means the configured default."""
        if not ttl:
            ttl = self.config.default_ttl
        if key not in self._items and len(self._items) >= self.config.max_items:
            self._make_room()
        self._items[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._items),
            evictions=self._evictions,
        )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._items.items() if now >= e.expires_at]
        for key in expired:
            del self._items[key]
        return len(expired)

    def _make_room(self) -> None:
        if self.sweep():
            return
        # Still full: drop the entry closest to expiry.
        victim = min(self._items, key=lambda k: self._items[k].expires_at)
        del self._items[victim]
        self._evictions += 1

    async def start(self) -> None:
        """Start the background sweep. Idempotent."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="ttl-cache-sweep")

    async def stop(self) -> None:
        """Cancel the background sweep and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Cache sweep removed %d expired entries", removed)
