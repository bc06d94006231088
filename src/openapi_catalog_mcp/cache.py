"""Bounded, time-expiring in-memory cache for normalised documents.

Eviction is by insertion order: when the cache is full, the entry stored
earliest is dropped, regardless of how recently it was read. Expired entries
are purged lazily on lookup and by an optional background sweep task.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

from .config import CacheConfig

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    timestamp: float


class SpecCache(Generic[K, V]):
    """Insertion-ordered TTL cache.

    Args:
        config: Size, time-to-live and sweep interval (seconds).
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def _expired(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.timestamp > self.config.ttl

    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.config.max_size:
            oldest, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {oldest}")
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry.value

    def delete(self, key: K) -> None:
        self._entries.pop(key, None)

    def cleanup(self) -> int:
        """Drop every expired entry and return how many were removed."""
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def start_sweeper(self) -> None:
        """Start the periodic sweep on the running event loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup()

    def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None

    def destroy(self) -> None:
        self.stop_sweeper()
        self.clear()
