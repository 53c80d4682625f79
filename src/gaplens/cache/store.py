"""
View cache with per-key staleness tracking.

A single logical clock orders everything. Each cached entry records the
tick at which its computation started; each key records the tick of the
last mutation that invalidated it. An entry is fresh only while its
computed tick is at or after the key's last mutation tick, so a value that
was being computed while a mutation landed is stale as soon as it is
stored. Every read checks staleness before returning a value.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from gaplens.cache.invalidation import ViewKey

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the tick its computation started at."""

    value: Any
    computed_at: int


class ViewCache:
    """
    Cache of computed views keyed by ViewKey.

    Example:
        cache = ViewCache()
        matrix = cache.get_or_compute(key, lambda: builder.build(...))
        cache.invalidate(table.keys_for(mutation))
    """

    def __init__(self) -> None:
        self._entries: dict[ViewKey, CacheEntry] = {}
        self._mutated_at: dict[ViewKey, int] = {}
        self._clock = 0
        self._lock = threading.RLock()

    @property
    def clock(self) -> int:
        """Current logical time."""
        with self._lock:
            return self._clock

    def last_mutation(self, key: ViewKey) -> int:
        with self._lock:
            return self._mutated_at.get(key, 0)

    def is_stale(self, key: ViewKey) -> bool:
        """True when the key has no entry or was mutated after it was computed."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is None or entry.computed_at < self._mutated_at.get(key, 0)

    def get(self, key: ViewKey, default: Any = None) -> Any:
        """Return the fresh cached value, or default when missing or stale."""
        with self._lock:
            if self.is_stale(key):
                return default
            return self._entries[key].value

    def peek(self, key: ViewKey) -> CacheEntry | None:
        """Return the raw entry regardless of staleness."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: ViewKey, value: Any, computed_at: int | None = None) -> CacheEntry:
        """
        Store a value.

        Args:
            key: Cache key.
            value: Computed view.
            computed_at: Tick the computation started at. Defaults to now.

        Returns:
            The stored entry.
        """
        with self._lock:
            entry = CacheEntry(value, self._clock if computed_at is None else computed_at)
            self._entries[key] = entry
            return entry

    def get_or_compute(self, key: ViewKey, compute: Callable[[], T]) -> T:
        """Return the fresh cached value, computing and storing it when stale."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            logger.debug("Cache hit: %s", key)
            return value

        logger.debug("Cache miss: %s", key)
        started = self.clock
        value = compute()
        self.put(key, value, computed_at=started)
        return value

    def invalidate(self, keys: Iterable[ViewKey]) -> int:
        """
        Mark keys as mutated now. Entries stay in place but read as stale.

        Returns:
            The mutation tick.
        """
        with self._lock:
            self._clock += 1
            count = 0
            for key in keys:
                self._mutated_at[key] = self._clock
                count += 1
            logger.debug("Invalidated %d views at tick %d", count, self._clock)
            return self._clock

    def snapshot(self, keys: Iterable[ViewKey]) -> dict[ViewKey, CacheEntry | None]:
        """Capture the current entries of keys for a later restore()."""
        with self._lock:
            return {key: self._entries.get(key) for key in keys}

    def restore(self, snapshot: dict[ViewKey, CacheEntry | None]) -> None:
        """Put back entries captured by snapshot(), removing keys that had none."""
        with self._lock:
            for key, entry in snapshot.items():
                if entry is None:
                    self._entries.pop(key, None)
                else:
                    self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._clock += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
