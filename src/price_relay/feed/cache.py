"""In-memory TTL cache for price snapshots, with a stale read path.

Entries past their expiry are misses for fresh reads but stay readable
through ``get_stale`` until swept or overwritten, so the adapter can still
answer when every provider is down.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from price_relay.core.models import CacheStats, PriceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
DEFAULT_MAX_ENTRIES = 1000
_SHARDS = 16


@dataclass(frozen=True)
class CacheEntry:
    """A cached snapshot and the monotonic time it stops being fresh."""

    data: PriceSnapshot
    expires_at: float


class _Shard:
    __slots__ = ("entries", "lock")

    def __init__(self) -> None:
        self.entries: dict[str, CacheEntry] = {}
        self.lock = threading.Lock()


class SnapshotCache:
    """Sharded key -> (snapshot, expiry) store.

    Keys are spread over independently locked shards so concurrent lookups
    of different symbols do not contend on one lock.

    Parameters
    ----------
    ttl : int
        Default seconds an entry stays fresh. Default: 300.
    max_entries : int
        Size above which a write triggers a sweep of expired entries.
    clock : Callable[[], float]
        Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl: int = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._shards = [_Shard() for _ in range(_SHARDS)]
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale_hits = 0

    @property
    def ttl(self) -> int:
        return self._ttl

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % _SHARDS]

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    def get(self, key: str) -> PriceSnapshot | None:
        """Return the snapshot if present and not yet expired."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
        fresh = entry is not None and self._clock() < entry.expires_at
        with self._stats_lock:
            if fresh:
                self._hits += 1
            else:
                self._misses += 1
        return entry.data if fresh else None

    def get_stale(self, key: str) -> PriceSnapshot | None:
        """Return the snapshot regardless of expiry."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
        if entry is None:
            return None
        with self._stats_lock:
            self._stale_hits += 1
        return entry.data

    def set(self, key: str, snapshot: PriceSnapshot, ttl: int | None = None) -> None:
        """Store a snapshot, replacing any existing entry for the key."""
        expires_at = self._clock() + (self._ttl if ttl is None else ttl)
        shard = self._shard(key)
        with shard.lock:
            shard.entries[key] = CacheEntry(data=snapshot, expires_at=expires_at)

        if len(self) > self._max_entries:
            self.sweep()

    def sweep(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [k for k, e in shard.entries.items() if now >= e.expires_at]
                for k in expired:
                    del shard.entries[k]
            removed += len(expired)
        if removed:
            logger.debug("Swept %d expired cache entries", removed)
        return removed

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
        with self._stats_lock:
            self._hits = self._misses = self._stale_hits = 0

    def stats(self) -> CacheStats:
        with self._stats_lock:
            return CacheStats(
                size=len(self),
                hits=self._hits,
                misses=self._misses,
                stale_hits=self._stale_hits,
            )
