"""Time-bounded in-memory cache of canonical listing feeds.

Entries are keyed by a typed :class:`CacheKey` and carry their own TTL.
An expired entry is reported as a miss by :meth:`ListingCache.get` but is
kept for :meth:`ListingCache.get_stale`, so the aggregator can fall back to
the last-known-good feed during an upstream outage.  The number of keys is
bounded with least-recently-used eviction.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog

from scholarfeed.models.listing import CacheKey, Listing

logger = structlog.get_logger(__name__)


class CacheEntry:
    """Single cached feed with its fetch time and TTL."""

    __slots__ = ("expires_at", "fetched_at", "listings")

    def __init__(self, listings: Sequence[Listing], ttl_seconds: float) -> None:
        self.listings: tuple[Listing, ...] = tuple(listings)
        self.fetched_at = datetime.now(UTC)
        self.expires_at = time.monotonic() + ttl_seconds

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    @property
    def age_seconds(self) -> float:
        return (datetime.now(UTC) - self.fetched_at).total_seconds()


class ListingCache:
    """OrderedDict-based LRU cache of listing feeds.

    Reads never await, so a reader always observes either the previous or
    the new entry in full and readers never block each other.  Writes are
    serialized through an :class:`asyncio.Lock`.

    Parameters
    ----------
    default_ttl:
        TTL in seconds applied when :meth:`set` is called without one.
    max_entries:
        Maximum number of keys retained.
    """

    __slots__ = ("_data", "_default_ttl", "_max_entries", "_write_lock")

    def __init__(self, *, default_ttl: float = 300, max_entries: int = 256) -> None:
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._data: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._write_lock = asyncio.Lock()

    async def get(self, key: CacheKey) -> tuple[list[Listing], bool]:
        """Return ``(listings, found)``; ``found`` is false once the TTL elapsed."""
        entry = self._data.get(key)
        if entry is None or entry.expired:
            return [], False
        self._data.move_to_end(key)
        return list(entry.listings), True

    async def get_stale(self, key: CacheKey) -> CacheEntry | None:
        """Return the last stored entry for *key*, expired or not."""
        return self._data.get(key)

    async def set(self, key: CacheKey, listings: Sequence[Listing], ttl_seconds: float | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        async with self._write_lock:
            if key in self._data:
                del self._data[key]
            while len(self._data) >= self._max_entries:
                evicted, _ = self._data.popitem(last=False)
                logger.debug("cache.evicted", key=str(evicted))
            self._data[key] = CacheEntry(listings, ttl)

    async def invalidate(self, key: CacheKey) -> None:
        async with self._write_lock:
            self._data.pop(key, None)

    def keys(self) -> list[CacheKey]:
        return list(self._data)

    @property
    def size(self) -> int:
        """Number of stored entries, expired ones included."""
        return len(self._data)
