"""Tests for the TTL + LRU listing feed cache."""

from __future__ import annotations

import asyncio

from scholarfeed.models import CacheKey, Listing, SourceKind
from scholarfeed.services.cache import ListingCache


def _listings(*names: str) -> list[Listing]:
    return [Listing(name=n, provider="Board", source_kind=SourceKind.NSP) for n in names]


class TestListingCache:
    """Test the in-memory feed cache."""

    async def test_get_after_set_returns_same_data(self) -> None:
        cache = ListingCache(default_ttl=60)
        key = CacheKey.of("Kerala")
        data = _listings("a", "b")
        await cache.set(key, data)
        listings, found = await cache.get(key)
        assert found is True
        assert listings == data

    async def test_missing_key_is_a_miss(self) -> None:
        cache = ListingCache()
        listings, found = await cache.get(CacheKey())
        assert found is False
        assert listings == []

    async def test_entry_expires_after_ttl(self) -> None:
        cache = ListingCache(default_ttl=60)
        key = CacheKey()
        await cache.set(key, _listings("a"), ttl_seconds=0.05)
        await asyncio.sleep(0.06)
        _, found = await cache.get(key)
        assert found is False, "get should report a miss once the TTL elapsed"

    async def test_stale_entry_survives_expiry(self) -> None:
        cache = ListingCache()
        key = CacheKey()
        await cache.set(key, _listings("a"), ttl_seconds=0)
        entry = await cache.get_stale(key)
        assert entry is not None
        assert entry.expired
        assert [item.name for item in entry.listings] == ["a"]

    async def test_empty_list_is_a_hit(self) -> None:
        cache = ListingCache(default_ttl=60)
        await cache.set(CacheKey(), [])
        listings, found = await cache.get(CacheKey())
        assert found is True
        assert listings == []

    async def test_returned_list_is_a_copy(self) -> None:
        cache = ListingCache(default_ttl=60)
        await cache.set(CacheKey(), _listings("a"))
        listings, _ = await cache.get(CacheKey())
        listings.clear()
        again, _ = await cache.get(CacheKey())
        assert len(again) == 1

    async def test_lru_eviction(self) -> None:
        """When max_entries is reached, the least-recently-used key is evicted."""
        cache = ListingCache(default_ttl=60, max_entries=2)
        a, b, c = CacheKey.of("a"), CacheKey.of("b"), CacheKey.of("c")
        await cache.set(a, _listings("1"))
        await cache.set(b, _listings("2"))
        await cache.get(a)  # a is now most recently used
        await cache.set(c, _listings("3"))

        assert cache.size == 2
        assert await cache.get_stale(b) is None, "LRU key 'b' should have been evicted"
        assert (await cache.get(a))[1] is True
        assert (await cache.get(c))[1] is True

    async def test_overwrite_does_not_evict(self) -> None:
        cache = ListingCache(default_ttl=60, max_entries=2)
        await cache.set(CacheKey.of("a"), _listings("1"))
        await cache.set(CacheKey.of("b"), _listings("2"))
        await cache.set(CacheKey.of("b"), _listings("3"))
        assert cache.size == 2
        assert set(cache.keys()) == {CacheKey.of("a"), CacheKey.of("b")}

    async def test_invalidate(self) -> None:
        cache = ListingCache(default_ttl=60)
        await cache.set(CacheKey(), _listings("a"))
        await cache.invalidate(CacheKey())
        await cache.invalidate(CacheKey.of("never-set"))  # should not raise
        assert cache.size == 0

    async def test_concurrent_writers(self) -> None:
        cache = ListingCache(default_ttl=60, max_entries=5)
        await asyncio.gather(*(cache.set(CacheKey.of(str(i)), _listings(str(i))) for i in range(20)))
        assert cache.size == 5
