"""Tests for the listing aggregator: cycles, caching, stale fallback and
event publication."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from scholarfeed.models import CacheKey, Listing, SourceKind, SourceMode, StreamEventType
from scholarfeed.services.aggregator import AggregationError, AggregationResult, ListingAggregator
from scholarfeed.services.broadcaster import SubscriptionBroadcaster
from scholarfeed.services.cache import ListingCache
from scholarfeed.services.changes import ChangeDetector
from scholarfeed.services.merge import MergeEngine
from scholarfeed.services.sources import PlaceholderSource, SourceFetchError, SourceResult


def _make_listing(name: str = "Merit Award", **overrides: object) -> Listing:
    data: dict[str, object] = {
        "name": name,
        "provider": "Education Board",
        "amount": 10_000,
        "source_kind": SourceKind.STATE,
    }
    data.update(overrides)
    return Listing(**data)


class FakeSource:
    """In-memory source with switchable failure and latency."""

    mode = SourceMode.LIVE

    def __init__(
        self,
        name: str,
        listings: list[Listing] | None = None,
        *,
        kind: SourceKind = SourceKind.STATE,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.kind = kind
        self.listings = listings or []
        self.delay = delay
        self.fail = False
        self.crash = False
        self.calls = 0
        self.refresh_flags: list[bool] = []
        self.closed = False

    async def fetch(self, region: str | None = None, *, refresh: bool = False) -> SourceResult:
        self.calls += 1
        self.refresh_flags.append(refresh)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.crash:
            raise RuntimeError("adapter bug")
        if self.fail:
            return SourceResult(self.name, error=SourceFetchError(self.name, "http_status", status_code=500))
        return SourceResult(self.name, list(self.listings))

    async def close(self) -> None:
        self.closed = True


def _aggregator(
    *sources: FakeSource | PlaceholderSource,
    ttl: float = 60,
    source_timeout: float = 1.0,
    broadcaster: SubscriptionBroadcaster | None = None,
) -> ListingAggregator:
    return ListingAggregator(
        list(sources),
        merge_engine=MergeEngine(),
        cache=ListingCache(default_ttl=ttl),
        detector=ChangeDetector(),
        broadcaster=broadcaster or SubscriptionBroadcaster(),
        source_timeout=source_timeout,
    )


# ---------------------------------------------------------------------------
# Normal cycles
# ---------------------------------------------------------------------------


class TestFetchAll:
    async def test_merges_across_sources(self) -> None:
        nsp = FakeSource("nsp", [_make_listing(amount=10_000, source_kind=SourceKind.NSP)], kind=SourceKind.NSP)
        state = FakeSource("state", [_make_listing(amount=15_000), _make_listing("Girls Grant")])
        listings = await _aggregator(nsp, state).fetch_all()
        assert sorted(item.name for item in listings) == ["Girls Grant", "Merit Award"]
        merit = next(item for item in listings if item.name == "Merit Award")
        assert merit.amount == 10_000  # nsp is the more trusted source

    async def test_cache_hit_skips_sources(self) -> None:
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source)
        await aggregator.fetch_all()
        await aggregator.fetch_all()
        assert source.calls == 1

    async def test_force_refresh_bypasses_cache(self) -> None:
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source)
        await aggregator.fetch_all()
        await aggregator.fetch_all(force_refresh=True)
        assert source.calls == 2

    async def test_concurrent_callers_share_one_cycle(self) -> None:
        source = FakeSource("state", [_make_listing()], delay=0.05)
        aggregator = _aggregator(source)
        results = await asyncio.gather(*(aggregator.fetch_all() for _ in range(5)))
        assert source.calls == 1
        assert all(len(r) == 1 for r in results)

    async def test_force_refresh_skips_source_result_cache(self) -> None:
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source)
        await aggregator.fetch_all()
        await aggregator.fetch_all(force_refresh=True)
        assert source.refresh_flags == [False, True]

    async def test_region_filter(self) -> None:
        source = FakeSource(
            "state",
            [
                _make_listing("Kerala Only", eligible_regions=["Kerala"]),
                _make_listing("National"),
            ],
        )
        aggregator = _aggregator(source)
        names = [item.name for item in await aggregator.fetch_all(region="Goa")]
        assert names == ["National"]
        names = sorted(item.name for item in await aggregator.fetch_all(region="kerala"))
        assert names == ["Kerala Only", "National"]

    async def test_category_filter(self) -> None:
        source = FakeSource(
            "state",
            [_make_listing("A", category="Merit"), _make_listing("B", category="Sports")],
        )
        listings = await _aggregator(source).fetch_all(category="merit")
        assert [item.name for item in listings] == ["A"]

    async def test_expired_listings_stay_in_feed(self) -> None:
        expired = _make_listing(deadline=datetime.now(UTC).date() - timedelta(days=3))
        listings = await _aggregator(FakeSource("state", [expired])).fetch_all()
        assert [item.name for item in listings] == ["Merit Award"]

    async def test_empty_result_is_cached(self) -> None:
        source = FakeSource("state", [])
        aggregator = _aggregator(source)
        assert await aggregator.fetch_all() == []
        assert await aggregator.fetch_all() == []
        assert source.calls == 1

    async def test_placeholder_mode_is_non_empty(self) -> None:
        aggregator = _aggregator(
            PlaceholderSource(SourceKind.NSP),
            PlaceholderSource(SourceKind.AICTE),
            PlaceholderSource(SourceKind.STATE),
        )
        listings = await aggregator.fetch_all()
        assert listings
        assert all(not item.is_live and "sample" in item.tags for item in listings)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_partial_failure_is_tolerated(self) -> None:
        good = FakeSource("nsp", [_make_listing()])
        bad = FakeSource("state")
        bad.fail = True
        aggregator = _aggregator(good, bad)
        listings = await aggregator.fetch_all()
        assert len(listings) == 1
        assert aggregator.last_result.sources_failed == ["state"]
        assert aggregator.last_result.sources_ok == ["nsp"]

    async def test_all_failed_serves_stale_cache(self) -> None:
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source, ttl=0.01)
        await aggregator.fetch_all()
        await asyncio.sleep(0.02)

        source.fail = True
        listings = await aggregator.fetch_all()
        assert [item.name for item in listings] == ["Merit Award"]
        assert listings[0].is_live is False
        assert aggregator.last_result.served_stale is True

    async def test_concurrent_callers_share_outage_cycle(self) -> None:
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source, ttl=0.01)
        await aggregator.fetch_all()
        await asyncio.sleep(0.02)

        source.fail = True
        source.delay = 0.2
        loop = asyncio.get_running_loop()
        started = loop.time()
        results = await asyncio.gather(*(aggregator.fetch_all() for _ in range(5)))
        elapsed = loop.time() - started

        assert source.calls == 2
        assert elapsed < 0.6
        assert all([item.name for item in r] == ["Merit Award"] for r in results)
        assert all(not r[0].is_live for r in results)

    async def test_outage_waiter_without_fallback_still_raises(self) -> None:
        source = FakeSource("state", delay=0.05)
        source.fail = True
        aggregator = _aggregator(source)
        stale, strict = await asyncio.gather(
            aggregator.fetch_all(),
            aggregator.fetch_all(allow_stale=False),
            return_exceptions=True,
        )
        assert stale == []
        assert isinstance(strict, AggregationError)
        assert source.calls == 1

    async def test_all_failed_without_cache_returns_empty(self) -> None:
        source = FakeSource("state")
        source.fail = True
        assert await _aggregator(source).fetch_all() == []

    async def test_all_failed_without_fallback_raises(self) -> None:
        source = FakeSource("state")
        source.fail = True
        with pytest.raises(AggregationError) as info:
            await _aggregator(source).fetch_all(force_refresh=True, allow_stale=False)
        assert info.value.errors[0].reason == "http_status"

    async def test_total_failure_leaves_snapshot_untouched(self) -> None:
        source = FakeSource("state", [_make_listing()])
        broadcaster = SubscriptionBroadcaster()
        aggregator = _aggregator(source, broadcaster=broadcaster)
        await aggregator.fetch_all()
        source.fail = True
        await aggregator.fetch_all(force_refresh=True)
        source.fail = False
        result = await aggregator.refresh(CacheKey())
        assert result.events == [], "recovery after an outage must not re-announce listings"

    async def test_stuck_source_is_cancelled_alone(self) -> None:
        fast = FakeSource("nsp", [_make_listing()])
        stuck = FakeSource("state", [_make_listing("Never")], delay=5)
        aggregator = _aggregator(fast, stuck, source_timeout=0.05)
        listings = await aggregator.fetch_all()
        assert [item.name for item in listings] == ["Merit Award"]
        assert aggregator.last_result.sources_failed == ["state"]
        assert "timeout" in aggregator.last_result.errors[0]

    async def test_crashing_source_is_contained(self) -> None:
        good = FakeSource("nsp", [_make_listing()])
        buggy = FakeSource("state")
        buggy.crash = True
        aggregator = _aggregator(good, buggy)
        assert len(await aggregator.fetch_all()) == 1
        assert "unexpected" in aggregator.last_result.errors[0]


# ---------------------------------------------------------------------------
# Events and bookkeeping
# ---------------------------------------------------------------------------


class TestEvents:
    async def test_cycle_events_are_published(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source, broadcaster=broadcaster)

        await aggregator.fetch_all()
        source.listings = [_make_listing(amount=20_000)]
        await aggregator.fetch_all(force_refresh=True)

        subscriber.close()
        types = [event.type async for event in subscriber]
        assert types == [
            StreamEventType.SYSTEM_STATUS,
            StreamEventType.NEW_SCHOLARSHIP,
            StreamEventType.SCHOLARSHIP_UPDATE,
        ]

    async def test_listing_announced_once_across_feeds(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        source = FakeSource("state", [_make_listing(category="General")])
        aggregator = _aggregator(source, broadcaster=broadcaster)

        await aggregator.fetch_all()
        await aggregator.fetch_all("Kerala")
        await aggregator.fetch_all(category="general")

        subscriber.close()
        types = [event.type async for event in subscriber]
        assert types.count(StreamEventType.NEW_SCHOLARSHIP) == 1
        assert len(aggregator.known_keys()) == 3

    async def test_update_seen_by_scoped_feed_announced_once(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        source = FakeSource("state", [_make_listing()])
        aggregator = _aggregator(source, broadcaster=broadcaster)
        await aggregator.fetch_all()
        await aggregator.fetch_all("Kerala")

        source.listings = [_make_listing(amount=20_000)]
        await aggregator.fetch_all(force_refresh=True)
        await aggregator.fetch_all("Kerala", force_refresh=True)

        subscriber.close()
        types = [event.type async for event in subscriber]
        assert types.count(StreamEventType.SCHOLARSHIP_UPDATE) == 1

    async def test_listing_only_in_scoped_feed_is_announced(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        source = FakeSource("state", [_make_listing("Kerala Only", eligible_regions=["Kerala"])])
        aggregator = _aggregator(source, broadcaster=broadcaster)

        assert await aggregator.fetch_all("Goa") == []
        await aggregator.fetch_all("Kerala")

        subscriber.close()
        names = [event.listing.name async for event in subscriber if event.listing is not None]
        assert names == ["Kerala Only"]

    async def test_refresh_returns_report(self) -> None:
        aggregator = _aggregator(FakeSource("state", [_make_listing()]))
        result = await aggregator.refresh(CacheKey.of("Kerala"))
        assert isinstance(result, AggregationResult)
        assert result.key == CacheKey.of("kerala")
        assert len(result.events) == 1
        data = result.to_dict()
        assert data["count"] == 1
        assert data["sources_ok"] == ["state"]
        assert aggregator.known_keys() == [CacheKey.of("kerala")]

    async def test_close_closes_sources(self) -> None:
        sources = [FakeSource("a"), FakeSource("b")]
        await _aggregator(*sources).close()
        assert all(s.closed for s in sources)
