"""Tests for the background refresh scheduler."""

from __future__ import annotations

import asyncio

from scholarfeed.models import CacheKey, SourceKind
from scholarfeed.services.aggregator import ListingAggregator
from scholarfeed.services.broadcaster import SubscriptionBroadcaster
from scholarfeed.services.cache import ListingCache
from scholarfeed.services.changes import ChangeDetector
from scholarfeed.services.merge import MergeEngine
from scholarfeed.services.scheduler import RefreshScheduler
from scholarfeed.services.sources import PlaceholderSource


def _services() -> tuple[ListingAggregator, SubscriptionBroadcaster]:
    broadcaster = SubscriptionBroadcaster()
    aggregator = ListingAggregator(
        [PlaceholderSource(SourceKind.NSP), PlaceholderSource(SourceKind.STATE)],
        merge_engine=MergeEngine(),
        cache=ListingCache(default_ttl=60),
        detector=ChangeDetector(),
        broadcaster=broadcaster,
    )
    return aggregator, broadcaster


class BrokenAggregator:
    """Aggregator stand-in whose refresh always raises."""

    def known_keys(self) -> list[CacheKey]:
        return []

    async def refresh(self, key: CacheKey) -> None:
        raise RuntimeError("boom")


class TestRunOnce:
    async def test_refreshes_default_and_known_keys(self) -> None:
        aggregator, broadcaster = _services()
        await aggregator.fetch_all(region="Kerala")
        scheduler = RefreshScheduler(aggregator, broadcaster)

        results = await scheduler.run_once()

        assert [r.key for r in results] == [CacheKey(), CacheKey.of("kerala")]
        assert scheduler.cycles == 1
        assert scheduler.last_run is not None

    async def test_failed_refresh_is_logged_not_raised(self) -> None:
        scheduler = RefreshScheduler(BrokenAggregator(), SubscriptionBroadcaster())  # type: ignore[arg-type]
        assert await scheduler.run_once() == []


class TestLifecycle:
    async def test_start_and_graceful_stop(self) -> None:
        aggregator, broadcaster = _services()
        subscriber = broadcaster.subscribe()
        scheduler = RefreshScheduler(aggregator, broadcaster, interval_seconds=0.01)

        scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.cycles >= 1
        assert subscriber.closed, "stop should close every subscriber channel"
        events = [event async for event in subscriber]
        assert events[0].data["status"] == "connected"
        assert len(events) > 1, "the first tick should have published new listings"

    async def test_disabled_scheduler_does_not_start(self) -> None:
        aggregator, broadcaster = _services()
        scheduler = RefreshScheduler(aggregator, broadcaster, enabled=False)
        scheduler.start()
        assert not scheduler.is_running
        await scheduler.stop()

    async def test_stop_waits_for_in_flight_cycle(self) -> None:
        aggregator, broadcaster = _services()
        scheduler = RefreshScheduler(aggregator, broadcaster, interval_seconds=60)
        scheduler.start()
        await asyncio.sleep(0)  # let the first tick begin
        await scheduler.stop()
        assert scheduler.cycles == 1
        assert aggregator.last_result is not None

    async def test_start_is_idempotent(self) -> None:
        aggregator, broadcaster = _services()
        scheduler = RefreshScheduler(aggregator, broadcaster, interval_seconds=60)
        scheduler.start()
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()
        assert scheduler.cycles == 1
