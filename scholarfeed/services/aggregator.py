"""Scholarship feed aggregation.

One aggregation cycle for a :class:`CacheKey`:

1. Fetch every registered source concurrently, each bounded by its own
   timeout so a stuck adapter is cancelled alone.
2. Merge, deduplicate and score the union with the :class:`MergeEngine`.
3. Filter to the key's region and category.
4. Overwrite the cached feed for the key (even with an empty list).
5. Diff against the previous snapshot for the key and publish the cycle's
   events to subscribers as one ordered batch.  A change observed by
   several feeds (the default feed and region or category scoped ones) is
   broadcast once.

When every source fails the cache and snapshot are left untouched and the
last-known-good feed is served, marked ``is_live=False``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from scholarfeed.models.enums import ChangeKind
from scholarfeed.models.listing import CacheKey, Listing
from scholarfeed.services.sources.base import SourceFetchError, SourceResult

if TYPE_CHECKING:
    from scholarfeed.models.events import ChangeEvent
    from scholarfeed.services.broadcaster import SubscriptionBroadcaster
    from scholarfeed.services.cache import ListingCache
    from scholarfeed.services.changes import ChangeDetector
    from scholarfeed.services.merge import MergeEngine
    from scholarfeed.services.sources.base import ListingSource

logger = structlog.get_logger(__name__)


class AggregationError(Exception):
    """Every source failed and stale data was not acceptable."""

    def __init__(self, key: CacheKey, errors: Sequence[SourceFetchError]) -> None:
        self.key = key
        self.errors = list(errors)
        super().__init__(f"all {len(self.errors)} sources failed for {key}")


# ---------------------------------------------------------------------------
# AggregationResult dataclass
# ---------------------------------------------------------------------------


@dataclass
class AggregationResult:
    """Report produced by one aggregation cycle."""

    key: CacheKey
    listings: list[Listing] = field(default_factory=list)
    events: list[ChangeEvent] = field(default_factory=list)
    sources_ok: list[str] = field(default_factory=list)
    sources_failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    served_stale: bool = False
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    failures: list[SourceFetchError] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "key": str(self.key),
            "count": len(self.listings),
            "events": len(self.events),
            "sources_ok": self.sources_ok,
            "sources_failed": self.sources_failed,
            "errors": self.errors,
            "served_stale": self.served_stale,
            "duration_seconds": round(self.duration_seconds, 3),
            "timestamp": self.timestamp.isoformat(),
        }


class _AnnouncementLog:
    """What has already been broadcast, per listing id.

    New and updated events share one content slot holding the announced
    fingerprint; deadline alerts and expiries hold the deadline they were
    sent for.
    """

    __slots__ = ("_sent",)

    def __init__(self) -> None:
        self._sent: dict[tuple[str, str], object] = {}

    def unsent(self, events: Iterable[ChangeEvent]) -> list[ChangeEvent]:
        fresh: list[ChangeEvent] = []
        for event in events:
            listing = event.listing
            if event.kind in (ChangeKind.NEW, ChangeKind.UPDATED):
                slot, marker = (listing.id, "content"), listing.fingerprint()
            else:
                slot, marker = (listing.id, event.kind.value), listing.deadline
            if self._sent.get(slot) == marker:
                continue
            self._sent[slot] = marker
            fresh.append(event)
        return fresh


# ---------------------------------------------------------------------------
# ListingAggregator
# ---------------------------------------------------------------------------


class ListingAggregator:
    """Runs aggregation cycles and serves the cached canonical feed.

    Parameters
    ----------
    sources:
        Registered sources.  Disabled families are simply not passed in.
    merge_engine:
        Merge/dedup/priority engine.
    cache:
        Feed cache keyed by :class:`CacheKey`.
    detector:
        Change detector holding the per-key snapshots.
    broadcaster:
        Receives the events of each successful cycle.
    source_timeout:
        Hard per-source bound for one cycle, in seconds.
    """

    def __init__(
        self,
        sources: Sequence[ListingSource],
        *,
        merge_engine: MergeEngine,
        cache: ListingCache,
        detector: ChangeDetector,
        broadcaster: SubscriptionBroadcaster,
        source_timeout: float = 10.0,
    ) -> None:
        self._sources = list(sources)
        self._merge = merge_engine
        self._cache = cache
        self._detector = detector
        self._broadcaster = broadcaster
        self._source_timeout = source_timeout
        self._cycle_lock = asyncio.Lock()
        self._inflight: dict[tuple[CacheKey, bool], asyncio.Task[AggregationResult]] = {}
        self._announced = _AnnouncementLog()
        self._known_keys: dict[CacheKey, None] = {}
        self._last_result: AggregationResult | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def sources(self) -> list[ListingSource]:
        return list(self._sources)

    @property
    def last_result(self) -> AggregationResult | None:
        """The result of the most recent cycle."""
        return self._last_result

    def known_keys(self) -> list[CacheKey]:
        """Every key a cycle has run for, in first-seen order."""
        return list(self._known_keys)

    async def fetch_all(
        self,
        region: str | None = None,
        category: str | None = None,
        *,
        force_refresh: bool = False,
        allow_stale: bool = True,
    ) -> list[Listing]:
        """Return the canonical feed for *region* / *category*.

        A cached feed within its TTL is returned directly.  Otherwise one
        cycle runs; concurrent callers for the same key share it, including
        during an outage when it ends in the stale fallback.  A forced
        refresh bypasses the per-source result caches too.

        Raises
        ------
        AggregationError
            Only when every source failed and *allow_stale* is false.
        """
        key = CacheKey.of(region, category)

        if not force_refresh:
            listings, found = await self._cache.get(key)
            if found:
                return listings

        slot = (key, force_refresh)
        task = self._inflight.get(slot)
        if task is None:
            task = asyncio.create_task(self._shared_cycle(key, force=force_refresh))
            self._inflight[slot] = task
            task.add_done_callback(lambda done: self._release(slot, done))

        result = await asyncio.shield(task)
        if result.served_stale and not allow_stale:
            raise AggregationError(key, result.failures)
        return result.listings

    async def refresh(self, key: CacheKey, *, allow_stale: bool = True) -> AggregationResult:
        """Run one cycle for *key* unconditionally."""
        async with self._cycle_lock:
            return await self._run_cycle(key, allow_stale=allow_stale)

    async def close(self) -> None:
        """Close every source's transport."""
        for source in self._sources:
            try:
                await source.close()
            except Exception:
                logger.warning("aggregator.source_close_failed", source=source.name, exc_info=True)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _shared_cycle(self, key: CacheKey, *, force: bool) -> AggregationResult:
        async with self._cycle_lock:
            # Another cycle may have filled the cache while we waited.
            if not force:
                listings, found = await self._cache.get(key)
                if found:
                    return AggregationResult(key=key, listings=listings)
            return await self._run_cycle(key, allow_stale=True, refresh_sources=force)

    def _release(self, slot: tuple[CacheKey, bool], task: asyncio.Task[AggregationResult]) -> None:
        if self._inflight.get(slot) is task:
            del self._inflight[slot]

    async def _run_cycle(
        self,
        key: CacheKey,
        *,
        allow_stale: bool,
        refresh_sources: bool = False,
    ) -> AggregationResult:
        start = time.monotonic()
        result = AggregationResult(key=key)
        self._known_keys.setdefault(key, None)

        logger.info("aggregator.cycle_start", key=str(key), sources=len(self._sources))

        outcomes = await asyncio.gather(
            *(self._fetch_source(s, key.region, refresh_sources) for s in self._sources)
        )

        collected: list[Listing] = []
        for outcome in outcomes:
            if outcome.ok:
                result.sources_ok.append(outcome.source)
                collected.extend(outcome.listings)
            else:
                result.sources_failed.append(outcome.source)
                result.errors.append(str(outcome.error))
                result.failures.append(outcome.error)

        if self._sources and len(result.failures) == len(self._sources):
            logger.error("aggregator.all_sources_failed", key=str(key), errors=result.errors)
            if not allow_stale:
                raise AggregationError(key, result.failures)
            result.listings = await self._stale_listings(key)
            result.served_stale = True
        else:
            merged = self._merge.merge(collected)
            result.listings = [item for item in merged if _in_scope(item, key)]
            await self._cache.set(key, result.listings)
            result.events = self._detector.detect(key, result.listings)
            fresh = self._announced.unsent(result.events)
            self._broadcaster.publish_batch(e.to_stream_event() for e in fresh)

        result.duration_seconds = time.monotonic() - start
        self._last_result = result

        logger.info(
            "aggregator.cycle_complete",
            key=str(key),
            count=len(result.listings),
            events=len(result.events),
            sources_ok=result.sources_ok,
            sources_failed=result.sources_failed,
            served_stale=result.served_stale,
            duration_s=round(result.duration_seconds, 3),
        )
        return result

    async def _fetch_source(
        self, source: ListingSource, region: str | None, refresh: bool = False
    ) -> SourceResult:
        try:
            return await asyncio.wait_for(source.fetch(region, refresh=refresh), timeout=self._source_timeout)
        except TimeoutError:
            error = SourceFetchError(source.name, "timeout", f"no response within {self._source_timeout}s")
        except Exception as exc:
            logger.warning("aggregator.source_crashed", source=source.name, exc_info=True)
            error = SourceFetchError(source.name, "unexpected", str(exc))
        logger.warning("source.fetch_failed", source=source.name, reason=error.reason, detail=error.detail)
        return SourceResult(source.name, error=error)

    async def _stale_listings(self, key: CacheKey) -> list[Listing]:
        entry = await self._cache.get_stale(key)
        if entry is None:
            logger.warning("aggregator.no_stale_data", key=str(key))
            return []
        logger.warning(
            "aggregator.serving_stale",
            key=str(key),
            count=len(entry.listings),
            age_s=round(entry.age_seconds, 1),
        )
        return [item.model_copy(update={"is_live": False}) for item in entry.listings]


def _in_scope(listing: Listing, key: CacheKey) -> bool:
    if key.region and not listing.matches_region(key.region):
        return False
    if key.category and listing.category.casefold() != key.category:
        return False
    return True
