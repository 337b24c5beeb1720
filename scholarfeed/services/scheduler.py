"""Periodic background refresh of every known feed.

Each tick refreshes the default (unfiltered) feed plus every key a client
has requested so far, one cycle at a time through the aggregator's cycle
lock.  Cycle events reach subscribers through the aggregator.

Shutdown is graceful: :meth:`RefreshScheduler.stop` stops scheduling new
cycles, lets the in-flight cycle finish (bounded wait), and then closes
every subscriber channel.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from scholarfeed.models.listing import CacheKey

if TYPE_CHECKING:
    from scholarfeed.services.aggregator import AggregationResult, ListingAggregator
    from scholarfeed.services.broadcaster import SubscriptionBroadcaster

logger = structlog.get_logger(__name__)


class RefreshScheduler:
    """Runs aggregation cycles on a fixed interval.

    Parameters
    ----------
    aggregator:
        The :class:`ListingAggregator` to drive.
    broadcaster:
        Closed on shutdown so stream consumers terminate cleanly.
    interval_seconds:
        Pause between the end of one tick and the start of the next.
    enabled:
        When false, :meth:`start` is a no-op (on-demand refresh only).
    """

    def __init__(
        self,
        aggregator: ListingAggregator,
        broadcaster: SubscriptionBroadcaster,
        *,
        interval_seconds: float = 120.0,
        enabled: bool = True,
    ) -> None:
        self._aggregator = aggregator
        self._broadcaster = broadcaster
        self._interval = interval_seconds
        self._enabled = enabled
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._stop_event = asyncio.Event()
        self._running = False
        self._last_run: datetime | None = None
        self._cycles = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether the background loop is currently active."""
        return self._running

    @property
    def last_run(self) -> datetime | None:
        """Completion time of the last tick."""
        return self._last_run

    @property
    def cycles(self) -> int:
        return self._cycles

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the background task and return immediately."""
        if not self._enabled:
            logger.info("scheduler.auto_refresh_disabled")
            return
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._running = True
        self._task = asyncio.create_task(self._run_forever(), name="scholarfeed-refresh")
        logger.info("scheduler.started", interval_s=self._interval)

    async def _run_forever(self) -> None:
        try:
            while self._running:
                await self.run_once()
                if not self._running:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except TimeoutError:
                    continue
        except asyncio.CancelledError:
            logger.info("scheduler.cancelled")
        except Exception:
            logger.error("scheduler.loop_error", exc_info=True)
        finally:
            self._running = False
            logger.info("scheduler.loop_stopped")

    async def run_once(self) -> list[AggregationResult]:
        """Refresh the default feed and every known key once."""
        keys = [CacheKey()]
        keys.extend(k for k in self._aggregator.known_keys() if k != CacheKey())

        results: list[AggregationResult] = []
        for key in keys:
            if self._task is not None and not self._running:
                break
            result = await self._safe_refresh(key)
            if result is not None:
                results.append(result)

        self._cycles += 1
        self._last_run = datetime.now(UTC)
        return results

    async def _safe_refresh(self, key: CacheKey) -> AggregationResult | None:
        try:
            result = await self._aggregator.refresh(key)
        except Exception:
            logger.error("scheduler.refresh_failed", key=str(key), exc_info=True)
            return None
        logger.debug(
            "scheduler.refresh_complete",
            key=str(key),
            count=len(result.listings),
            events=len(result.events),
            served_stale=result.served_stale,
        )
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop scheduling, wait for the in-flight cycle, close subscribers."""
        logger.info("scheduler.stopping")
        self._running = False
        self._stop_event.set()

        if self._task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            except TimeoutError:
                logger.warning("scheduler.stop_timeout", timeout_s=timeout)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        self._broadcaster.close_all()
        logger.info("scheduler.stopped")
