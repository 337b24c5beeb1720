"""Fan-out of stream events to live subscribers.

Publishing is synchronous and never blocks: every subscriber owns a
bounded channel, and a subscriber whose channel is full (or that fails in
any other way) is dropped and closed without affecting the others.  The
transport (SSE, websocket, test double) lives outside this module and only
has to satisfy :class:`Subscriber`.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from collections.abc import AsyncIterator, Iterable
from datetime import datetime
from typing import Protocol, runtime_checkable

import structlog

from scholarfeed.models.events import StreamEvent

logger = structlog.get_logger(__name__)


class SubscriberOverflow(Exception):
    """Raised by a subscriber whose buffer is full."""


@runtime_checkable
class Subscriber(Protocol):
    @property
    def closed(self) -> bool: ...

    def deliver(self, event: StreamEvent) -> None:
        """Enqueue *event* without blocking; raise if it cannot be accepted."""
        ...

    def close(self) -> None: ...


class QueueSubscriber:
    """Subscriber backed by a bounded :class:`asyncio.Queue`.

    Iterate with ``async for event in subscriber``; iteration ends once the
    subscriber is closed and its buffered events are drained.
    """

    _ids = itertools.count(1)

    def __init__(self, maxsize: int = 100) -> None:
        self.id = next(self._ids)
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: StreamEvent) -> None:
        if self._closed:
            raise SubscriberOverflow(f"subscriber {self.id} is closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            raise SubscriberOverflow(f"subscriber {self.id} buffer full") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a waiting reader; if the buffer is full it drains and then
        # sees the closed flag.
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def get(self) -> StreamEvent | None:
        """Next event, or ``None`` once the subscriber is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        event = await self._queue.get()
        return event

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class SubscriptionBroadcaster:
    """Delivers every published event to all current subscribers.

    Also keeps a bounded buffer of recently published events so clients
    that poll (rather than stream) can catch up.

    Parameters
    ----------
    queue_size:
        Buffer size of each :class:`QueueSubscriber`.
    recent_limit:
        Number of recent events retained for :meth:`recent`.
    """

    __slots__ = ("_queue_size", "_recent", "_subscribers")

    def __init__(self, *, queue_size: int = 100, recent_limit: int = 200) -> None:
        self._queue_size = queue_size
        self._subscribers: list[Subscriber] = []
        self._recent: deque[StreamEvent] = deque(maxlen=recent_limit)

    # -- Subscriptions ------------------------------------------------------

    def subscribe(self) -> QueueSubscriber:
        """Register a new queue-backed subscriber.

        The first event it receives is always the ``connected`` status.
        """
        subscriber = QueueSubscriber(self._queue_size)
        self.register(subscriber)
        return subscriber

    def register(self, subscriber: Subscriber) -> None:
        """Register any :class:`Subscriber` and greet it with ``connected``."""
        try:
            subscriber.deliver(StreamEvent.connected())
        except Exception:
            logger.warning("broadcaster.greeting_failed", exc_info=True)
            subscriber.close()
            return
        self._subscribers.append(subscriber)
        logger.info("broadcaster.subscribed", subscribers=len(self._subscribers))

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
            logger.info("broadcaster.unsubscribed", subscribers=len(self._subscribers))
        subscriber.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # -- Publishing ---------------------------------------------------------

    def publish(self, event: StreamEvent) -> None:
        self.publish_batch([event])

    def publish_batch(self, events: Iterable[StreamEvent]) -> None:
        """Deliver *events* to each subscriber contiguously and in order.

        A subscriber that raises is removed and closed; the remaining
        subscribers still receive the full batch.  Never raises.
        """
        batch = list(events)
        if not batch:
            return
        self._recent.extend(batch)

        dropped: list[Subscriber] = []
        for subscriber in list(self._subscribers):
            try:
                for event in batch:
                    subscriber.deliver(event)
            except Exception as exc:
                logger.warning(
                    "broadcaster.subscriber_dropped",
                    subscriber=getattr(subscriber, "id", None),
                    error=str(exc),
                )
                dropped.append(subscriber)

        for subscriber in dropped:
            self._subscribers.remove(subscriber)
            try:
                subscriber.close()
            except Exception:
                logger.warning("broadcaster.close_failed", exc_info=True)

        logger.debug(
            "broadcaster.published",
            events=len(batch),
            subscribers=len(self._subscribers),
            dropped=len(dropped),
        )

    def recent(self, limit: int = 50, since: datetime | None = None) -> list[StreamEvent]:
        """Most recent events, oldest first, optionally newer than *since*."""
        events = [e for e in self._recent if since is None or e.timestamp > since]
        return events[-limit:] if limit > 0 else []

    def close_all(self) -> None:
        subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            try:
                subscriber.close()
            except Exception:
                logger.warning("broadcaster.close_failed", exc_info=True)
        if subscribers:
            logger.info("broadcaster.closed_all", count=len(subscribers))
