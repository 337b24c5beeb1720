"""Tests for the subscription broadcaster and queue-backed subscribers."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from scholarfeed.models import StreamEvent, StreamEventType
from scholarfeed.services.broadcaster import (
    QueueSubscriber,
    Subscriber,
    SubscriberOverflow,
    SubscriptionBroadcaster,
)


def _event(n: int, **kwargs: object) -> StreamEvent:
    return StreamEvent.status("tick", n=n, **kwargs)


async def _drain(subscriber: QueueSubscriber) -> list[StreamEvent]:
    subscriber.close()
    return [event async for event in subscriber]


class FailingSubscriber:
    """Accepts the greeting, then fails on every delivery."""

    def __init__(self) -> None:
        self.greeted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: StreamEvent) -> None:
        if not self.greeted:
            self.greeted = True
            return
        raise ConnectionResetError("client went away")

    def close(self) -> None:
        self._closed = True


class TestQueueSubscriber:
    async def test_overflow_raises(self) -> None:
        subscriber = QueueSubscriber(maxsize=1)
        subscriber.deliver(_event(1))
        with pytest.raises(SubscriberOverflow):
            subscriber.deliver(_event(2))

    async def test_closed_subscriber_rejects_events(self) -> None:
        subscriber = QueueSubscriber()
        subscriber.close()
        with pytest.raises(SubscriberOverflow):
            subscriber.deliver(_event(1))

    async def test_iteration_drains_then_stops(self) -> None:
        subscriber = QueueSubscriber()
        subscriber.deliver(_event(1))
        subscriber.deliver(_event(2))
        events = await _drain(subscriber)
        assert [e.data["n"] for e in events] == [1, 2]

    async def test_close_wakes_waiting_reader(self) -> None:
        subscriber = QueueSubscriber()
        reader = asyncio.create_task(subscriber.get())
        await asyncio.sleep(0)
        subscriber.close()
        assert await asyncio.wait_for(reader, timeout=1) is None

    def test_satisfies_protocol(self) -> None:
        assert isinstance(QueueSubscriber(), Subscriber)


class TestSubscriptionBroadcaster:
    async def test_first_event_is_connected_status(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        [first] = await _drain(subscriber)
        assert first.type is StreamEventType.SYSTEM_STATUS
        assert first.data["status"] == "connected"

    async def test_publish_reaches_every_subscriber(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscribers = [broadcaster.subscribe() for _ in range(3)]
        broadcaster.publish(_event(1))
        for subscriber in subscribers:
            events = await _drain(subscriber)
            assert [e.data.get("n") for e in events[1:]] == [1]

    async def test_failing_subscriber_does_not_affect_others(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        healthy = broadcaster.subscribe()
        failing = FailingSubscriber()
        broadcaster.register(failing)
        also_healthy = broadcaster.subscribe()
        assert broadcaster.subscriber_count == 3

        broadcaster.publish(_event(1))

        assert broadcaster.subscriber_count == 2
        assert failing.closed
        for subscriber in (healthy, also_healthy):
            assert [e.data.get("n") for e in (await _drain(subscriber))[1:]] == [1]

    async def test_slow_subscriber_is_dropped_on_overflow(self) -> None:
        broadcaster = SubscriptionBroadcaster(queue_size=2)
        slow = broadcaster.subscribe()
        broadcaster.publish_batch([_event(1), _event(2)])
        assert broadcaster.subscriber_count == 0
        assert slow.closed

    async def test_batch_is_delivered_in_order(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        broadcaster.publish_batch([_event(1), _event(2), _event(3)])
        broadcaster.publish(_event(4))
        events = await _drain(subscriber)
        assert [e.data.get("n") for e in events[1:]] == [1, 2, 3, 4]

    async def test_publish_without_subscribers(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        broadcaster.publish(_event(1))  # should not raise
        assert len(broadcaster.recent()) == 1

    async def test_unsubscribe_closes(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscriber = broadcaster.subscribe()
        broadcaster.unsubscribe(subscriber)
        assert broadcaster.subscriber_count == 0
        assert subscriber.closed

    async def test_close_all(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        subscribers = [broadcaster.subscribe() for _ in range(2)]
        broadcaster.close_all()
        assert broadcaster.subscriber_count == 0
        assert all(s.closed for s in subscribers)


class TestRecentEvents:
    def test_buffer_is_bounded(self) -> None:
        broadcaster = SubscriptionBroadcaster(recent_limit=3)
        broadcaster.publish_batch([_event(i) for i in range(5)])
        assert [e.data["n"] for e in broadcaster.recent()] == [2, 3, 4]

    def test_limit(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        broadcaster.publish_batch([_event(i) for i in range(5)])
        assert [e.data["n"] for e in broadcaster.recent(limit=2)] == [3, 4]

    def test_since_filters_older_events(self) -> None:
        broadcaster = SubscriptionBroadcaster()
        cutoff = datetime.now(UTC)
        old = StreamEvent.status("old").model_copy(update={"timestamp": cutoff - timedelta(minutes=1)})
        new = StreamEvent.status("new").model_copy(update={"timestamp": cutoff + timedelta(minutes=1)})
        broadcaster.publish_batch([old, new])
        assert [e.data["status"] for e in broadcaster.recent(since=cutoff)] == ["new"]
