"""ScholarFeed service layer: sources, merge, cache, aggregation, change
detection, broadcasting and scheduled refresh.

Public API::

    from scholarfeed.services import (
        ListingAggregator,
        MergeEngine,
        ListingCache,
        ChangeDetector,
        SubscriptionBroadcaster,
        RefreshScheduler,
    )
"""

from __future__ import annotations

from scholarfeed.services.aggregator import AggregationError, AggregationResult, ListingAggregator
from scholarfeed.services.broadcaster import (
    QueueSubscriber,
    Subscriber,
    SubscriberOverflow,
    SubscriptionBroadcaster,
)
from scholarfeed.services.cache import CacheEntry, ListingCache
from scholarfeed.services.changes import ChangeDetector
from scholarfeed.services.merge import MergeEngine
from scholarfeed.services.scheduler import RefreshScheduler

__all__ = [
    "AggregationError",
    "AggregationResult",
    "CacheEntry",
    "ChangeDetector",
    "ListingAggregator",
    "ListingCache",
    "MergeEngine",
    "QueueSubscriber",
    "RefreshScheduler",
    "Subscriber",
    "SubscriberOverflow",
    "SubscriptionBroadcaster",
]
