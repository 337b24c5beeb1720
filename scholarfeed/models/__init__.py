from scholarfeed.models.enums import (
    ChangeKind,
    Priority,
    SourceKind,
    SourceMode,
    StreamEventType,
)
from scholarfeed.models.events import ChangeEvent, StreamEvent
from scholarfeed.models.listing import (
    ALL_REGIONS,
    DERIVED_TAGS,
    SAMPLE_TAG,
    CacheKey,
    Listing,
    days_until,
    dedup_key,
    listing_id,
)

__all__ = [
    "ALL_REGIONS",
    "CacheKey",
    "ChangeEvent",
    "ChangeKind",
    "DERIVED_TAGS",
    "Listing",
    "Priority",
    "SAMPLE_TAG",
    "SourceKind",
    "SourceMode",
    "StreamEvent",
    "StreamEventType",
    "days_until",
    "dedup_key",
    "listing_id",
]
