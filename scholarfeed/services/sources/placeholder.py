"""Sample-data stand-in for a source family without credentials."""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from scholarfeed.data.seed import sample_listings
from scholarfeed.models.enums import SourceKind, SourceMode
from scholarfeed.models.listing import Listing
from scholarfeed.services.deadlines import compute_priority, derived_tags
from scholarfeed.services.sources.base import FAMILY_THRESHOLDS, SourceResult, slugify

logger = structlog.get_logger(__name__)


class PlaceholderSource:
    """Returns the bundled sample dataset for *kind*.

    Deadlines are re-anchored to the current day on every fetch, so the
    dataset is deterministic for a given date.  Never fails.
    """

    mode = SourceMode.PLACEHOLDER

    def __init__(self, kind: SourceKind, records: list[dict] | None = None) -> None:
        self.kind = kind
        self._records = records

    @property
    def name(self) -> str:
        return self.kind.value

    async def fetch(self, region: str | None = None, *, refresh: bool = False) -> SourceResult:
        today = datetime.now(UTC).date()
        high, mid = FAMILY_THRESHOLDS[self.kind]
        listings: list[Listing] = []
        for sample in sample_listings(self.kind, today=today, records=self._records):
            days_left = sample.days_left(today)
            tags = {*sample.tags, sample.category.lower(), slugify(sample.provider)}
            tags |= derived_tags(sample.amount, days_left, high_threshold=high)
            listings.append(
                sample.model_copy(
                    update={
                        "tags": sorted(tags),
                        "priority": compute_priority(
                            sample.amount, days_left, high_threshold=high, mid_threshold=mid
                        ),
                    }
                )
            )
        logger.debug("source.placeholder_served", source=self.name, count=len(listings))
        return SourceResult(self.name, listings)

    async def close(self) -> None:
        return None
