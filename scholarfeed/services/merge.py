"""Merge, deduplication and priority scoring of adapter output.

Listings from every source are folded into one canonical feed keyed by the
normalized ``(name, provider)`` pair.  The fold is deterministic: inputs are
stably pre-sorted by source trust so the most trusted record is always the
"later seen" one, and every collision rule below is applied pairwise.

==================  ==================================================
Field               Rule
==================  ==================================================
text fields         non-empty wins, then the longer value, then the
                    lexicographically greater value
amount              later non-zero value, else the earlier value
regions, reqs       longer list wins; equal length keeps the earlier
url, deadline       later non-empty value
grades              later record's band
tags                union of non-derived tags
last_updated        maximum
is_live             logical OR
source_kind         most trusted contributor
==================  ==================================================

"Later seen" is therefore arrival order only within one trust tier.  Two
state records for the same scholarship keep the later amount, but when
NSP reports 10000 and a private source reports 15000 the merged amount is
10000, because the NSP record sorts last.

Priority and the derived ``high-value`` / ``urgent`` tags are recomputed
from the merged values after folding; this module is their only writer.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime

import structlog

from scholarfeed.models.listing import DERIVED_TAGS, Listing
from scholarfeed.services.deadlines import compute_priority, derived_tags

logger = structlog.get_logger(__name__)

_TEXT_FIELDS = ("name", "provider", "category", "description")


class MergeEngine:
    """Folds raw adapter listings into the canonical, sorted feed.

    Parameters
    ----------
    high_threshold:
        Amount at or above which a listing is ``high`` priority and tagged
        ``high-value``.
    mid_threshold:
        Amount at or above which a listing is at least ``medium`` priority.
    """

    __slots__ = ("_high", "_mid")

    def __init__(self, *, high_threshold: float = 50_000, mid_threshold: float = 20_000) -> None:
        self._high = high_threshold
        self._mid = mid_threshold

    def merge(self, listings: Iterable[Listing], today: date | None = None) -> list[Listing]:
        """Return one listing per natural key, scored and sorted.

        Idempotent: merging the output again (alone or concatenated with
        itself) yields the same feed for the same *today*.
        """
        today = today or datetime.now(UTC).date()
        ordered = sorted(listings, key=lambda item: item.source_kind.trust)

        by_key: dict[tuple[str, str], Listing] = {}
        for listing in ordered:
            key = listing.dedup_key
            existing = by_key.get(key)
            by_key[key] = listing if existing is None else self._merge_pair(existing, listing)

        merged = [self._score(listing, today) for listing in by_key.values()]
        merged.sort(key=_sort_key)
        return merged

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _merge_pair(self, earlier: Listing, later: Listing) -> Listing:
        """Merge two records sharing a natural key; *later* is more trusted."""
        update: dict = {}

        for field_name in _TEXT_FIELDS:
            a, b = getattr(earlier, field_name), getattr(later, field_name)
            update[field_name] = _pick_text(a, b)
            if a and b and a != b:
                logger.debug(
                    "merge.text_conflict",
                    id=earlier.id,
                    field=field_name,
                    kept=update[field_name],
                )

        update["amount"] = later.amount if later.amount else earlier.amount

        update["eligible_regions"] = _pick_list(earlier.eligible_regions, later.eligible_regions)
        update["requirements"] = _pick_list(earlier.requirements, later.requirements)

        update["application_url"] = later.application_url or earlier.application_url
        update["deadline"] = later.deadline or earlier.deadline
        update["min_grade"] = later.min_grade
        update["max_grade"] = later.max_grade

        update["tags"] = sorted(
            {t for t in (*earlier.tags, *later.tags) if t not in DERIVED_TAGS}
        )
        update["last_updated"] = max(earlier.last_updated, later.last_updated)
        update["is_live"] = earlier.is_live or later.is_live
        update["source_kind"] = max(earlier.source_kind, later.source_kind, key=lambda k: k.trust)

        if earlier.amount and later.amount and earlier.amount != later.amount:
            logger.debug(
                "merge.amount_conflict",
                id=earlier.id,
                earlier=earlier.amount,
                later=later.amount,
                kept=update["amount"],
            )

        return earlier.model_copy(update=update)

    def _score(self, listing: Listing, today: date) -> Listing:
        days_left = listing.days_left(today)
        tags = {t for t in listing.tags if t not in DERIVED_TAGS}
        tags |= derived_tags(listing.amount, days_left, high_threshold=self._high)
        priority = compute_priority(
            listing.amount,
            days_left,
            high_threshold=self._high,
            mid_threshold=self._mid,
        )
        return listing.model_copy(update={"tags": sorted(tags), "priority": priority})


def _pick_text(a: str, b: str) -> str:
    if not a or not b:
        return a or b
    if len(a) != len(b):
        return a if len(a) > len(b) else b
    return max(a, b)


def _pick_list(earlier: list[str], later: list[str]) -> list[str]:
    # TODO: "longer list wins" can drop a shorter but more accurate list
    # from a trusted source; revisit once providers publish revision dates.
    return list(later) if len(later) > len(earlier) else list(earlier)


def _sort_key(listing: Listing) -> tuple:
    return (-listing.priority.rank, -(listing.amount or 0), listing.name.lower(), listing.id)
