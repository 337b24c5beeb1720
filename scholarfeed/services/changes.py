"""Change detection between consecutive snapshots of one feed.

Each cache key keeps exactly one retained snapshot.  ``detect`` compares
the freshly merged feed with it, classifies every difference, and then
replaces the snapshot, so each change is reported once per transition.

Change kinds:
    * ``new`` -- the listing id was not in the previous snapshot.
    * ``updated`` -- the content fingerprint changed.  Fetch timestamps,
      liveness and computed priority are not content and never trigger it.
    * ``deadline_approaching`` -- the listing entered the alert window
      since the previous check (edge-triggered).
    * ``expired`` -- the deadline passed since the previous check.

There is no baseline priming: on the first cycle for a key every listing
is reported as ``new``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime

import structlog

from scholarfeed.models.enums import ChangeKind
from scholarfeed.models.events import ChangeEvent
from scholarfeed.models.listing import CacheKey, Listing
from scholarfeed.services.deadlines import deadline_status

logger = structlog.get_logger(__name__)

_KIND_ORDER = (
    ChangeKind.NEW,
    ChangeKind.UPDATED,
    ChangeKind.DEADLINE_APPROACHING,
    ChangeKind.EXPIRED,
)


@dataclass(frozen=True, slots=True)
class _Seen:
    listing: Listing
    fingerprint: str
    days_left: int | None


class ChangeDetector:
    """Classifies feed differences into :class:`ChangeEvent` objects.

    Parameters
    ----------
    alert_days:
        Width of the deadline alert window in days (inclusive).
    """

    __slots__ = ("_alert_days", "_snapshots")

    def __init__(self, alert_days: int = 7) -> None:
        self._alert_days = alert_days
        self._snapshots: dict[CacheKey, dict[str, _Seen]] = {}

    def detect(
        self,
        key: CacheKey,
        listings: list[Listing],
        today: date | None = None,
    ) -> list[ChangeEvent]:
        """Diff *listings* against the retained snapshot and replace it.

        Events are ordered by kind (new, updated, deadline_approaching,
        expired) and by feed order within a kind.
        """
        today = today or datetime.now(UTC).date()
        before = self._snapshots.get(key, {})
        now = datetime.now(UTC)

        buckets: dict[ChangeKind, list[ChangeEvent]] = {kind: [] for kind in _KIND_ORDER}
        current: dict[str, _Seen] = {}

        for listing in listings:
            fingerprint = listing.fingerprint()
            days_left = listing.days_left(today) if listing.deadline else None
            current[listing.id] = _Seen(listing, fingerprint, days_left)
            old = before.get(listing.id)

            if old is None:
                buckets[ChangeKind.NEW].append(
                    ChangeEvent(
                        kind=ChangeKind.NEW,
                        listing=listing,
                        detected_at=now,
                        days_left=days_left,
                        message=f"New scholarship: {listing.name}",
                    )
                )
            elif old.fingerprint != fingerprint:
                buckets[ChangeKind.UPDATED].append(
                    ChangeEvent(
                        kind=ChangeKind.UPDATED,
                        listing=listing,
                        detected_at=now,
                        days_left=days_left,
                        message=f"Scholarship updated: {listing.name}",
                    )
                )

            if days_left is None:
                continue

            if 0 <= days_left <= self._alert_days and (
                old is None or old.days_left is None or old.days_left > self._alert_days
            ):
                buckets[ChangeKind.DEADLINE_APPROACHING].append(
                    ChangeEvent(
                        kind=ChangeKind.DEADLINE_APPROACHING,
                        listing=listing,
                        detected_at=now,
                        days_left=days_left,
                        message=deadline_status(listing.deadline, today).message,
                    )
                )

            if days_left < 0 and (old is None or old.days_left is None or old.days_left >= 0):
                buckets[ChangeKind.EXPIRED].append(
                    ChangeEvent(
                        kind=ChangeKind.EXPIRED,
                        listing=listing,
                        detected_at=now,
                        days_left=days_left,
                        message="Application deadline has passed",
                    )
                )

        self._snapshots[key] = current

        events = [event for kind in _KIND_ORDER for event in buckets[kind]]
        if events:
            logger.info(
                "changes.detected",
                key=str(key),
                new=len(buckets[ChangeKind.NEW]),
                updated=len(buckets[ChangeKind.UPDATED]),
                deadline_approaching=len(buckets[ChangeKind.DEADLINE_APPROACHING]),
                expired=len(buckets[ChangeKind.EXPIRED]),
            )
        return events

    def snapshot(self, key: CacheKey) -> list[Listing]:
        """Listings retained from the last ``detect`` call for *key*."""
        return [seen.listing for seen in self._snapshots.get(key, {}).values()]

    def forget(self, key: CacheKey) -> None:
        self._snapshots.pop(key, None)
