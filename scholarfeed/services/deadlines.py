"""Deadline and priority helpers shared by the adapters, merge engine and
change detector."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Final, Literal

from scholarfeed.models.enums import Priority
from scholarfeed.models.listing import days_until

URGENT_DAYS: Final = 7
SOON_DAYS: Final = 30


def compute_priority(
    amount: float | None,
    days_left: int,
    *,
    high_threshold: float,
    mid_threshold: float,
) -> Priority:
    """Score a listing from its amount and days remaining.

    A missing amount counts as zero; a missing deadline should be passed in
    as a large ``days_left`` so it is never urgent by default.
    """
    value = amount or 0
    if value >= high_threshold or days_left <= URGENT_DAYS:
        return Priority.HIGH
    if value >= mid_threshold or days_left <= SOON_DAYS:
        return Priority.MEDIUM
    return Priority.LOW


def derived_tags(amount: float | None, days_left: int, *, high_threshold: float) -> set[str]:
    tags: set[str] = set()
    if amount is not None and amount >= high_threshold:
        tags.add("high-value")
    if 0 <= days_left <= SOON_DAYS:
        tags.add("urgent")
    return tags


@dataclass(frozen=True, slots=True)
class DeadlineStatus:
    status: Literal["expired", "urgent", "approaching", "normal"]
    days_left: int
    message: str


def deadline_status(deadline: date | None, today: date | None = None) -> DeadlineStatus:
    if deadline is None:
        return DeadlineStatus("normal", days_until(None), "No deadline specified")

    days_left = days_until(deadline, today)
    if days_left < 0:
        return DeadlineStatus("expired", 0, "Application deadline has passed")
    if days_left <= 3:
        plural = "" if days_left == 1 else "s"
        return DeadlineStatus("urgent", days_left, f"Only {days_left} day{plural} left!")
    if days_left <= URGENT_DAYS:
        return DeadlineStatus("approaching", days_left, f"{days_left} days remaining")
    return DeadlineStatus("normal", days_left, f"{days_left} days remaining")
