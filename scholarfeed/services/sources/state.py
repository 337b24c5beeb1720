"""State government scholarship adapter.

The region filter is passed upstream as a path segment, so one cached
result exists per requested state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import quote

from scholarfeed.models.enums import SourceKind
from scholarfeed.models.listing import Listing
from scholarfeed.services.sources.base import (
    HTTPListingSource,
    first,
    parse_amount,
    parse_deadline,
    parse_grade,
    parse_regions,
    parse_requirements,
)


class StateSource(HTTPListingSource):
    kind = SourceKind.STATE
    family_tags = ("government", "state")

    def _path(self, region: str | None) -> str:
        if region and region.strip():
            return f"/scholarships/{quote(region.strip())}"
        return "/scholarships"

    def _normalize_item(self, item: dict[str, Any], now: datetime) -> Listing | None:
        return self._build(
            name=first(item, "name", "scheme", "title"),
            provider=first(item, "department", "provider") or "State Government",
            amount=parse_amount(first(item, "amount", "maxAmount")),
            category=str(first(item, "category") or "State"),
            description=first(item, "description", "summary"),
            regions=parse_regions(first(item, "state", "states", "eligibleStates")),
            min_grade=parse_grade(item.get("minGrade"), 8),
            max_grade=parse_grade(item.get("maxGrade"), 12),
            deadline=parse_deadline(first(item, "deadline", "lastDate")),
            requirements=parse_requirements(first(item, "eligibility", "requirements")),
            application_url=first(item, "url", "applyUrl", "link"),
            is_live=item.get("isActive") is not False,
            now=now,
        )
