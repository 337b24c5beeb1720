"""National Scholarship Portal (NSP) adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any

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

_DEFAULT_PROVIDER = "Government of India"
_DEFAULT_APPLY_URL = "https://scholarships.gov.in/"


class NSPSource(HTTPListingSource):
    """Central government schemes published on scholarships.gov.in."""

    kind = SourceKind.NSP
    family_tags = ("government", "nsp")

    def _normalize_item(self, item: dict[str, Any], now: datetime) -> Listing | None:
        return self._build(
            name=first(item, "schemeName", "name"),
            provider=first(item, "ministry", "provider") or _DEFAULT_PROVIDER,
            amount=parse_amount(first(item, "maxAmount", "amount")),
            category=str(first(item, "schemeCategory", "category") or "General"),
            description=first(item, "description", "details"),
            regions=parse_regions(first(item, "states", "eligibleStates")),
            min_grade=parse_grade(item.get("minGrade"), 1),
            max_grade=parse_grade(item.get("maxGrade"), 12),
            deadline=parse_deadline(first(item, "lastDate", "deadline")),
            requirements=parse_requirements(first(item, "eligibility", "requirements")),
            application_url=first(item, "applyUrl", "url", "link") or _DEFAULT_APPLY_URL,
            is_live=item.get("isActive") is not False,
            now=now,
        )
