"""AICTE (technical education) scholarship adapter."""

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

_PROVIDER = "AICTE, Government of India"
_DEFAULT_APPLY_URL = "https://www.aicte-india.org/schemes/students-development-schemes"


class AICTESource(HTTPListingSource):
    """Schemes for students admitted to AICTE-approved institutions.

    AICTE schemes are national and target final-year school leavers, so
    regions and grades default to ``All`` and 12.
    """

    kind = SourceKind.AICTE
    family_tags = ("government", "aicte", "technical")

    def _normalize_item(self, item: dict[str, Any], now: datetime) -> Listing | None:
        return self._build(
            name=first(item, "title", "name"),
            provider=_PROVIDER,
            amount=parse_amount(first(item, "amount", "maxAmount")),
            category=str(first(item, "category", "segment") or "Technical"),
            description=first(item, "description", "summary"),
            regions=parse_regions(first(item, "states", "eligibleStates")),
            min_grade=parse_grade(item.get("minGrade"), 12),
            max_grade=parse_grade(item.get("maxGrade"), 12),
            deadline=parse_deadline(first(item, "deadline", "lastDate")),
            requirements=parse_requirements(first(item, "eligibility", "requirements")),
            application_url=first(item, "url", "link", "applyUrl") or _DEFAULT_APPLY_URL,
            is_live=item.get("isActive") is not False,
            now=now,
        )
