"""Adapter for privately run scholarship feeds.

Each configured URL is an independent JSON endpoint.  URLs are fetched
concurrently and fail individually; the family only reports an error when
every URL failed.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import httpx
import structlog

from scholarfeed.models.enums import SourceKind
from scholarfeed.models.listing import Listing
from scholarfeed.services.sources.base import (
    HTTPListingSource,
    SourceFetchError,
    SourceOptions,
    first,
    parse_amount,
    parse_deadline,
    parse_grade,
    parse_regions,
    parse_requirements,
)

logger = structlog.get_logger(__name__)


class PrivateSource(HTTPListingSource):
    kind = SourceKind.PRIVATE
    family_tags = ("private",)

    def __init__(
        self,
        urls: list[str],
        *,
        options: SourceOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(options=options, transport=transport)
        self._urls = list(urls)

    @property
    def urls(self) -> list[str]:
        return list(self._urls)

    async def _fetch_listings(self, region: str | None) -> list[Listing]:
        if not self._urls:
            return []

        outcomes = await asyncio.gather(
            *(self._fetch_url(url) for url in self._urls),
            return_exceptions=True,
        )

        listings: list[Listing] = []
        errors: list[SourceFetchError] = []
        for url, outcome in zip(self._urls, outcomes, strict=True):
            if isinstance(outcome, SourceFetchError):
                logger.warning("source.private_url_failed", url=url, reason=outcome.reason)
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                listings.extend(outcome)

        if len(errors) == len(self._urls):
            reasons = sorted({e.reason for e in errors})
            raise SourceFetchError(
                self.name,
                errors[0].reason if len(reasons) == 1 else "transport",
                f"all {len(errors)} private sources failed",
            )
        return listings

    async def _fetch_url(self, url: str) -> list[Listing]:
        payload = await self._get_json(url)
        return self._normalize_payload(payload)

    def _normalize_item(self, item: dict[str, Any], now: datetime) -> Listing | None:
        return self._build(
            name=first(item, "title", "name"),
            provider=first(item, "provider", "company") or "Private Organization",
            amount=parse_amount(first(item, "amount", "value")),
            category=str(first(item, "category") or "Private"),
            description=first(item, "description", "summary"),
            regions=parse_regions(first(item, "eligibleStates", "states")),
            min_grade=parse_grade(item.get("minGrade"), 10),
            max_grade=parse_grade(item.get("maxGrade"), 12),
            deadline=parse_deadline(first(item, "deadline", "lastDate")),
            requirements=parse_requirements(first(item, "requirements", "eligibility")),
            application_url=first(item, "url", "applyUrl", "link"),
            is_live=item.get("isActive") is not False,
            now=now,
        )
