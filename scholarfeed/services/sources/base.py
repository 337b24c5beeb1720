"""Shared machinery for scholarship source adapters.

Every adapter satisfies :class:`ListingSource`: ``fetch`` never raises and
never blocks past the configured timeout.  Failures come back as a
:class:`SourceFetchError` inside the :class:`SourceResult`, so one broken
provider only means "this source contributed nothing this cycle".

Live HTTP adapters subclass :class:`HTTPListingSource` and implement the
provider-specific pieces: the request path and the mapping of one raw
record onto :class:`Listing`.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, ClassVar, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from scholarfeed.models.enums import SourceKind, SourceMode
from scholarfeed.models.listing import CacheKey, Listing, days_until
from scholarfeed.services.cache import ListingCache
from scholarfeed.services.deadlines import compute_priority, derived_tags

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_USER_AGENT = "ScholarFeed/1.0 (Scholarship Aggregator)"
_ENVELOPE_KEYS = ("data", "results", "records", "scholarships", "items")
_REQUIREMENT_SPLIT_RE = re.compile(r"[\n;]+")
_REGION_SPLIT_RE = re.compile(r"[,|]")
_AMOUNT_NOISE_RE = re.compile(r"(?i)(rs\.?|inr|₹|,|\s)")
_SLUG_RE = re.compile(r"\s+")
_DATE_FORMATS = ("%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d", "%d %B %Y", "%d %b %Y", "%B %d, %Y")

# Provisional (high, mid) amount thresholds per family.
FAMILY_THRESHOLDS: dict[SourceKind, tuple[float, float]] = {
    SourceKind.NSP: (50_000, 20_000),
    SourceKind.AICTE: (50_000, 20_000),
    SourceKind.STATE: (30_000, 10_000),
    SourceKind.PRIVATE: (100_000, 50_000),
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class SourceFetchError(Exception):
    """A non-fatal failure of one source for one fetch cycle."""

    def __init__(self, source: str, reason: str, detail: str = "", *, status_code: int | None = None) -> None:
        self.source = source
        self.reason = reason
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{source}: {reason}" + (f" ({detail})" if detail else ""))


@dataclass
class SourceResult:
    """Outcome of one ``fetch`` call: listings, or an error and no listings."""

    source: str
    listings: list[Listing] = field(default_factory=list)
    error: SourceFetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class ListingSource(Protocol):
    """Async scholarship source interface."""

    name: str
    kind: SourceKind
    mode: SourceMode

    async def fetch(self, region: str | None = None, *, refresh: bool = False) -> SourceResult: ...

    async def close(self) -> None: ...


@dataclass(frozen=True, slots=True)
class SourceOptions:
    """Transport options shared by all live adapters."""

    timeout: float = 4.0
    retry_attempts: int = 2
    cache_ttl: float = 300


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def first(item: dict[str, Any], *keys: str) -> Any:
    """Return the first present, non-empty value among *keys*."""
    for key in keys:
        value = item.get(key)
        if value is not None and value != "" and value != []:
            return value
    return None


def parse_amount(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        amount = float(value)
    elif isinstance(value, str):
        cleaned = _AMOUNT_NOISE_RE.sub("", value)
        try:
            amount = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(amount) or amount < 0:
        return None
    return amount


def parse_deadline(value: Any) -> date | None:
    """Parse an upstream deadline; anything unrecognisable means no deadline."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_regions(value: Any) -> list[str]:
    if not value:
        return ["All"]
    if isinstance(value, list | tuple):
        regions = [str(v).strip() for v in value if str(v).strip()]
    else:
        regions = [r.strip() for r in _REGION_SPLIT_RE.split(str(value)) if r.strip()]
    return regions or ["All"]


def parse_requirements(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, list | tuple):
        return [str(v).strip() for v in value if str(v).strip()]
    return [r.strip() for r in _REQUIREMENT_SPLIT_RE.split(str(value)) if r.strip()]


def parse_grade(value: Any, default: int) -> int:
    try:
        grade = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return grade if 0 <= grade <= 20 else default


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", text.strip().lower())


# ---------------------------------------------------------------------------
# HTTPListingSource
# ---------------------------------------------------------------------------


class HTTPListingSource:
    """Base class for live adapters backed by one JSON HTTP API.

    Parameters
    ----------
    base_url:
        Root URL of the provider API.
    api_key:
        Bearer credential sent with every request, if any.
    options:
        Timeout, retry and result-cache settings.
    transport:
        Optional httpx transport (used by tests to stub the provider).
    """

    kind: ClassVar[SourceKind]
    mode: SourceMode = SourceMode.LIVE

    family_tags: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        *,
        base_url: str = "",
        api_key: str | None = None,
        options: SourceOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._options = options or SourceOptions()
        self._api_key = api_key
        headers = {"User-Agent": _USER_AGENT, "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=self._options.timeout,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )
        self._results = ListingCache(default_ttl=self._options.cache_ttl, max_entries=64)

    @property
    def name(self) -> str:
        return self.kind.value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch(self, region: str | None = None, *, refresh: bool = False) -> SourceResult:
        """Fetch listings for *region*.

        Results are cached per region for the family TTL; *refresh* skips
        the cached result and always goes upstream.
        """
        key = CacheKey.of(region)
        if not refresh:
            cached, found = await self._results.get(key)
            if found:
                logger.debug("source.cache_hit", source=self.name, key=str(key), count=len(cached))
                return SourceResult(self.name, cached)

        try:
            listings = await self._fetch_listings(region)
        except SourceFetchError as exc:
            logger.warning(
                "source.fetch_failed",
                source=self.name,
                reason=exc.reason,
                status=exc.status_code,
                detail=exc.detail,
            )
            return SourceResult(self.name, error=exc)

        await self._results.set(key, listings)
        logger.info("source.fetched", source=self.name, key=str(key), count=len(listings))
        return SourceResult(self.name, listings)

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def _path(self, region: str | None) -> str:
        return "/scholarships"

    def _normalize_item(self, item: dict[str, Any], now: datetime) -> Listing | None:
        raise NotImplementedError

    async def _fetch_listings(self, region: str | None) -> list[Listing]:
        payload = await self._get_json(self._path(region))
        return self._normalize_payload(payload)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_json(self, url: str) -> Any:
        """GET *url* and decode JSON, retrying transport errors only."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self._options.retry_attempts),
            wait=wait_exponential(multiplier=0.2, max=1),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise SourceFetchError(self.name, "timeout", url) from exc
        except httpx.HTTPStatusError as exc:
            raise SourceFetchError(
                self.name, "http_status", url, status_code=exc.response.status_code
            ) from exc
        except httpx.TransportError as exc:
            raise SourceFetchError(self.name, "transport", str(exc)) from exc
        except ValueError as exc:
            raise SourceFetchError(self.name, "parse", "response is not valid JSON") from exc

    def _normalize_payload(self, payload: Any) -> list[Listing]:
        if isinstance(payload, dict):
            for key in _ENVELOPE_KEYS:
                if isinstance(payload.get(key), list):
                    payload = payload[key]
                    break
        if not isinstance(payload, list):
            raise SourceFetchError(self.name, "parse", f"expected a list, got {type(payload).__name__}")

        now = datetime.now(UTC)
        listings: list[Listing] = []
        skipped = 0
        for item in payload:
            if not isinstance(item, dict):
                skipped += 1
                continue
            try:
                listing = self._normalize_item(item, now)
            except (ValidationError, TypeError, ValueError, ArithmeticError):
                logger.debug("source.record_invalid", source=self.name, exc_info=True)
                listing = None
            if listing is None:
                skipped += 1
                continue
            listings.append(listing)

        if skipped:
            logger.info("source.records_skipped", source=self.name, skipped=skipped, kept=len(listings))
        return listings

    def _build(
        self,
        *,
        name: Any,
        provider: Any,
        amount: float | None,
        category: str,
        description: Any = "",
        regions: list[str],
        min_grade: int,
        max_grade: int,
        deadline: date | None,
        requirements: list[str],
        application_url: Any = "",
        is_live: bool = True,
        now: datetime,
        extra_tags: Iterable[str] = (),
    ) -> Listing | None:
        """Assemble a listing with this family's provisional priority and tags."""
        if not name or not provider:
            return None
        high, mid = FAMILY_THRESHOLDS[self.kind]
        days_left = days_until(deadline, now.date())
        tags = {*self.family_tags, category.lower(), slugify(str(provider)), *extra_tags}
        tags |= derived_tags(amount, days_left, high_threshold=high)
        return Listing(
            name=str(name),
            provider=str(provider),
            amount=amount,
            category=category,
            description=str(description or ""),
            tags=sorted(tags),
            eligible_regions=regions,
            min_grade=min_grade,
            max_grade=max_grade,
            deadline=deadline,
            requirements=requirements,
            application_url=str(application_url or ""),
            source_kind=self.kind,
            priority=compute_priority(amount, days_left, high_threshold=high, mid_threshold=mid),
            last_updated=now,
            is_live=is_live,
        )
