"""Selects a live, placeholder or disabled adapter per source family."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from scholarfeed.models.enums import SourceKind
from scholarfeed.services.sources.aicte import AICTESource
from scholarfeed.services.sources.base import ListingSource, SourceOptions
from scholarfeed.services.sources.nsp import NSPSource
from scholarfeed.services.sources.placeholder import PlaceholderSource
from scholarfeed.services.sources.private import PrivateSource
from scholarfeed.services.sources.state import StateSource

if TYPE_CHECKING:
    from config.settings import Settings

logger = structlog.get_logger(__name__)


def build_sources(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ListingSource]:
    """Construct every registered source from *settings*.

    A family without an API key is served from sample data.  The private
    family has no sample data: without configured URLs it is disabled and
    left out entirely, so it never counts toward a total failure.
    """

    def options(ttl: float) -> SourceOptions:
        return SourceOptions(
            timeout=settings.source_timeout_seconds,
            retry_attempts=settings.source_retry_attempts,
            cache_ttl=ttl,
        )

    sources: list[ListingSource] = []

    if settings.nsp_api_key:
        sources.append(
            NSPSource(
                base_url=settings.nsp_base_url,
                api_key=settings.nsp_api_key,
                options=options(settings.nsp_cache_ttl),
                transport=transport,
            )
        )
    else:
        sources.append(PlaceholderSource(SourceKind.NSP))

    if settings.aicte_api_key:
        sources.append(
            AICTESource(
                base_url=settings.aicte_base_url,
                api_key=settings.aicte_api_key,
                options=options(settings.aicte_cache_ttl),
                transport=transport,
            )
        )
    else:
        sources.append(PlaceholderSource(SourceKind.AICTE))

    if settings.state_api_key:
        sources.append(
            StateSource(
                base_url=settings.state_base_url,
                api_key=settings.state_api_key,
                options=options(settings.state_cache_ttl),
                transport=transport,
            )
        )
    else:
        sources.append(PlaceholderSource(SourceKind.STATE))

    private_urls = settings.private_source_urls
    if private_urls:
        sources.append(
            PrivateSource(
                private_urls,
                options=options(settings.private_cache_ttl),
                transport=transport,
            )
        )

    logger.info(
        "sources.configured",
        sources={s.name: s.mode.value for s in sources},
        private_disabled=not private_urls,
    )
    return sources
