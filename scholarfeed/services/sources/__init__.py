"""Scholarship source adapters.

Public API::

    from scholarfeed.services.sources import build_sources, ListingSource, SourceResult
"""

from __future__ import annotations

from scholarfeed.services.sources.aicte import AICTESource
from scholarfeed.services.sources.base import (
    FAMILY_THRESHOLDS,
    HTTPListingSource,
    ListingSource,
    SourceFetchError,
    SourceOptions,
    SourceResult,
)
from scholarfeed.services.sources.factory import build_sources
from scholarfeed.services.sources.nsp import NSPSource
from scholarfeed.services.sources.placeholder import PlaceholderSource
from scholarfeed.services.sources.private import PrivateSource
from scholarfeed.services.sources.state import StateSource

__all__ = [
    "AICTESource",
    "FAMILY_THRESHOLDS",
    "HTTPListingSource",
    "ListingSource",
    "NSPSource",
    "PlaceholderSource",
    "PrivateSource",
    "SourceFetchError",
    "SourceOptions",
    "SourceResult",
    "StateSource",
    "build_sources",
]
