"""Bundled sample datasets for sources running without credentials.

Records live in ``placeholders.json`` with deadlines stored as offsets from
the day of loading, so the samples never go stale.  Every loaded listing is
tagged ``sample`` and marked ``is_live=False`` so it is never mistaken for
live upstream data.
"""

from __future__ import annotations

import json
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog

from scholarfeed.models.enums import SourceKind
from scholarfeed.models.listing import SAMPLE_TAG, Listing

logger = structlog.get_logger(__name__)

_PLACEHOLDERS_PATH: Path = Path(__file__).resolve().parent / "placeholders.json"


def load_placeholder_records(path: Path | None = None) -> dict[str, list[dict[str, Any]]]:
    """Read the raw sample records, keyed by source family name.

    Raises
    ------
    FileNotFoundError
        If the JSON file does not exist.
    json.JSONDecodeError
        If the JSON is malformed.
    """
    target = path or _PLACEHOLDERS_PATH
    with target.open(encoding="utf-8") as fh:
        raw = json.load(fh)
    if not isinstance(raw, dict):
        raise ValueError(f"Expected an object keyed by source in {target}")
    return raw


def sample_listings(
    kind: SourceKind,
    *,
    today: date | None = None,
    records: list[dict[str, Any]] | None = None,
) -> list[Listing]:
    """Build the labelled sample listings for one source family."""
    today = today or datetime.now(UTC).date()
    if records is None:
        records = load_placeholder_records().get(kind.value, [])

    now = datetime.now(UTC)
    listings: list[Listing] = []
    for record in records:
        data = dict(record)
        offset = data.pop("deadlineOffsetDays", None)
        data["deadline"] = today + timedelta(days=int(offset)) if offset is not None else None
        data["tags"] = [*data.get("tags", []), SAMPLE_TAG]
        data["sourceKind"] = kind
        data["isLive"] = False
        data["lastUpdated"] = now
        listings.append(Listing.model_validate(data))

    logger.debug("seed.placeholders_loaded", source=kind.value, count=len(listings))
    return listings
