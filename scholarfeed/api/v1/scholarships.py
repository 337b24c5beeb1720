"""Scholarship feed endpoints for ScholarFeed v1.

Provides the aggregated listing feed, on-demand refresh, the recent
update log, and a Server-Sent Events stream of live changes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import orjson
import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scholarfeed.models.listing import Listing
from scholarfeed.services.aggregator import AggregationError, ListingAggregator
from scholarfeed.services.broadcaster import QueueSubscriber, SubscriptionBroadcaster

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/scholarships", tags=["scholarships"])

_KEEPALIVE_SECONDS = 15.0
_SINCE_LIMIT = 100


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class ScholarshipListResponse(_CamelModel):
    """Aggregated feed, optionally with updates newer than ``since``."""

    scholarships: list[Listing]
    count: int
    last_updated: datetime
    is_live: bool
    updates: list[dict[str, Any]] | None = None
    update_count: int | None = None


class RefreshRequest(_CamelModel):
    region: str | None = None
    category: str | None = None
    force_refresh: bool = True


class RefreshResponse(_CamelModel):
    scholarships: list[Listing]
    count: int
    last_updated: datetime
    cycle: dict[str, Any] | None = None


class UpdatesResponse(_CamelModel):
    updates: list[dict[str, Any]]
    count: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _aggregator(request: Request) -> ListingAggregator:
    aggregator: ListingAggregator | None = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Aggregator is not initialised")
    return aggregator


def _broadcaster(request: Request) -> SubscriptionBroadcaster:
    broadcaster: SubscriptionBroadcaster | None = getattr(request.app.state, "broadcaster", None)
    if broadcaster is None:
        raise HTTPException(status_code=503, detail="Broadcaster is not initialised")
    return broadcaster


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _last_updated(listings: list[Listing]) -> datetime:
    return max((item.last_updated for item in listings), default=datetime.now(UTC))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=ScholarshipListResponse)
async def list_scholarships(
    request: Request,
    region: str | None = Query(default=None, description="State / region filter; listings open to 'All' always match"),
    category: str | None = Query(default=None, description="Category filter (case-insensitive)"),
    grade: int | None = Query(default=None, ge=0, le=20, description="Only listings whose grade band includes this grade"),
    since: datetime | None = Query(default=None, description="Also return stream events newer than this timestamp"),
) -> ScholarshipListResponse:
    """Return the canonical feed, served from cache within its TTL.

    During a total upstream outage the last-known-good feed is returned
    with ``isLive`` false on every listing.
    """
    listings = await _aggregator(request).fetch_all(region, category)

    if grade is not None:
        listings = [item for item in listings if item.min_grade <= grade <= item.max_grade]

    response = ScholarshipListResponse(
        scholarships=listings,
        count=len(listings),
        last_updated=_last_updated(listings),
        is_live=all(item.is_live for item in listings),
    )

    if since is not None:
        updates = _broadcaster(request).recent(limit=_SINCE_LIMIT, since=_as_utc(since))
        response.updates = [event.to_wire() for event in updates]
        response.update_count = len(updates)

    return response


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_scholarships(request: Request, body: RefreshRequest) -> RefreshResponse:
    """Run an aggregation cycle now.

    A forced refresh goes upstream past the per-source result caches and
    never falls back to stale data: if every source fails the endpoint
    responds 503.
    """
    aggregator = _aggregator(request)
    try:
        listings = await aggregator.fetch_all(
            body.region,
            body.category,
            force_refresh=body.force_refresh,
            allow_stale=not body.force_refresh,
        )
    except AggregationError as exc:
        logger.warning("api.refresh_failed", key=str(exc.key), errors=[str(e) for e in exc.errors])
        raise HTTPException(status_code=503, detail="All scholarship sources are unavailable") from exc

    cycle = aggregator.last_result
    return RefreshResponse(
        scholarships=listings,
        count=len(listings),
        last_updated=_last_updated(listings),
        cycle=cycle.to_dict() if body.force_refresh and cycle is not None else None,
    )


@router.get("/updates", response_model=UpdatesResponse)
async def recent_updates(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500, description="Maximum number of events"),
    since: datetime | None = Query(default=None, description="Only events newer than this timestamp"),
) -> UpdatesResponse:
    """Recently published stream events, oldest first."""
    events = _broadcaster(request).recent(limit=limit, since=_as_utc(since))
    return UpdatesResponse(updates=[event.to_wire() for event in events], count=len(events))


async def _event_stream(request: Request, subscriber: QueueSubscriber) -> AsyncIterator[bytes]:
    broadcaster = _broadcaster(request)
    try:
        while True:
            try:
                event = await asyncio.wait_for(subscriber.get(), timeout=_KEEPALIVE_SECONDS)
            except TimeoutError:
                if await request.is_disconnected():
                    break
                yield b": keep-alive\n\n"
                continue
            if event is None:
                break
            yield b"data: " + orjson.dumps(event.to_wire()) + b"\n\n"
    finally:
        broadcaster.unsubscribe(subscriber)


@router.get("/stream")
async def stream_scholarships(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of live changes.

    The first frame is always a ``system_status`` event with status
    ``connected``.  Each frame is ``data: <json>`` followed by a blank line.
    """
    subscriber = _broadcaster(request).subscribe()
    logger.info("api.stream_opened", subscriber=subscriber.id)
    return StreamingResponse(
        _event_stream(request, subscriber),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
