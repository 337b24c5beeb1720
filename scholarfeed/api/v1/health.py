"""Health check endpoint for ScholarFeed API v1."""

from __future__ import annotations

import time
from typing import Any

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Liveness plus a summary of the aggregation services."""

    status: str
    version: str
    uptime_seconds: float
    sources: dict[str, str]
    subscribers: int
    scheduler_running: bool
    last_refresh: str | None
    last_cycle: dict[str, Any] | None


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 while the process can serve requests.  ``status`` is
    ``degraded`` when the most recent cycle had to serve stale data.
    """
    state = request.app.state
    start_time: float = getattr(state, "start_time", time.time())
    aggregator = getattr(state, "aggregator", None)
    broadcaster = getattr(state, "broadcaster", None)
    scheduler = getattr(state, "scheduler", None)

    last = aggregator.last_result if aggregator is not None else None
    last_run = scheduler.last_run if scheduler is not None else None

    return HealthResponse(
        status="degraded" if last is not None and last.served_stale else "healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
        sources={s.name: s.mode.value for s in aggregator.sources} if aggregator is not None else {},
        subscribers=broadcaster.subscriber_count if broadcaster is not None else 0,
        scheduler_running=scheduler.is_running if scheduler is not None else False,
        last_refresh=last_run.isoformat() if last_run is not None else None,
        last_cycle=last.to_dict() if last is not None else None,
    )
