"""ScholarFeed FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the aggregation services (sources, cache, merge
engine, change detector, broadcaster and refresh scheduler).
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from scholarfeed import __version__
from scholarfeed.api.router import api_router

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            settings.log_level,
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the aggregation services.

    On startup:
      1. Build the registered sources (live, placeholder or disabled)
      2. Create the feed cache, merge engine and change detector
      3. Create the subscription broadcaster
      4. Wire the aggregator and start the refresh scheduler
      5. Store everything on ``app.state``

    On shutdown:
      - Stop the scheduler (finishes the in-flight cycle, closes
        subscriber channels).
      - Close all source HTTP clients.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env, version=__version__)

    app.state.start_time = time.time()

    from scholarfeed.services.aggregator import ListingAggregator
    from scholarfeed.services.broadcaster import SubscriptionBroadcaster
    from scholarfeed.services.cache import ListingCache
    from scholarfeed.services.changes import ChangeDetector
    from scholarfeed.services.merge import MergeEngine
    from scholarfeed.services.scheduler import RefreshScheduler
    from scholarfeed.services.sources import build_sources

    # -- 1. Sources ---------------------------------------------------------
    sources = build_sources(settings)

    # -- 2. Cache, merge, change detection ----------------------------------
    cache = ListingCache(
        default_ttl=settings.feed_cache_ttl,
        max_entries=settings.cache_max_entries,
    )
    merge_engine = MergeEngine(
        high_threshold=settings.high_value_threshold,
        mid_threshold=settings.mid_value_threshold,
    )
    detector = ChangeDetector(alert_days=settings.alert_window_days)

    # -- 3. Broadcaster -----------------------------------------------------
    broadcaster = SubscriptionBroadcaster(
        queue_size=settings.subscriber_queue_size,
        recent_limit=settings.recent_events_limit,
    )

    # -- 4. Aggregator and scheduler ----------------------------------------
    aggregator = ListingAggregator(
        sources,
        merge_engine=merge_engine,
        cache=cache,
        detector=detector,
        broadcaster=broadcaster,
        source_timeout=settings.source_timeout_seconds * settings.source_retry_attempts + 1.0,
    )
    scheduler = RefreshScheduler(
        aggregator,
        broadcaster,
        interval_seconds=settings.refresh_interval_seconds,
        enabled=settings.enable_auto_refresh,
    )
    scheduler.start()

    # -- 5. app.state -------------------------------------------------------
    app.state.cache = cache
    app.state.broadcaster = broadcaster
    app.state.aggregator = aggregator
    app.state.scheduler = scheduler

    logger.info(
        "app.startup_complete",
        sources=[s.name for s in sources],
        auto_refresh=settings.enable_auto_refresh,
    )

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    await scheduler.stop()
    await aggregator.close()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ScholarFeed API",
    description=(
        "Aggregated, deduplicated scholarship listings from government and "
        "private sources, with live change notifications."
    ),
    version=__version__,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Accept"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Accept", "Last-Event-ID"],
    )

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "ScholarFeed API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "scholarships": "/api/v1/scholarships",
            "refresh": "/api/v1/scholarships/refresh",
            "updates": "/api/v1/scholarships/updates",
            "stream": "/api/v1/scholarships/stream",
        },
    }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "scholarfeed.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
