from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.health import router as health_router
from app.api.leaderboards import router as leaderboards_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.points import router as points_router
from app.api.profile import router as profile_router
from app.api.progress import router as progress_router
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.repos.document_store import StoreError
from app.services.leaderboard import leaderboard_builder
from app.services.scheduler import PeriodicScheduler

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_scheduler() -> AsyncGenerator[None, None]:
    """Host the leaderboard schedule in this process when RUN_SCHEDULER=true."""
    if not SETTINGS.run_scheduler:
        yield
        return

    scheduler = PeriodicScheduler()
    scheduler.on_schedule(
        SETTINGS.leaderboard_interval_seconds,
        leaderboard_builder.run,
        name="leaderboard_recompute",
        run_immediately=True,
    )
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one step fails.
    async with lifespan_db():
        async with lifespan_redis():
            async with lifespan_scheduler():
                yield


app = FastAPI(
    title="progress-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext (outermost) → Metrics → CORS → route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(
        "Store failure on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(status_code=503, content={"detail": "internal error"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(leaderboards_router)
app.include_router(points_router)
app.include_router(profile_router)
app.include_router(progress_router)

logger.info(
    "progress-service started  env=%s log_level=%s port=%d docs=%s scheduler=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
    "on" if SETTINGS.run_scheduler else "off",
)
