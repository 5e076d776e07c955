"""FastAPI application entry point and lifecycle management."""

import asyncio
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from billing_sync.api.dependencies import ServiceContainer, get_container
from billing_sync.errors import BillingSyncError
from billing_sync.logging_config import configure_logging, get_logger
from billing_sync.middleware import ContextMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)

VERSION = "0.1.0"


async def run_periodic_maintenance(container_factory: Callable[[], Any], interval_seconds: float) -> None:
    """Sweep duplicate profiles and purge expired event ids forever."""
    while True:
        await asyncio.sleep(interval_seconds)
        container = container_factory()
        try:
            await run_in_threadpool(container.profiles.sweep)
            purged = container.event_log.purge_expired()
            logger.debug("maintenance_completed", purged_events=purged)
        except BillingSyncError as e:
            # The next run retries; the sweep is idempotent
            logger.error("maintenance_failed", error=e.message, error_type=type(e).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Builds the service container and schedules the duplicate-profile sweep.
    """
    from billing_sync.config import get_config

    logger.info("service_starting", version=VERSION)

    config = get_config()
    container_factory = app.dependency_overrides.get(get_container, get_container)
    container_factory()

    task = None
    interval = config.dedup.sweep_interval_seconds
    if interval > 0:
        task = asyncio.create_task(run_periodic_maintenance(container_factory, interval))
        logger.info("profile_sweep_scheduled", interval_seconds=interval)
    else:
        logger.info("profile_sweep_disabled")

    logger.info("service_started", status="ready")
    try:
        yield
    finally:
        logger.info("service_shutting_down")
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Billing Sync",
        description="Keeps local subscription access records consistent with the billing provider",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from billing_sync.api.admin import router as admin_router
    from billing_sync.api.subscription import router as subscription_router
    from billing_sync.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)
    app.include_router(subscription_router)
    app.include_router(admin_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        logger.debug("root_endpoint_called")
        return {
            "service": "billing-sync",
            "status": "running",
            "version": VERSION,
        }

    @app.get("/health")
    async def health(container: ServiceContainer = Depends(get_container)) -> dict:
        """Detailed health check."""
        return {
            "status": "healthy",
            "accounts": container.store.get_statistics(),
            "processed_events": container.event_log.count(),
            "caches": container.lookup_cache.stats(),
        }

    @app.exception_handler(BillingSyncError)
    async def billing_sync_exception_handler(request: Request, exc: BillingSyncError) -> JSONResponse:
        """Map the error taxonomy to HTTP responses."""
        log = logger.error if exc.http_status >= 500 else logger.warning
        log(
            "request_error",
            error=exc.message,
            error_code=exc.error_code,
            error_type=type(exc).__name__,
            retryable=exc.retryable,
            path=request.url.path,
            **exc.context,
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
