"""
Inbox Hub - FastAPI Application Entry Point.

This module provides the FastAPI application factory with middleware,
routes, exception handlers and lifecycle management.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from inbox_hub import __version__
from inbox_hub.api import setup_exception_handlers
from inbox_hub.api.v1 import router as v1_router, realtime_router, webhook_router
from inbox_hub.config.constants import SERVICE_NAME, API_VERSION, API_PREFIX
from inbox_hub.config.settings import Settings, get_settings
from inbox_hub.services.service_container import ServiceContainer
from inbox_hub.utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    container: ServiceContainer = app.state.container
    logger.info("Starting Inbox Hub...", version=app.version)

    try:
        await container.initialize()
    except Exception as e:
        logger.error("Inbox Hub startup failed", error=str(e), exc_info=True)
        raise
    logger.info("Inbox Hub startup completed successfully")

    try:
        yield
    finally:
        logger.info("Shutting down Inbox Hub...")
        await container.shutdown()
        logger.info("Inbox Hub shutdown completed successfully")


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        settings: Settings to use, defaults to the environment
        container: Prebuilt service container, e.g. with fake transports in tests
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL.value, settings.LOG_FORMAT)

    app = FastAPI(
        title="Inbox Hub API",
        description="Multi-tenant Meta messaging hub",
        version=__version__,
        openapi_url=f"{API_PREFIX}/openapi.json",
        docs_url=f"{API_PREFIX}/docs",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container or ServiceContainer(settings)

    setup_middleware(app)
    setup_exception_handlers(app)
    setup_routes(app, settings)

    return app


def setup_middleware(app: FastAPI) -> None:
    """Configure application middleware."""

    @app.middleware("http")
    async def add_request_context(request: Request, call_next):
        """Bind a request id to the log context and time the request."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round((time.time() - start_time) * 1000, 2))
        return response


def setup_routes(app: FastAPI, settings: Settings) -> None:
    """Setup application routes and endpoints."""
    app.include_router(webhook_router)
    app.include_router(realtime_router)
    app.include_router(v1_router)

    @app.get("/health")
    async def health_check():
        """Health check including storage and backplane connectivity."""
        container: ServiceContainer = app.state.container
        dependencies = await container.health_check() if container.initialized else {}
        healthy = container.initialized and all(
            check.get("connected", False) for check in dependencies.values()
        )
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "service": SERVICE_NAME,
                "version": app.version,
                "dependencies": dependencies,
            }
        )

    @app.get("/info")
    async def service_info():
        """Service information endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": app.version,
            "api_version": API_VERSION,
            "environment": settings.ENVIRONMENT.value,
            "storage_backend": settings.STORAGE_BACKEND.value,
        }

    if settings.METRICS_ENABLED:
        @app.get("/metrics")
        async def prometheus_metrics():
            """Prometheus metrics endpoint."""
            metrics = app.state.container.metrics
            return Response(metrics.export(), media_type=metrics.content_type)


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "inbox_hub.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.value.lower(),
    )


if __name__ == "__main__":
    main()
