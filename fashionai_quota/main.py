"""
Main Application - FastAPI application setup.

The lifespan builds the shared quota components once and stores them on
app.state for injection into handlers.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fashionai_quota.api.admin_routes import router as admin_router
from fashionai_quota.api.dependencies import QuotaComponents, build_components, get_components
from fashionai_quota.api.routes import router
from fashionai_quota.config import settings
from fashionai_quota.db.session import close_engine, get_db
from fashionai_quota.models.api import HealthResponse
from fashionai_quota.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from fashionai_quota.observability.tracing import instrument_fastapi

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    app.state.quota = build_components(settings)
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        key_pools=[service.value for service in app.state.quota.key_manager.services()],
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    yield

    logger.info("application_shutting_down")
    await close_engine()
    logger.info("database_engine_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

setup_tracing()
instrument_fastapi(app)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
        )
        return response


app.include_router(router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    components: QuotaComponents = Depends(get_components),
) -> HealthResponse:
    """Database reachability and key pool count."""
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        logger.error("health_check_database_failed", error=str(e))
        database = "unavailable"

    return HealthResponse(
        status="healthy" if database == "connected" else "degraded",
        database=database,
        version=settings.api_version,
        key_pools=len(components.key_manager.services()),
    )


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fashionai_quota.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
