"""
FastAPI application entry point for the Hivemoot Queen governance bot.

This module sets up the webhook receiver with health checks, request
logging and error handling. Timed transitions are driven separately by
the reconciliation worker (python -m queen.orchestration.worker).
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from queen import __version__
from queen.api.middleware import RequestLoggingMiddleware
from queen.api.webhooks import router as webhooks_router
from queen.api.webhooks import set_event_router
from queen.config.settings import get_settings
from queen.integrations.github_client import close_github_client
from queen.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

SERVICE_NAME = "hivemoot-queen"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Configure logging and validate settings on startup; release the
    GitHub client on shutdown.
    """
    app_settings = get_settings()
    setup_logging(
        log_level=app_settings.log_level,
        environment=app_settings.environment,
    )

    logger.info("app_starting", version=__version__)
    try:
        warnings = app_settings.validate_for_startup()
        for warning in warnings:
            logger.warning("config_warning", message=warning)
        app_settings.log_configuration_summary()
    except ValueError as e:
        logger.error("config_validation_failed", error=str(e))
        if app_settings.is_production:
            raise
    logger.info("app_started", version=__version__)

    yield

    logger.info("app_shutting_down")
    set_event_router(None)
    close_github_client()
    logger.info("app_shutdown_complete")


app = FastAPI(
    title="Hivemoot Queen",
    description=(
        "Governance bot that moves GitHub issues through discussion, voting "
        "and implementation, and keeps a leaderboard of competing PRs."
    ),
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.include_router(webhooks_router)


class ComponentStatus(BaseModel):
    """Status of a single system component."""

    status: str  # "healthy", "unhealthy", "degraded"
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str  # "healthy", "unhealthy", "degraded"
    version: str
    timestamp: str
    service: str
    components: Optional[Dict[str, ComponentStatus]] = None
    response_time_ms: Optional[float] = None


def _check_configuration() -> Dict[str, ComponentStatus]:
    """Report which credentials are configured; nothing is fetched."""
    app_settings = get_settings()
    components = {
        "github_token": ComponentStatus(
            status="healthy" if app_settings.has_github_token else "unhealthy",
            message=None if app_settings.has_github_token else "GITHUB_TOKEN not configured",
        ),
        "app_id": ComponentStatus(
            status="healthy" if app_settings.has_app_id else "degraded",
            message=(
                f"app {app_settings.github_app_id}"
                if app_settings.has_app_id
                else "GITHUB_APP_ID not configured"
            ),
        ),
        "webhook_secret": ComponentStatus(
            status="healthy" if app_settings.has_webhook_secret else "degraded",
            message=None if app_settings.has_webhook_secret else "Signature validation disabled",
        ),
    }
    return components


def _overall_status(components: Dict[str, ComponentStatus]) -> str:
    """Determine overall status from component statuses."""
    statuses = {c.status for c in components.values()}
    if "unhealthy" in statuses:
        return "unhealthy"
    if "degraded" in statuses:
        return "degraded"
    return "healthy"


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    responses={
        200: {"description": "Service is healthy"},
        503: {"description": "Service is unhealthy"},
    },
)
async def health_check(response: Response) -> HealthResponse:
    """
    Liveness health check endpoint.

    Returns 200 unless a required credential is missing, 503 otherwise.
    """
    start = time.perf_counter()
    components = _check_configuration()
    overall = _overall_status(components)
    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        service=SERVICE_NAME,
        components=components,
        response_time_ms=round((time.perf_counter() - start) * 1000, 1),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled exceptions and return a generic 500."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "type": type(exc).__name__,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "queen.api.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
