"""
Health Check Routes

System health and status endpoints.
"""

import logging
from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter, Depends, Request

from ...progress import RedisProgressReporter
from ...pipeline.watermark_remover import WatermarkRemover
from ..deps import get_remover
from ..schemas import HealthResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


def get_version() -> str:
    """Installed package version."""
    try:
        return version("gemini-automator")
    except PackageNotFoundError:
        return "unknown"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    remover: WatermarkRemover = Depends(get_remover),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns overall system health and individual service statuses.
    """
    services = {}
    service = getattr(request.app.state, "service", None)

    # Check browser page
    if service is None:
        services["browser"] = "unavailable"
    else:
        try:
            alive = await service.orchestrator.adapter.probe()
            services["browser"] = "healthy" if alive else "unhealthy"
        except Exception as e:
            logger.error("Browser health check failed: %s", type(e).__name__)
            services["browser"] = "unhealthy"

        # Check Redis
        reporter = service.reporter
        if isinstance(reporter, RedisProgressReporter):
            services["redis"] = "healthy" if reporter.health_check() else "unhealthy"

    # Check reference captures
    services["watermark"] = "healthy" if remover.cache.verify() else "unavailable"

    # Overall status
    all_healthy = all(s == "healthy" for s in services.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=get_version(),
        services=services,
    )


@router.get("/health/live")
async def liveness():
    """
    Liveness probe.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}
