"""
Route dependencies.
"""

from fastapi import HTTPException, Request, status

from ..pipeline.watermark_remover import WatermarkRemover
from ..service import AutomatorService


def get_service(request: Request) -> AutomatorService:
    """The automation service created at startup."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Browser session is not available",
        )
    return service


def get_remover() -> WatermarkRemover:
    return WatermarkRemover()
