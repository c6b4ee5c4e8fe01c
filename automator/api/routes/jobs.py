"""
Job Control Routes

Start, pause, resume and stop the batch run; read progress and logs.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...config import get_settings
from ...models import DelayBounds
from ...orchestrator import InvalidTransition, JobValidationError
from ...service import AutomatorService
from ..deps import get_service
from ..schemas import JobResponse, JobStartRequest, LogEntryResponse, LogListResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def _snapshot(service: AutomatorService) -> JobResponse:
    orchestrator = service.orchestrator
    return JobResponse.from_job(orchestrator.job, orchestrator.progress())


@router.post("", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_job(
    request: JobStartRequest,
    service: AutomatorService = Depends(get_service),
) -> JobResponse:
    """
    Start a batch run.

    Returns immediately; poll `/jobs/current` for progress.
    """
    settings = get_settings()
    bounds = DelayBounds(
        min=request.min_delay if request.min_delay is not None else settings.min_delay,
        max=request.max_delay if request.max_delay is not None else settings.max_delay,
    )
    try:
        service.orchestrator.start(request.resolved_items(), bounds)
    except JobValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"errors": e.errors},
        )
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    # Only an accepted start may change the toggle
    if request.watermark_removal_enabled is not None:
        service.acquisition.enabled = request.watermark_removal_enabled

    return _snapshot(service)


def _control(service: AutomatorService, action: str) -> JobResponse:
    try:
        getattr(service.orchestrator, action)()
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _snapshot(service)


@router.post("/pause", response_model=JobResponse)
async def pause_job(service: AutomatorService = Depends(get_service)) -> JobResponse:
    """Finish the in-flight item, then hold before the next one."""
    return _control(service, "pause")


@router.post("/resume", response_model=JobResponse)
async def resume_job(service: AutomatorService = Depends(get_service)) -> JobResponse:
    return _control(service, "resume")


@router.post("/stop", response_model=JobResponse)
async def stop_job(service: AutomatorService = Depends(get_service)) -> JobResponse:
    """
    Stop the run.

    A remote step already dispatched is abandoned, not cancelled.
    """
    return _control(service, "stop")


@router.get("/current", response_model=JobResponse)
async def current_job(service: AutomatorService = Depends(get_service)) -> JobResponse:
    return _snapshot(service)


@router.get("/logs", response_model=LogListResponse)
async def job_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    service: AutomatorService = Depends(get_service),
) -> LogListResponse:
    entries = service.reporter.entries(limit)
    return LogListResponse(
        entries=[LogEntryResponse.from_entry(e) for e in entries],
        total=len(entries),
    )


@router.delete("/logs", status_code=status.HTTP_204_NO_CONTENT)
async def clear_logs(service: AutomatorService = Depends(get_service)) -> None:
    service.reporter.clear()
