"""
Pydantic Schemas

Request/Response models for the control API.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from ..models import Job, JobStatus, LogEntry, Progress, parse_items


# ============================================================================
# Job Schemas
# ============================================================================

class JobStartRequest(BaseModel):
    """Request to start a batch run."""
    items: list[str] | None = Field(
        default=None,
        description="Prompts to run, in order",
        examples=[["A serene mountain landscape", "A futuristic cityscape"]],
    )
    text: str | None = Field(
        default=None,
        description="Prompts pasted as text, one per line",
    )
    min_delay: int | None = Field(default=None, description="Minimum seconds between prompts")
    max_delay: int | None = Field(default=None, description="Maximum seconds between prompts")
    watermark_removal_enabled: bool | None = None

    @model_validator(mode="after")
    def items_or_text(self):
        if self.items is None and self.text is None:
            raise ValueError("Provide either items or text")
        return self

    def resolved_items(self) -> list[str]:
        if self.items is not None:
            return [item.strip() for item in self.items if item.strip()]
        return parse_items(self.text or "")


class ItemOutcomeResponse(BaseModel):
    index: int
    item: str
    status: str
    error: str | None = None
    duration: float


class JobResponse(BaseModel):
    """Current job snapshot."""
    id: str | None = None
    status: JobStatus
    cursor: int = 0
    total: int = 0
    progress: int = 0
    min_delay: int | None = None
    max_delay: int | None = None
    succeeded: int = 0
    failed: int = 0
    outcomes: list[ItemOutcomeResponse] = []
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job | None, progress: Progress) -> "JobResponse":
        if job is None:
            return cls(status=progress.status)
        return cls(
            id=job.id,
            status=progress.status,
            cursor=progress.cursor,
            total=progress.total,
            progress=progress.percentage,
            min_delay=job.delay_bounds.min,
            max_delay=job.delay_bounds.max,
            succeeded=job.succeeded,
            failed=job.failed,
            outcomes=[
                ItemOutcomeResponse(
                    index=o.index,
                    item=o.item,
                    status=o.status.value,
                    error=o.error,
                    duration=o.duration,
                )
                for o in job.outcomes
            ],
            started_at=job.started_at,
            finished_at=job.finished_at,
        )


class LogEntryResponse(BaseModel):
    timestamp: datetime
    level: str
    message: str

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "LogEntryResponse":
        return cls(timestamp=entry.timestamp, level=entry.level.value, message=entry.message)


class LogListResponse(BaseModel):
    """Recent log entries, oldest first."""
    entries: list[LogEntryResponse]
    total: int


# ============================================================================
# Health/Status Schemas
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    services: dict[str, str] = {}
