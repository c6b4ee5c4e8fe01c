"""
Job Models

Run state, progress snapshots and log entries for batch automation.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    """Single authoritative run state of the orchestrator."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.RUNNING, JobStatus.PAUSED, JobStatus.STOPPING)


class LogLevel(str, Enum):
    """Severity of a user-visible log line."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class DelayBounds:
    """Inter-item delay range in seconds."""
    min: int
    max: int


@dataclass
class ItemOutcome:
    """Result of one attempted item."""
    index: int
    item: str
    status: ItemStatus
    error: Optional[str] = None
    duration: float = 0.0


@dataclass
class Job:
    """
    One run of the input queue.

    `cursor` is the index of the next item to process. It only moves forward
    during a run and stays within 0..len(items).
    """
    items: tuple[str, ...]
    delay_bounds: DelayBounds
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cursor: int = 0
    outcomes: list[ItemOutcome] = field(default_factory=list)
    cancel_requested: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def remaining(self) -> int:
        return self.total - self.cursor

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ItemStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ItemStatus.FAILED)

    def advance(self) -> None:
        if self.cursor >= self.total:
            raise ValueError("Cursor already at end of job")
        self.cursor += 1


@dataclass(frozen=True)
class Progress:
    """Progress snapshot sent toward the UI layer."""
    cursor: int
    total: int
    status: JobStatus

    @property
    def percentage(self) -> int:
        return round(self.cursor / self.total * 100) if self.total > 0 else 0


@dataclass(frozen=True)
class LogEntry:
    """Structured log line: {timestamp, level, message}."""
    timestamp: datetime
    level: LogLevel
    message: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }


def parse_items(text: str) -> list[str]:
    """Split pasted text into items: one per line, stripped, blanks dropped."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def preview(item: str, limit: int = 60) -> str:
    """Shorten an item for log lines."""
    return item if len(item) <= limit else item[:limit] + "..."
