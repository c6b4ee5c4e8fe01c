"""
Progress Reporting

Sinks for the orchestrator's progress snapshots and user-visible log stream.
"""

import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Optional

import redis

from .config import get_settings
from .models import LogEntry, LogLevel, Progress

logger = logging.getLogger(__name__)

_STD_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class ProgressReporter:
    """
    In-memory progress sink.

    Keeps the latest progress snapshot and a bounded history of log entries.
    Every entry is mirrored to the standard logger.
    """

    def __init__(self, history: int = 500):
        self._entries: deque[LogEntry] = deque(maxlen=history)
        self._progress: Optional[Progress] = None
        self.job_id: Optional[str] = None

    def begin_job(self, job_id: str) -> None:
        self.job_id = job_id

    def log(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
        )
        self._entries.append(entry)
        logger.log(_STD_LEVELS[level], message)
        return entry

    def update_progress(self, progress: Progress) -> None:
        self._progress = progress

    @property
    def progress(self) -> Optional[Progress]:
        return self._progress

    def entries(self, limit: Optional[int] = None) -> list[LogEntry]:
        items = list(self._entries)
        return items[-limit:] if limit else items

    def clear(self) -> None:
        self._entries.clear()


class RedisProgressReporter(ProgressReporter):
    """
    Progress sink that also publishes to Redis.

    Keys:
    - automator:jobs:{id}:data - progress hash
    - automator:jobs:{id}:logs - list of JSON log entries
    """

    KEY_PREFIX = "automator:jobs"

    def __init__(self, redis_url: str, history: int = 500, client: Optional[redis.Redis] = None):
        super().__init__(history=history)
        self.redis = client or redis.from_url(redis_url, decode_responses=True)

    def log(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        entry = super().log(message, level)
        if self.job_id is None:
            return entry
        try:
            self.redis.rpush(f"{self.KEY_PREFIX}:{self.job_id}:logs", json.dumps(entry.to_dict()))
        except redis.RedisError as e:
            logger.error(f"Failed to add log: {e}")
        return entry

    def update_progress(self, progress: Progress) -> None:
        super().update_progress(progress)
        if self.job_id is None:
            return
        try:
            self.redis.hset(f"{self.KEY_PREFIX}:{self.job_id}:data", mapping={
                "cursor": str(progress.cursor),
                "total": str(progress.total),
                "status": progress.status.value,
                "progress": str(progress.percentage),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            })
        except redis.RedisError as e:
            logger.error(f"Failed to update progress: {e}")

    def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            self.redis.ping()
            return True
        except redis.RedisError:
            return False


def create_reporter() -> ProgressReporter:
    """Build the reporter selected by settings."""
    settings = get_settings()
    if settings.redis_url:
        return RedisProgressReporter(settings.redis_url, history=settings.log_history)
    return ProgressReporter(history=settings.log_history)
