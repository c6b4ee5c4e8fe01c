"""
Batch Orchestrator

Drives a list of prompts through the remote page one at a time:

    probe -> fill input -> trigger action -> await completion

with a randomized delay between items. The run can be paused, resumed and
stopped. Per-item failures are logged and skipped; losing the remote target
fails the job.

All control methods must be called from the event loop running the job.
Cancellation is cooperative: a stop request is observed at the next
suspension point, and a remote step already dispatched may still land.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from . import metrics
from .config import Settings, get_settings
from .models import (
    DelayBounds,
    ItemOutcome,
    ItemStatus,
    Job,
    JobStatus,
    LogLevel,
    Progress,
    preview,
)
from .progress import ProgressReporter
from .remote.base import ConnectionLostError, RemoteActionAdapter

logger = logging.getLogger(__name__)

PostProcessHook = Callable[[Job], Awaitable[object]]
SleepFunc = Callable[[float], Awaitable[None]]
T = TypeVar("T")


class JobValidationError(ValueError):
    """Start request rejected; `errors` lists every problem found."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class InvalidTransition(RuntimeError):
    """Control request not allowed in the current status."""


def validate_job(items: Sequence[str], delay_bounds: DelayBounds, min_delay_floor: int = 5) -> list[str]:
    """Return every validation error for a start request."""
    errors = []
    if not items:
        errors.append("Please enter at least one prompt")
    if delay_bounds.min >= delay_bounds.max:
        errors.append("Min delay must be less than max delay")
    if delay_bounds.min < min_delay_floor:
        errors.append(f"Min delay must be at least {min_delay_floor} seconds")
    return errors


class BatchOrchestrator:
    """
    Owns the job state machine.

    Args:
        adapter: Remote page operations
        reporter: Sink for progress snapshots and user-visible log lines
        post_process: Optional coroutine run after each finished item
            (image post-processing). Its errors never fail the job.
        settings: Timing configuration
        rng: Source of the inter-item delay (needs `uniform`)
        sleep: Override for cooperative suspension, used by tests
    """

    def __init__(
        self,
        adapter: RemoteActionAdapter,
        reporter: Optional[ProgressReporter] = None,
        post_process: Optional[PostProcessHook] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self.adapter = adapter
        self.reporter = reporter or ProgressReporter()
        self.post_process = post_process
        self.settings = settings or get_settings()
        self._rng = rng or random.Random()
        self._sleep = sleep

        self._status = JobStatus.IDLE
        self._job: Optional[Job] = None
        self._task: Optional[asyncio.Task] = None
        self._resume_event = asyncio.Event()
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def job(self) -> Optional[Job]:
        """Current job, or the last finished one."""
        return self._job

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def progress(self) -> Progress:
        if self._job is None:
            return Progress(cursor=0, total=0, status=self._status)
        return Progress(cursor=self._job.cursor, total=self._job.total, status=self._status)

    def _emit_progress(self) -> None:
        progress = self.progress()
        self.reporter.update_progress(progress)
        metrics.update_job_progress(progress.cursor, progress.total)

    def _log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        self.reporter.log(message, level)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def validate(self, items: Sequence[str], delay_bounds: DelayBounds) -> list[str]:
        return validate_job(items, delay_bounds, self.settings.min_delay_floor)

    def _begin(self, items: Sequence[str], delay_bounds: DelayBounds) -> Job:
        if self._status.is_active:
            raise InvalidTransition(f"Cannot start while {self._status.value}")

        items = [item.strip() for item in items if item.strip()]
        errors = self.validate(items, delay_bounds)
        if errors:
            for error in errors:
                self._log(error, LogLevel.ERROR)
            raise JobValidationError(errors)

        job = Job(items=tuple(items), delay_bounds=delay_bounds)
        self._job = job
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._stop_event = asyncio.Event()
        self._status = JobStatus.RUNNING

        self.reporter.begin_job(job.id)
        self._emit_progress()
        self._log(f"Starting batch generation process ({job.total} prompts)", LogLevel.SUCCESS)
        return job

    def start(self, items: Sequence[str], delay_bounds: DelayBounds) -> asyncio.Task:
        """
        Validate and launch a run in the background.

        Raises:
            JobValidationError: Invalid items or delay bounds; status unchanged
            InvalidTransition: A run is still active
        """
        job = self._begin(items, delay_bounds)
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(job), name=f"batch-{job.id}"
        )
        return self._task

    async def run(self, items: Sequence[str], delay_bounds: DelayBounds) -> Job:
        """Validate, run to a terminal state, and return the job."""
        return await self.start(items, delay_bounds)

    async def wait(self) -> Optional[Job]:
        """Wait for the current run's loop to exit."""
        if self._task is not None:
            await self._task
        return self._job

    def pause(self) -> None:
        if self._status != JobStatus.RUNNING:
            raise InvalidTransition(f"Cannot pause while {self._status.value}")
        self._status = JobStatus.PAUSED
        self._resume_event.clear()
        self._emit_progress()
        self._log("Paused batch process", LogLevel.WARNING)

    def resume(self) -> None:
        if self._status != JobStatus.PAUSED:
            raise InvalidTransition(f"Cannot resume while {self._status.value}")
        self._status = JobStatus.RUNNING
        self._resume_event.set()
        self._emit_progress()
        self._log("Resumed batch process")

    def toggle_pause(self) -> JobStatus:
        if self._status == JobStatus.PAUSED:
            self.resume()
        else:
            self.pause()
        return self._status

    def stop(self) -> None:
        """
        Request the run to stop.

        The status is STOPPING until the loop reaches its next suspension
        point, then IDLE.
        """
        if self._status == JobStatus.STOPPING:
            return
        if self._status not in (JobStatus.RUNNING, JobStatus.PAUSED):
            raise InvalidTransition(f"Cannot stop while {self._status.value}")

        self._job.cancel_requested = True
        self._status = JobStatus.STOPPING
        self._stop_event.set()
        self._resume_event.set()
        self._log("Stopped batch process", LogLevel.WARNING)

        if self._task is None or self._task.done():
            self._settle_stopped(self._job)
        else:
            self._emit_progress()

    def _settle_stopped(self, job: Job) -> None:
        job.finished_at = datetime.now(timezone.utc)
        self._status = JobStatus.IDLE
        self._emit_progress()
        metrics.record_job_finished("stopped")

    def _fail(self, job: Job, message: str) -> None:
        job.finished_at = datetime.now(timezone.utc)
        self._status = JobStatus.FAILED
        self._emit_progress()
        self._log(message, LogLevel.ERROR)
        metrics.record_job_finished(JobStatus.FAILED.value)

    def _complete(self, job: Job) -> None:
        job.finished_at = datetime.now(timezone.utc)
        self._status = JobStatus.COMPLETED
        self._emit_progress()
        self._log(
            f"All {job.total} prompts completed "
            f"({job.succeeded} succeeded, {job.failed} failed)",
            LogLevel.SUCCESS,
        )
        metrics.record_job_finished(JobStatus.COMPLETED.value)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _suspend(self, job: Job, seconds: float) -> bool:
        """Sleep cooperatively; return False if a stop was requested."""
        if seconds > 0 and not job.cancel_requested:
            if self._sleep is not None:
                await self._sleep(seconds)
            else:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
                except asyncio.TimeoutError:
                    pass
        return not job.cancel_requested

    async def _wait_until_runnable(self, job: Job) -> bool:
        """Hold while paused; return False if a stop was requested."""
        while self._status == JobStatus.PAUSED and not job.cancel_requested:
            await self._resume_event.wait()
        return not job.cancel_requested

    async def _unless_stopped(self, step: Awaitable[T]) -> Optional[T]:
        """
        Await a remote step, abandoning it as soon as a stop is requested.

        Returns None when abandoned. The remote side effect may still land.
        """
        step = asyncio.ensure_future(step)
        stopped = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({step, stopped}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            step.cancel()
            raise
        finally:
            stopped.cancel()

        if step.done():
            return step.result()
        step.cancel()
        return None

    async def _probe(self) -> bool:
        try:
            return bool(await self.adapter.probe())
        except Exception as e:
            logger.warning(f"Liveness probe raised: {e}")
            return False

    async def _run_loop(self, job: Job) -> Job:
        try:
            while job.cursor < job.total:
                if not await self._wait_until_runnable(job):
                    break
                if not await self._run_item(job):
                    break
        except Exception as e:
            logger.exception("Batch loop crashed")
            self._fail(job, f"Batch process error: {e}")
            return job

        if job.cancel_requested:
            self._log("Batch process stopped", LogLevel.WARNING)
            self._settle_stopped(job)
        elif self._status != JobStatus.FAILED and job.cursor >= job.total:
            self._complete(job)
        return job

    async def _run_item(self, job: Job) -> bool:
        """
        Run the four-step protocol for the item at the cursor.

        Returns False when the loop must exit (stop requested or job failed).
        """
        loop = asyncio.get_running_loop()
        index = job.cursor
        item = job.items[index]
        started = loop.time()

        self._log(f"Processing prompt {index + 1}/{job.total}: {preview(item)}")

        if not await self._probe():
            self._fail(job, "Remote target is no longer reachable - stopping batch process")
            return False

        try:
            self._log("Filling prompt...")
            await self.adapter.fill_input(item)
            if not await self._suspend(job, self.settings.fill_settle_seconds):
                return False

            self._log("Clicking generate button...")
            await self.adapter.trigger_action()
            if job.cancel_requested:
                return False

            self._log("Waiting for image generation...")
            result = await self._unless_stopped(self.adapter.await_completion())
            if result is None:
                return False

        except ConnectionLostError as e:
            self._fail(job, f"Lost connection to remote target - stopping: {e}")
            return False

        except Exception as e:
            duration = loop.time() - started
            job.outcomes.append(ItemOutcome(index, item, ItemStatus.FAILED, str(e), duration))
            metrics.record_item(ItemStatus.FAILED.value, duration)
            self._log(f"Error on prompt {index + 1}: {e}", LogLevel.ERROR)
            job.advance()
            self._emit_progress()
            return await self._suspend(job, self.settings.error_settle_seconds)

        if job.cancel_requested:
            return False

        if result.success:
            self._log("Generation complete", LogLevel.SUCCESS)
        else:
            self._log(
                f"Completion not confirmed ({result.error or 'timeout'}), continuing",
                LogLevel.WARNING,
            )

        duration = loop.time() - started
        job.outcomes.append(ItemOutcome(index, item, ItemStatus.SUCCEEDED, result.error, duration))
        metrics.record_item(ItemStatus.SUCCEEDED.value, duration)
        job.advance()
        self._emit_progress()

        if self.post_process is not None:
            try:
                await self.post_process(job)
            except Exception as e:
                self._log(f"Image post-processing failed: {e}", LogLevel.WARNING)

        if job.cursor < job.total and not job.cancel_requested:
            bounds = job.delay_bounds
            delay = self._rng.uniform(bounds.min, bounds.max)
            self._log(f"Waiting {round(delay)} seconds before next prompt...")
            metrics.record_delay(delay)
            return await self._suspend(job, delay)

        return not job.cancel_requested
