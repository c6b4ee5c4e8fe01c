"""
Service Wiring

Builds an orchestrator with watermark post-processing attached, shared by
the CLI and the API.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .models import Job, LogLevel
from .orchestrator import BatchOrchestrator
from .pipeline.acquisition import ImageAcquisition, ImageOutcome
from .pipeline.watermark_remover import WatermarkRemover
from .progress import ProgressReporter, create_reporter
from .remote.base import ImageFeed, RemoteActionAdapter
from .storage import get_storage_client

logger = logging.getLogger(__name__)


@dataclass
class AutomatorService:
    orchestrator: BatchOrchestrator
    acquisition: ImageAcquisition

    @property
    def reporter(self) -> ProgressReporter:
        return self.orchestrator.reporter

    async def aclose(self) -> None:
        if self.orchestrator.status.is_active:
            self.orchestrator.stop()
            await self.orchestrator.wait()
        await self.acquisition.aclose()


def build_service(
    adapter: RemoteActionAdapter,
    feed: Optional[ImageFeed] = None,
    reporter: Optional[ProgressReporter] = None,
    settings: Optional[Settings] = None,
    storage=None,
    remover: Optional[WatermarkRemover] = None,
) -> AutomatorService:
    """
    Wire adapter, feed, reporter and watermark pipeline together.

    After each finished item the feed is scanned for new generated images,
    which are cleaned, saved and substituted on the page.
    """
    settings = settings or get_settings()
    reporter = reporter or create_reporter()
    remover = remover or WatermarkRemover()
    acquisition = ImageAcquisition(
        remover,
        feed=feed,
        storage=storage if storage is not None else get_storage_client(),
    )

    if acquisition.enabled and not remover.available:
        reporter.log(
            f"Watermark removal disabled: reference captures not found in {remover.cache.assets_dir}",
            LogLevel.WARNING,
        )

    async def post_process(job: Job) -> None:
        if feed is None or not acquisition.enabled or not remover.available:
            return
        await asyncio.sleep(settings.image_discovery_delay)
        results = await acquisition.process_feed()
        processed = sum(1 for r in results if r.outcome == ImageOutcome.PROCESSED)
        failed = sum(1 for r in results if r.outcome == ImageOutcome.FAILED)
        if processed:
            reporter.log(f"Removed watermark from {processed} image(s)", LogLevel.SUCCESS)
        if failed:
            reporter.log(f"Watermark removal failed for {failed} image(s)", LogLevel.WARNING)

    orchestrator = BatchOrchestrator(
        adapter,
        reporter=reporter,
        post_process=post_process,
        settings=settings,
    )
    return AutomatorService(orchestrator=orchestrator, acquisition=acquisition)
