"""
Image Acquisition

Fetches full-resolution generated images, strips the watermark, and puts
the result back on screen and into storage.

Each image is tracked by a stable identifier so it is never processed twice
or concurrently with itself.
"""

import asyncio
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
from PIL import Image

from .. import metrics
from ..config import get_settings
from ..remote.base import CandidateImage, ImageFeed
from .watermark_remover import WatermarkRemover, WatermarkResult

logger = logging.getLogger(__name__)


class ImageState(Enum):
    """Processing marker kept per image identifier."""
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


class ImageOutcome(str, Enum):
    """Terminal outcome of one image."""
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class AcquisitionResult:
    image_id: str
    outcome: ImageOutcome
    data: Optional[bytes] = None
    storage_key: Optional[str] = None
    reason: str = ""


def clean_image_bytes(data: bytes, remover: WatermarkRemover) -> tuple[bytes, WatermarkResult]:
    """Decode an encoded image, remove the watermark, re-encode as PNG."""
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        result = remover.remove_from_pil(image)

    buf = io.BytesIO()
    result.cleaned_image.save(buf, format="PNG")
    return buf.getvalue(), result


def storage_key_for(image_id: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9_-]+", "_", image_id).strip("_")[-96:] or "image"
    return f"processed/{safe}.png"


class ImageAcquisition:
    """Per-image fetch -> decode -> remove -> encode -> substitute pipeline."""

    def __init__(
        self,
        remover: WatermarkRemover,
        feed: Optional[ImageFeed] = None,
        storage=None,
        client: Optional[httpx.AsyncClient] = None,
        enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.remover = remover
        self.feed = feed
        self.storage = storage
        self.enabled = settings.watermark_removal_enabled if enabled is None else enabled
        self._client = client
        self._owns_client = client is None
        self._timeout = settings.fetch_timeout
        self._states: dict[str, ImageState] = {}

    def state(self, image_id: str) -> Optional[ImageState]:
        return self._states.get(image_id)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def fetch(self, url: str) -> bytes:
        """Download the original (non-downsampled) image bytes."""
        client = await self._get_client()
        response = await client.get(url)
        response.raise_for_status()
        return response.content

    async def process(self, candidate: CandidateImage) -> Optional[AcquisitionResult]:
        """
        Process one candidate image.

        Returns None when the image is already done, failed or in flight.
        """
        if not self.enabled:
            return AcquisitionResult(candidate.image_id, ImageOutcome.SKIPPED, reason="disabled")
        if not self.remover.available:
            return AcquisitionResult(
                candidate.image_id, ImageOutcome.SKIPPED, reason="reference captures unavailable"
            )
        if candidate.image_id in self._states:
            return None

        self._states[candidate.image_id] = ImageState.IN_FLIGHT
        try:
            raw = await self.fetch(candidate.full_size_url)
            cleaned, result = await asyncio.to_thread(clean_image_bytes, raw, self.remover)

            if not result.applied:
                self._states[candidate.image_id] = ImageState.DONE
                metrics.record_watermark_outcome(ImageOutcome.SKIPPED.value)
                return AcquisitionResult(
                    candidate.image_id, ImageOutcome.SKIPPED, reason=result.reason
                )

            key = None
            if self.storage is not None:
                key = await asyncio.to_thread(
                    self.storage.upload_bytes, cleaned, storage_key_for(candidate.image_id)
                )
            if self.feed is not None:
                await self.feed.substitute(candidate, cleaned)

        except Exception as e:
            # Original bytes stay on screen; the image is not retried.
            self._states[candidate.image_id] = ImageState.FAILED
            metrics.record_watermark_outcome(ImageOutcome.FAILED.value)
            logger.warning(f"Failed to remove watermark from {candidate.image_id}: {e}")
            return AcquisitionResult(candidate.image_id, ImageOutcome.FAILED, reason=str(e))

        self._states[candidate.image_id] = ImageState.DONE
        metrics.record_watermark_outcome(ImageOutcome.PROCESSED.value)
        logger.info(
            f"Watermark removed from {candidate.image_id} "
            f"({result.variant.name.lower()} logo at {result.position.x},{result.position.y})"
        )
        return AcquisitionResult(
            candidate.image_id, ImageOutcome.PROCESSED, data=cleaned, storage_key=key
        )

    async def process_all(self, candidates: list[CandidateImage]) -> list[AcquisitionResult]:
        """Process candidates concurrently; already-handled images are left out."""
        results = await asyncio.gather(*(self.process(c) for c in candidates))
        return [r for r in results if r is not None]

    async def process_feed(self) -> list[AcquisitionResult]:
        """Discover images on the feed and process the new ones."""
        if self.feed is None or not self.enabled:
            return []
        candidates = await self.feed.discover()
        if candidates:
            logger.info(f"Found {len(candidates)} images to process")
        return await self.process_all(candidates)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
