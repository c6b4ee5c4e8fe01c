"""
Watermark Removal Routes

Standalone removal of the Gemini watermark from uploaded images.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response

from ... import metrics
from ...config import get_settings
from ...pipeline.acquisition import ImageOutcome, clean_image_bytes
from ...pipeline.watermark_remover import WatermarkRemover
from ..deps import get_remover

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/watermark", tags=["watermark"])


def sanitize_for_log(value: str) -> str:
    """Sanitize a value for safe logging (prevent log injection)."""
    return re.sub(r'[\r\n\t]', '', str(value))


@router.post("/remove")
async def remove_watermark(
    file: Annotated[UploadFile, File(description="Gemini image to clean")],
    remover: WatermarkRemover = Depends(get_remover),
) -> Response:
    """
    Remove the watermark from one uploaded image.

    Returns the cleaned PNG. When nothing was removed (image too small, or
    reference captures unavailable) the upload is returned unchanged.
    The `X-Watermark-Outcome` header reports `processed` or `skipped`.
    """
    settings = get_settings()
    content = await file.read()

    size_mb = len(content) / (1024 * 1024)
    if size_mb > settings.max_upload_size_mb:
        raise HTTPException(
            status_code=413,
            detail=f"File too large ({size_mb:.1f}MB, max: {settings.max_upload_size_mb}MB)",
        )

    try:
        cleaned, result = await asyncio.to_thread(clean_image_bytes, content, remover)
    except Exception as e:
        logger.warning("Could not process upload %s: %s", sanitize_for_log(file.filename), type(e).__name__)
        metrics.record_watermark_outcome(ImageOutcome.FAILED.value)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Could not decode image")

    headers = {"X-Watermark-Variant": result.variant.name.lower()}
    if not result.applied:
        metrics.record_watermark_outcome(ImageOutcome.SKIPPED.value)
        headers["X-Watermark-Outcome"] = ImageOutcome.SKIPPED.value
        headers["X-Watermark-Reason"] = result.reason
        return Response(
            content=content,
            media_type=file.content_type or "application/octet-stream",
            headers=headers,
        )

    metrics.record_watermark_outcome(ImageOutcome.PROCESSED.value)
    headers["X-Watermark-Outcome"] = ImageOutcome.PROCESSED.value
    return Response(content=cleaned, media_type="image/png", headers=headers)
