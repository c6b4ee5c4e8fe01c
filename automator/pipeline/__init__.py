"""
Automator Image Pipeline

Watermark removal and image acquisition modules.
"""

from .watermark_remover import (
    AlphaMapCache,
    AlphaMapUnavailable,
    WatermarkPosition,
    WatermarkRemover,
    WatermarkResult,
    WatermarkVariant,
    calculate_watermark_position,
    detect_watermark_config,
    get_alpha_map_cache,
    remove_watermark,
)
from .acquisition import (
    AcquisitionResult,
    ImageAcquisition,
    ImageOutcome,
    ImageState,
    clean_image_bytes,
)

__all__ = [
    # Watermark removal
    "AlphaMapCache",
    "AlphaMapUnavailable",
    "WatermarkPosition",
    "WatermarkRemover",
    "WatermarkResult",
    "WatermarkVariant",
    "calculate_watermark_position",
    "detect_watermark_config",
    "get_alpha_map_cache",
    "remove_watermark",
    # Acquisition
    "AcquisitionResult",
    "ImageAcquisition",
    "ImageOutcome",
    "ImageState",
    "clean_image_bytes",
]
