"""
Watermark Remover

Removes the fixed bottom-right logo that Gemini composites onto generated
images, by reversing the alpha blending with a known per-pixel opacity map.

The watermark blending formula is:
    observed = alpha * 255 + (1 - alpha) * original

To recover the original:
    original = (observed - alpha * 255) / (1 - alpha)

The opacity map is derived from reference captures of the logo rendered on
a pure black background, where every channel equals alpha * 255.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config import get_settings

logger = logging.getLogger(__name__)

ALPHA_THRESHOLD = 0.002  # ignore noise-level alpha
MAX_ALPHA = 0.99         # cap to avoid division by near-zero
LOGO_VALUE = 255         # white watermark

# Images strictly larger than this in both dimensions use the large logo
LARGE_IMAGE_THRESHOLD = 1024


class WatermarkVariant(Enum):
    """Logo calibration, tied to the generator's known output resolutions."""
    SMALL = (48, 32, 32)
    LARGE = (96, 64, 64)

    def __init__(self, logo_size: int, margin_right: int, margin_bottom: int):
        self.logo_size = logo_size
        self.margin_right = margin_right
        self.margin_bottom = margin_bottom

    @property
    def reference_name(self) -> str:
        return f"bg_{self.logo_size}.png"


@dataclass(frozen=True)
class WatermarkPosition:
    """Footprint of the logo: top-left corner and square size."""
    x: int
    y: int
    size: int

    def fits(self, width: int, height: int) -> bool:
        return (
            self.x >= 0 and self.y >= 0
            and self.x + self.size <= width
            and self.y + self.size <= height
        )


@dataclass
class WatermarkResult:
    """Result of watermark removal on a single image."""
    cleaned_image: Image.Image
    applied: bool
    variant: WatermarkVariant
    position: WatermarkPosition
    reason: str = ""


class AlphaMapUnavailable(RuntimeError):
    """Reference captures for the alpha maps could not be loaded."""


def detect_watermark_config(width: int, height: int) -> WatermarkVariant:
    """Select the logo variant for an image of the given size."""
    if width > LARGE_IMAGE_THRESHOLD and height > LARGE_IMAGE_THRESHOLD:
        return WatermarkVariant.LARGE
    return WatermarkVariant.SMALL


def calculate_watermark_position(width: int, height: int, variant: WatermarkVariant) -> WatermarkPosition:
    return WatermarkPosition(
        x=width - variant.margin_right - variant.logo_size,
        y=height - variant.margin_bottom - variant.logo_size,
        size=variant.logo_size,
    )


def calculate_alpha_map(capture: Image.Image, size: int) -> np.ndarray:
    """
    Derive the opacity map from a reference capture on black.

    The capture is drawn at (0, 0) onto a black `size` x `size` canvas, so
    it is cropped or padded to exactly the logo footprint.
    """
    canvas = Image.new("RGB", (size, size))
    canvas.paste(capture.convert("RGB"), (0, 0))
    arr = np.asarray(canvas, dtype=np.float32)
    alpha_map = arr.max(axis=2) / 255.0
    alpha_map.setflags(write=False)
    return alpha_map


def remove_watermark(pixels: np.ndarray, alpha_map: np.ndarray, position: WatermarkPosition) -> np.ndarray:
    """
    Un-composite the watermark footprint of `pixels` in place.

    `pixels` is a (height, width, channels) uint8 array with RGB in the first
    three channels; any fourth channel is left untouched.
    """
    x, y, size = position.x, position.y, position.size
    region = pixels[y:y + size, x:x + size, :3]
    observed = region.astype(np.float32)

    alpha = alpha_map[:size, :size]
    mask = alpha >= ALPHA_THRESHOLD
    capped = np.minimum(alpha, MAX_ALPHA)[:, :, np.newaxis]

    restored = (observed - capped * LOGO_VALUE) / (1.0 - capped)
    restored = np.floor(np.clip(restored, 0, 255) + 0.5).astype(np.uint8)

    region[mask] = restored[mask]
    return pixels


class AlphaMapCache:
    """
    Lazily computed alpha maps, one per variant.

    A variant's map is computed at most once per cache and is read-only
    afterwards, so concurrent readers need no locking.
    """

    def __init__(self, assets_dir: Optional[Path] = None):
        self.assets_dir = Path(assets_dir) if assets_dir is not None else get_settings().assets_path
        self._maps: dict[WatermarkVariant, np.ndarray] = {}
        self._error: Optional[AlphaMapUnavailable] = None
        self._lock = threading.Lock()

    def reference_path(self, variant: WatermarkVariant) -> Path:
        return self.assets_dir / variant.reference_name

    @property
    def available(self) -> bool:
        """True when both reference captures are present and none failed to load."""
        return self._error is None and all(self.reference_path(v).is_file() for v in WatermarkVariant)

    def get_alpha_map(self, variant: WatermarkVariant) -> np.ndarray:
        alpha_map = self._maps.get(variant)
        if alpha_map is not None:
            return alpha_map

        with self._lock:
            if self._error is not None:
                raise AlphaMapUnavailable(str(self._error))
            if variant not in self._maps:
                self._maps[variant] = self._compute(variant)
            return self._maps[variant]

    def _compute(self, variant: WatermarkVariant) -> np.ndarray:
        if not self.available:
            raise AlphaMapUnavailable(
                f"Reference captures missing in {self.assets_dir} "
                f"(need {', '.join(v.reference_name for v in WatermarkVariant)})"
            )
        path = self.reference_path(variant)
        try:
            with Image.open(path) as capture:
                alpha_map = calculate_alpha_map(capture, variant.logo_size)
        except (OSError, UnidentifiedImageError) as e:
            # A broken capture stays broken for the life of the cache
            self._error = AlphaMapUnavailable(f"Could not load reference capture {path}: {e}")
            logger.error(str(self._error))
            raise self._error from e
        logger.info(f"Alpha map computed for {variant.name} ({variant.logo_size}px)")
        return alpha_map

    def verify(self) -> bool:
        """Load every variant's map; False if any capture is missing or broken."""
        try:
            for variant in WatermarkVariant:
                self.get_alpha_map(variant)
        except AlphaMapUnavailable:
            return False
        return True


class WatermarkRemover:
    """Removes the fixed-position watermark from decoded images."""

    def __init__(self, cache: Optional[AlphaMapCache] = None):
        self.cache = cache or get_alpha_map_cache()

    @property
    def available(self) -> bool:
        return self.cache.available

    def remove(self, pixels: np.ndarray) -> np.ndarray:
        """
        Remove the watermark from a (height, width, channels) uint8 buffer.

        The buffer is mutated in place and returned. Buffers smaller than the
        footprint, or a cache without reference captures, leave it unchanged.
        """
        self._apply(pixels)
        return pixels

    def remove_from_pil(self, image: Image.Image) -> WatermarkResult:
        """Remove the watermark from a PIL image, returning a new image."""
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        pixels = np.array(image, dtype=np.uint8)
        variant, position, reason = self._apply(pixels)
        return WatermarkResult(
            cleaned_image=Image.fromarray(pixels),
            applied=not reason,
            variant=variant,
            position=position,
            reason=reason,
        )

    def _apply(self, pixels: np.ndarray) -> tuple[WatermarkVariant, WatermarkPosition, str]:
        height, width = pixels.shape[:2]
        variant = detect_watermark_config(width, height)
        position = calculate_watermark_position(width, height, variant)

        if not position.fits(width, height):
            return variant, position, "image smaller than watermark footprint"

        try:
            alpha_map = self.cache.get_alpha_map(variant)
        except AlphaMapUnavailable as e:
            logger.debug(f"Watermark removal skipped: {e}")
            return variant, position, "reference captures unavailable"

        remove_watermark(pixels, alpha_map, position)
        return variant, position, ""


_alpha_map_cache: Optional[AlphaMapCache] = None


def get_alpha_map_cache() -> AlphaMapCache:
    """Get or create the process-wide alpha map cache."""
    global _alpha_map_cache
    if _alpha_map_cache is None:
        _alpha_map_cache = AlphaMapCache()
    return _alpha_map_cache
