"""Encoding of the 1x1 transparent PNG served as the tracking pixel."""

from __future__ import annotations

import base64
import io
from functools import lru_cache

from loguru import logger
from PIL import Image

# Minimal 1x1 RGBA PNG with a fully transparent pixel
FALLBACK_PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAAC0lEQVR42mNgAAIAAAUAAen63NgAAAAASUVORK5CYII="
)

PIXEL_MEDIA_TYPE = "image/png"


def encode_transparent_pixel() -> bytes:
    """Render a 1x1 fully transparent PNG with Pillow."""
    image = Image.new("RGBA", (1, 1), (0, 0, 0, 0))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


@lru_cache(maxsize=1)
def _cached_pixel() -> bytes:
    return encode_transparent_pixel()


def transparent_pixel() -> bytes:
    """Return the tracking pixel bytes, falling back to a hard-coded PNG."""
    try:
        return _cached_pixel()
    except Exception as exc:
        logger.error("Failed to encode tracking pixel, using fallback bytes", error=str(exc))
        return FALLBACK_PIXEL_PNG
