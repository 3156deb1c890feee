"""Image intake — probe and decode source images to RGBA arrays."""

import io
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (
    FileNotFoundError,
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    ValueError,
)


class DecodeFailed(Exception):
    """The source could not be decoded as an image."""


@dataclass
class DecodedImage:
    rgba: np.ndarray
    width: int
    height: int


def _open(source: str | Path | bytes) -> Image.Image:
    if isinstance(source, (bytes, bytearray)):
        return Image.open(io.BytesIO(source))
    return Image.open(source)


def probe(path: str) -> dict:
    """Read image headers only. Fast — pixels are not decoded."""
    try:
        with Image.open(path) as img:
            return {
                "ok": True,
                "width": img.width,
                "height": img.height,
                "format": img.format,
                "mode": img.mode,
                "frames": getattr(img, "n_frames", 1),
            }
    except _DECODE_ERRORS as e:
        logger.exception("Probe failed for %s", path)
        return {"ok": False, "error": f"Failed to open image: {type(e).__name__}"}


def lift_black(frame: np.ndarray) -> np.ndarray:
    """Nudge opaque pure-black pixels to (1, 1, 1) in place.

    Alpha is derived from color on every write, so an untouched (0, 0, 0)
    pixel would turn transparent as soon as the buffer takes it.
    """
    mask = (frame[:, :, 3] == 255) & ~frame[:, :, :3].any(axis=2)
    frame[mask, :3] = 1
    return frame


def decode_image(source: str | Path | bytes) -> DecodedImage:
    """Decode the first frame of any Pillow-readable image to RGBA.

    Fully transparent pixels come out as (0, 0, 0, 0) and opaque black is
    lifted so it survives alpha derivation.

    Raises:
        DecodeFailed: If the source is missing or not a decodable image.
    """
    try:
        with _open(source) as img:
            img.seek(0)
            rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
    except _DECODE_ERRORS as e:
        logger.error("Image decode failed: %s", type(e).__name__)
        raise DecodeFailed(f"Failed to decode image: {type(e).__name__}") from e

    rgba[rgba[:, :, 3] == 0] = 0
    lift_black(rgba)
    h, w = rgba.shape[:2]
    return DecodedImage(rgba=rgba, width=w, height=h)
