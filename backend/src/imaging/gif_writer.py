"""Animated GIF encoding via Pillow."""

import io
import logging
import threading

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

MIN_QUALITY = 1
MAX_QUALITY = 30
# Index reserved for the transparency key; the quantizer gets the other 255.
KEY_INDEX = 255


class EncodeFailed(Exception):
    """The GIF codec could not produce output."""


def parse_hex_color(value: str) -> tuple[int, int, int]:
    """'#rrggbb' (or 'rrggbb') -> (r, g, b).

    Raises:
        ValueError: If value is not a 6-digit hex color.
    """
    text = value.lstrip("#")
    if len(text) != 6:
        raise ValueError(f"Expected #rrggbb color, got {value!r}")
    try:
        return tuple(int(text[i : i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        raise ValueError(f"Expected #rrggbb color, got {value!r}") from None


class GifEncoder:
    """Collects RGBA frames with per-frame delays and renders a looping GIF.

    quality follows the usual 1..30 sampling convention: lower is better.
    1-10 quantize with median cut, anything coarser with fast octree.
    Pixels whose RGB equals the transparent key are written as transparent.

    Pillow folds a frame identical to the one before it into that frame and
    adds the delays together, so the file can hold fewer frames than were
    added while the total running time stays the same.
    """

    def __init__(
        self,
        width: int,
        height: int,
        quality: int = 10,
        transparent: str = "#000000",
    ):
        if width < 1 or height < 1:
            raise ValueError(f"Invalid GIF size {width}x{height}")
        self.width = width
        self.height = height
        self.quality = max(MIN_QUALITY, min(MAX_QUALITY, int(quality)))
        self.key = parse_hex_color(transparent)
        self._frames: list[tuple[np.ndarray, int]] = []
        self._abort = threading.Event()

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    def add_frame(self, rgba: np.ndarray, delay_ms: int):
        if rgba.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Frame shape {rgba.shape} does not match "
                f"{(self.height, self.width, 4)}"
            )
        self._frames.append((np.array(rgba, dtype=np.uint8), int(delay_ms)))

    def abort(self):
        self._abort.set()

    def _quantize(self, rgba: np.ndarray) -> Image.Image:
        rgb = np.ascontiguousarray(rgba[:, :, :3])
        method = (
            Image.Quantize.MEDIANCUT if self.quality <= 10 else Image.Quantize.FASTOCTREE
        )
        quantized = Image.fromarray(rgb).quantize(
            colors=KEY_INDEX, method=method, dither=Image.Dither.NONE
        )

        indices = np.array(quantized, dtype=np.uint8)
        indices[(rgb == self.key).all(axis=2)] = KEY_INDEX

        palette = (quantized.getpalette() or [])[: KEY_INDEX * 3]
        palette += [0] * (KEY_INDEX * 3 - len(palette))
        palette += list(self.key)

        frame = Image.frombytes("P", (self.width, self.height), indices.tobytes())
        frame.putpalette(palette)
        frame.info["transparency"] = KEY_INDEX
        return frame

    def render(self, on_progress=None) -> bytes:
        """Encode all frames. on_progress receives a fraction in [0, 1].

        Raises:
            EncodeFailed: No frames, aborted, or the codec failed.
        """
        if not self._frames:
            raise EncodeFailed("No frames to encode")

        images = []
        total = len(self._frames)
        for i, (rgba, _) in enumerate(self._frames):
            if self._abort.is_set():
                raise EncodeFailed("Encoding aborted")
            images.append(self._quantize(rgba))
            if on_progress is not None:
                on_progress((i + 1) / total * 0.95)

        if self._abort.is_set():
            raise EncodeFailed("Encoding aborted")

        buf = io.BytesIO()
        try:
            images[0].save(
                buf,
                format="GIF",
                save_all=True,
                append_images=images[1:],
                duration=[delay for _, delay in self._frames],
                loop=0,
                disposal=2,
                optimize=False,
            )
        except (OSError, ValueError) as e:
            raise EncodeFailed(f"GIF encode failed: {type(e).__name__}") from e

        data = buf.getvalue()
        logger.debug("Encoded %d frames, %d bytes", total, len(data))
        if on_progress is not None:
            on_progress(1.0)
        return data
