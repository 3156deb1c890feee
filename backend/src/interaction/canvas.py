"""Glitch canvas — the interactive editing surface.

Owns one PixelBuffer, the current glitch settings and at most one drag
session. Only one writer touches the buffer at a time: while a drag is
active nothing else may glitch, and while a batch owner (the GIF export)
holds the canvas no drag or interactive glitch may start.
"""

import logging
import threading

from effects.glitch.channel_shift import MODE_CHANNELS
from engine.buffer import PixelBuffer
from engine.determinism import make_rng
from engine.operations import (
    apply_drag_glitch,
    apply_intensity_glitch,
    apply_random_glitch,
    band_top,
)
from imaging.encode import encode_png
from interaction.drag import DragSession

logger = logging.getLogger(__name__)

DEFAULT_MODE = "rgb"
DEFAULT_SPLIT_HEIGHT = 40


class CanvasBusyError(RuntimeError):
    """Another writer (drag or export) currently owns the canvas."""


class GlitchCanvas:
    def __init__(
        self,
        seed: int | None = None,
        mode: str = DEFAULT_MODE,
        split_height: int = DEFAULT_SPLIT_HEIGHT,
    ):
        self.buffer = PixelBuffer()
        self.seed = seed
        self.rng = make_rng(seed)
        self.mode = DEFAULT_MODE
        self._split_height = DEFAULT_SPLIT_HEIGHT
        self.drag = DragSession()
        self._drag_band = None
        self._drag_top = 0
        self._lock = threading.Lock()
        self._owner: str | None = None
        self.configure(mode=mode, split_height=split_height)

    # --- ownership ---

    @property
    def owner(self) -> str | None:
        return self._owner

    def acquire(self, owner: str) -> None:
        """Take exclusive ownership for a batch job.

        Raises:
            CanvasBusyError: If a drag is active or another owner holds the canvas.
        """
        with self._lock:
            if self.drag.active:
                raise CanvasBusyError("Canvas is busy: drag in progress")
            if self._owner is not None:
                raise CanvasBusyError(f"Canvas is busy: {self._owner} in progress")
            self._owner = owner
        logger.debug("Canvas acquired by %s", owner)

    def release(self, owner: str) -> None:
        with self._lock:
            if self._owner == owner:
                self._owner = None

    def _ensure_idle(self) -> None:
        if self._owner is not None:
            raise CanvasBusyError(f"Canvas is busy: {self._owner} in progress")
        if self.drag.active:
            raise CanvasBusyError("Canvas is busy: drag in progress")

    # --- image + settings ---

    def load(self, rgba, width: int, height: int) -> None:
        self._ensure_idle()
        self.buffer.load(rgba, width, height)

    def configure(self, mode: str | None = None, split_height: int | None = None) -> None:
        """Update glitch mode and/or split height.

        Raises:
            ValueError: For an unknown mode or a split height below 1.
        """
        if mode is not None:
            if mode not in MODE_CHANNELS:
                raise ValueError(f"mode must be one of {list(MODE_CHANNELS)}")
            self.mode = mode
        if split_height is not None:
            split_height = int(split_height)
            if split_height < 1:
                raise ValueError("split_height must be >= 1")
            self._split_height = split_height

    @property
    def split_height(self) -> int:
        """Configured split height, capped at the loaded image's height."""
        if self.buffer.ready:
            return min(self._split_height, self.buffer.height)
        return self._split_height

    def settings(self) -> dict:
        return {"mode": self.mode, "split_height": self.split_height}

    def snapshot(self):
        return self.buffer.snapshot()

    def reset(self) -> None:
        self._ensure_idle()
        self.buffer.reset()

    def to_png(self) -> bytes:
        return encode_png(self.buffer.snapshot())

    # --- drag gesture ---

    def pointer_down(
        self,
        pointer_x: float,
        pointer_y: float,
        *,
        canvas_top: float = 0.0,
        scale_y: float = 1.0,
    ) -> bool:
        """Begin a drag and capture the band under the pointer from previous."""
        split_height = min(self.split_height, self.buffer.height)
        with self._lock:
            if self._owner is not None:
                raise CanvasBusyError(f"Canvas is busy: {self._owner} in progress")
            if not self.drag.pointer_down(
                pointer_x, pointer_y, canvas_top=canvas_top, scale_y=scale_y
            ):
                return False

        top = band_top(self.drag.anchor_canvas_y, split_height)
        self._drag_top, self._drag_band = self.buffer.band(
            top, split_height, source="previous"
        )
        return True

    def pointer_move(self, pointer_x: float) -> bool:
        """Redraw the band at the current distance. True if the canvas changed."""
        distance_x = self.drag.pointer_move(pointer_x)
        if distance_x is None:
            return False
        return apply_drag_glitch(
            self.buffer, self._drag_band, self._drag_top, distance_x, self.mode
        )

    def pointer_up(self) -> bool:
        """Finish the drag and commit the canvas. True if a drag ended."""
        if not self.drag.pointer_up():
            return False
        self._finish_drag()
        return True

    def cancel_drag(self) -> bool:
        if not self.drag.cancel():
            return False
        self._finish_drag()
        return True

    def _finish_drag(self) -> None:
        self._drag_band = None
        self.buffer.commit()

    # --- one-shot glitches ---

    def random_glitch(self) -> int:
        self._ensure_idle()
        return apply_random_glitch(self.buffer, self.rng)

    def intensity_glitch(self, intensity: float, repeat_count: int = 1) -> bool:
        self._ensure_idle()
        return apply_intensity_glitch(self.buffer, intensity, repeat_count, self.rng)
