"""Pixel buffer — the live RGBA canvas plus its origin and previous snapshots.

Every write goes through recompute_alpha(), so alpha is always derived from
the color channels and never trusted from the caller:

    alpha == 255  if any of R, G, B is nonzero
    alpha == 0    otherwise

Glitch algorithms never hold a reference to the buffer's arrays. They receive
copies (band(), snapshot(), origin) and hand back new arrays, which the buffer
takes ownership of on write()/write_band().
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

SOURCES = ("current", "previous", "origin")


class NotReadyError(RuntimeError):
    """Buffer accessed before load() or after close()."""


def recompute_alpha(frame: np.ndarray) -> np.ndarray:
    """Derive alpha from RGB in place. Returns the same array."""
    frame[:, :, 3] = np.where(frame[:, :, :3].any(axis=2), 255, 0).astype(np.uint8)
    return frame


def _as_frame(rgba, width: int, height: int) -> np.ndarray:
    """Coerce raw bytes or an ndarray into a fresh (H, W, 4) uint8 array."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid dimensions {width}x{height}")

    if isinstance(rgba, np.ndarray):
        arr = np.array(rgba, dtype=np.uint8, copy=True)
    else:
        arr = np.frombuffer(bytes(rgba), dtype=np.uint8).copy()

    expected = width * height * 4
    if arr.size != expected:
        raise ValueError(
            f"RGBA data has {arr.size} bytes, expected {expected} for {width}x{height}"
        )
    return arr.reshape(height, width, 4)


class PixelBuffer:
    """Owns the current canvas plus origin and previous snapshots."""

    def __init__(self):
        self._current: np.ndarray | None = None
        self._origin: np.ndarray | None = None
        self._previous: np.ndarray | None = None

    # --- lifecycle ---

    def load(self, rgba, width: int, height: int) -> None:
        frame = recompute_alpha(_as_frame(rgba, width, height))
        self._current = frame
        self._origin = frame.copy()
        self._previous = frame.copy()
        logger.debug("Buffer loaded %dx%d", width, height)

    def close(self) -> None:
        self._current = None
        self._origin = None
        self._previous = None

    @property
    def ready(self) -> bool:
        return self._current is not None

    def _require(self) -> np.ndarray:
        if self._current is None:
            raise NotReadyError("Pixel buffer is not loaded")
        return self._current

    # --- geometry ---

    @property
    def width(self) -> int:
        return self._require().shape[1]

    @property
    def height(self) -> int:
        return self._require().shape[0]

    @property
    def shape(self) -> tuple[int, int, int]:
        return self._require().shape

    # --- reads (always copies) ---

    def snapshot(self) -> np.ndarray:
        return self._require().copy()

    @property
    def origin(self) -> np.ndarray:
        self._require()
        return self._origin.copy()

    @property
    def previous(self) -> np.ndarray:
        self._require()
        return self._previous.copy()

    def band(self, top: int, height: int, source: str = "current") -> tuple[int, np.ndarray]:
        """Copy rows [top, top + height) from a snapshot, clipped to the buffer.

        Returns (clipped_top, rows). rows may have zero height when the band
        lies entirely outside the image.
        """
        frame = self._require()
        if source not in SOURCES:
            raise ValueError(f"Unknown band source '{source}'. Use one of {SOURCES}")
        src = {"current": frame, "previous": self._previous, "origin": self._origin}[
            source
        ]
        h = frame.shape[0]
        start = max(0, min(h, top))
        stop = max(start, min(h, top + height))
        return start, src[start:stop].copy()

    # --- writes ---

    def write(self, frame: np.ndarray) -> None:
        """Replace the full canvas with frame (buffer takes ownership)."""
        current = self._require()
        if frame.shape != current.shape:
            raise ValueError(
                f"Frame shape {frame.shape} does not match buffer {current.shape}"
            )
        self._current = recompute_alpha(np.asarray(frame, dtype=np.uint8))

    def write_band(self, top: int, rows: np.ndarray) -> None:
        """Write rows back at vertical offset top. Rows outside the image are dropped."""
        current = self._require()
        h, w = current.shape[:2]
        if rows.ndim != 3 or rows.shape[1:] != (w, 4):
            raise ValueError(f"Band shape {rows.shape} incompatible with width {w}")

        skip = max(0, -top)
        start = max(0, top)
        stop = min(h, top + rows.shape[0])
        if stop <= start:
            return
        patch = rows[skip : skip + (stop - start)].astype(np.uint8, copy=True)
        current[start:stop] = recompute_alpha(patch)

    def reset(self) -> None:
        """Restore origin into the canvas and the previous snapshot."""
        self._require()
        self._current = self._origin.copy()
        self._previous = self._origin.copy()

    def commit(self) -> None:
        """Store the current canvas as the previous-state snapshot."""
        self._previous = self._require().copy()
