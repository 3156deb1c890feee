"""Buffer operations — run registered glitches against a PixelBuffer.

Each operation reads copies out of the buffer, runs the effect through its
container and writes the result back, so the effect functions themselves
never see the live arrays.

Also keeps rolling timing stats per effect (p50/p95/max) and warns when an
interactive glitch gets slow enough to stutter a drag.
"""

import logging
import math
import threading
import time
from collections import defaultdict, deque

import numpy as np

from effects import registry
from effects.glitch import channel_shift, intensity, random_bands
from engine.buffer import PixelBuffer
from engine.container import EffectContainer

logger = logging.getLogger(__name__)

# Per-call timing threshold (milliseconds)
EFFECT_WARN_MS = 50

_timing_lock = threading.Lock()
_effect_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


def record_timing(effect_id: str, elapsed_ms: float):
    """Record a timing sample for an effect."""
    with _timing_lock:
        _effect_timing[effect_id].append(elapsed_ms)


def get_effect_stats() -> dict[str, dict]:
    """Return p50/p95/max per effect."""
    result = {}
    with _timing_lock:
        items = [(eid, sorted(samples)) for eid, samples in _effect_timing.items()]
    for eid, s in items:
        result[eid] = {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "samples": len(s),
        }
    return result


def flush_timing():
    """Clear all timing stats."""
    with _timing_lock:
        _effect_timing.clear()


def run_effect(
    effect_id: str,
    frame: np.ndarray,
    params: dict,
    *,
    rng: np.random.Generator | None = None,
    origin: np.ndarray | None = None,
) -> tuple[np.ndarray, dict | None]:
    """Look up effect_id and run it through an EffectContainer.

    Raises:
        ValueError: If effect_id is not registered or params are invalid.
    """
    info = registry.get(effect_id)
    if info is None:
        raise ValueError(f"unknown effect: {effect_id}")

    container = EffectContainer(info["fn"], effect_id, info["params"])
    t0 = time.monotonic()
    output, state = container.process(frame, params, rng=rng, origin=origin)
    elapsed_ms = (time.monotonic() - t0) * 1000

    record_timing(effect_id, elapsed_ms)
    if elapsed_ms > EFFECT_WARN_MS:
        logger.warning(
            "Effect %s took %.0fms (>%dms warn threshold) on %dx%d",
            effect_id,
            elapsed_ms,
            EFFECT_WARN_MS,
            frame.shape[1],
            frame.shape[0],
        )
    return output, state


def band_top(anchor_y: int, split_height: int) -> int:
    """First row of the band centred on anchor_y."""
    return math.floor(anchor_y - split_height / 2)


def apply_drag_glitch(
    buffer: PixelBuffer,
    band: np.ndarray,
    top: int,
    distance_x: int,
    mode: str,
) -> bool:
    """Shift band by distance_x and draw it at row top. Nothing is drawn at 0.

    band is the snapshot captured when the drag began; it is not modified.
    Returns True when the canvas was redrawn.
    """
    if distance_x == 0 or band.shape[0] == 0:
        return False
    output, _ = run_effect(
        channel_shift.EFFECT_ID,
        band,
        {"distance_x": distance_x, "mode": mode},
    )
    buffer.write_band(top, output)
    return True


def apply_random_glitch(buffer: PixelBuffer, rng: np.random.Generator) -> int:
    """Replace the canvas with a random-bands variation of origin and commit it.

    Returns the number of bands drawn.
    """
    output, state = run_effect(random_bands.EFFECT_ID, buffer.origin, {}, rng=rng)
    buffer.write(output)
    buffer.commit()
    return state["bands"]


def apply_intensity_glitch(
    buffer: PixelBuffer,
    level: float,
    repeat_count: int,
    rng: np.random.Generator,
) -> bool:
    """Glitch the current canvas at the given intensity and commit the result.

    Returns True when the glitch flashed back to the origin image.
    """
    output, state = run_effect(
        intensity.EFFECT_ID,
        buffer.snapshot(),
        {"intensity": level, "repeat_count": repeat_count},
        rng=rng,
        origin=buffer.origin,
    )
    if state["flashed"]:
        buffer.reset()
        return True
    buffer.write(output)
    buffer.commit()
    return False
