"""Random Bands glitch — a handful of bands with independent R/G/B offsets.

Always rebuilt from the origin image, so pressing it repeatedly gives a fresh
variation instead of piling glitches on top of each other.
"""

import numpy as np

from effects.glitch._shift import random_shift, shift_band
from engine.buffer import recompute_alpha

EFFECT_ID = "glitch.random_bands"
EFFECT_NAME = "Random Bands"
EFFECT_CATEGORY = "glitch"

MIN_BANDS = 3
MAX_BANDS = 7
MIN_THICKNESS = 5
MAX_THICKNESS = 40  # exclusive
TOP_MARGIN = 50
# Each channel moves up to 15% of the width either way
MAX_SHIFT_FRACTION = 0.15

PARAMS: dict = {}


def apply(
    frame: np.ndarray,
    params: dict,
    *,
    rng: np.random.Generator,
    origin: np.ndarray | None = None,
) -> tuple[np.ndarray, dict | None]:
    """Glitch 3-7 random bands of frame. Returns the band count as state."""
    output = frame.copy()
    h, w = output.shape[:2]
    span = w * MAX_SHIFT_FRACTION * 2

    band_count = int(rng.integers(MIN_BANDS, MAX_BANDS + 1))
    for _ in range(band_count):
        top = int(rng.integers(0, max(1, h - TOP_MARGIN)))
        thickness = int(rng.integers(MIN_THICKNESS, MAX_THICKNESS))
        shifts = (
            random_shift(rng, span),
            random_shift(rng, span),
            random_shift(rng, span),
        )
        shift_band(output, top, thickness, shifts)

    return recompute_alpha(output), {"bands": band_count}
