"""Intensity glitch — graduated band glitches for animation frames.

intensity (0..1) scales band count, band thickness and shift distance.
Two random "flash" exits return the untouched origin instead, which gives
the animation its snaps back to the clean image and keeps repeated
applications from smearing the frame into noise.
"""

import math

import numpy as np

from effects.glitch._shift import random_shift, shift_band
from engine.buffer import recompute_alpha

EFFECT_ID = "glitch.intensity"
EFFECT_NAME = "Intensity Glitch"
EFFECT_CATEGORY = "glitch"

MAX_APPLICATIONS = 2
FLASH_PROBABILITY = 0.2
EARLY_FLASH_PROBABILITY = 0.1
EXTRA_BAND_PROBABILITY = 0.7
MAX_SHIFT_FRACTION = 0.2

PARAMS: dict = {
    "intensity": {
        "type": "float",
        "min": 0.0,
        "max": 1.0,
        "default": 0.5,
        "label": "Intensity",
    },
    "repeat_count": {
        "type": "int",
        "min": 0,
        "max": 8,
        "default": 1,
        "label": "Repeats",
    },
}


def thickness_range(intensity: float) -> tuple[int, int]:
    """Band thickness bounds [low, high) for an intensity: 2-12 up to 5-30 px."""
    return math.floor(intensity * 10) + 2, math.floor(intensity * 25) + 5


def apply(
    frame: np.ndarray,
    params: dict,
    *,
    rng: np.random.Generator,
    origin: np.ndarray | None = None,
) -> tuple[np.ndarray, dict | None]:
    """Apply up to MAX_APPLICATIONS rounds of intensity-scaled bands to frame.

    Returns (output, {"flashed": bool, "applications": int}). When flashed is
    True the output is a copy of origin.
    """
    if origin is None:
        raise ValueError("Intensity glitch requires the origin frame")

    intensity = max(0.0, min(1.0, float(params.get("intensity", 0.5))))
    repeats = max(0, min(int(params.get("repeat_count", 1)), MAX_APPLICATIONS))

    if rng.random() < FLASH_PROBABILITY:
        return origin.copy(), {"flashed": True, "applications": 0}

    output = frame.copy()
    h, w = output.shape[:2]
    low, high = thickness_range(intensity)
    span = intensity * w * MAX_SHIFT_FRACTION

    for application in range(repeats):
        band_count = math.floor(intensity * 2) + 1
        if rng.random() < EXTRA_BAND_PROBABILITY:
            band_count += 1

        for _ in range(band_count):
            thickness = math.floor(rng.random() * (high - low)) + low
            top = math.floor(rng.random() * max(1, h - thickness))
            shifts = (
                random_shift(rng, span),
                random_shift(rng, span),
                random_shift(rng, span),
            )
            shift_band(output, top, thickness, shifts)

        recompute_alpha(output)

        if rng.random() < EARLY_FLASH_PROBABILITY:
            return origin.copy(), {"flashed": True, "applications": application + 1}

    return output, {"flashed": False, "applications": repeats}
