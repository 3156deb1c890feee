"""Channel Shift glitch — drags one or all color channels of a band sideways.

This is the interactive effect: the frame is the band under the pointer,
captured when the drag started, and distance_x is the pointer's horizontal
travel since then. Every call starts from that same band, so moving the
pointer back and forth redraws instead of compounding.
"""

import numpy as np

from effects.glitch._shift import shift_channel
from engine.buffer import recompute_alpha

EFFECT_ID = "glitch.channel_shift"
EFFECT_NAME = "Channel Shift"
EFFECT_CATEGORY = "glitch"

MODE_CHANNELS: dict[str, tuple[int, ...]] = {
    "r": (0,),
    "g": (1,),
    "b": (2,),
    "rgb": (0, 1, 2),
}

# Widest image an upload may be (one row of 8192 x 8192 pixels)
MAX_DISTANCE = 8192 * 8192

PARAMS: dict = {
    "distance_x": {
        "type": "int",
        "min": -MAX_DISTANCE,
        "max": MAX_DISTANCE,
        "default": 0,
        "label": "Distance",
    },
    "mode": {
        "type": "choice",
        "choices": list(MODE_CHANNELS),
        "default": "rgb",
        "label": "Channels",
    },
}


def apply(
    frame: np.ndarray,
    params: dict,
    *,
    rng: np.random.Generator | None = None,
    origin: np.ndarray | None = None,
) -> tuple[np.ndarray, dict | None]:
    """Shift the selected channels of every row by distance_x. Stateless.

    Unselected channels stay where they are, which is what lets the single
    channel modes split color fringes off an anchored image.
    """
    distance_x = int(params.get("distance_x", 0))
    mode = params.get("mode", "rgb")
    if mode not in MODE_CHANNELS:
        raise ValueError(f"Unknown channel mode '{mode}'")

    output = frame.copy()
    if distance_x == 0:
        return output, None

    for channel in MODE_CHANNELS[mode]:
        shift_channel(output, frame, channel, distance_x)

    return recompute_alpha(output), None
