"""Clamped horizontal channel shift shared by every glitch algorithm."""

import numpy as np


def shift_channel(out: np.ndarray, src: np.ndarray, channel: int, shift: int) -> None:
    """Copy src[:, :, channel] into out, displaced horizontally by shift.

    Destinations outside [0, width) are dropped rather than wrapped, so the
    matching destination pixels keep whatever out already holds. A zero shift
    writes nothing. out and src must share (rows, width).
    """
    width = src.shape[1]
    if shift == 0 or abs(shift) >= width:
        return
    if shift > 0:
        out[:, shift:, channel] = src[:, : width - shift, channel]
    else:
        out[:, : width + shift, channel] = src[:, -shift:, channel]


def shift_band(
    out: np.ndarray, top: int, thickness: int, shifts: tuple[int, int, int]
) -> None:
    """Shift R, G, B of rows [top, top + thickness) in out by independent amounts.

    The band is read from a copy taken before any channel moves, so the three
    shifts never feed into each other.
    """
    rows = slice(max(0, top), min(out.shape[0], top + thickness))
    band = out[rows]
    if band.shape[0] == 0:
        return
    source = band.copy()
    for channel, shift in enumerate(shifts):
        shift_channel(band, source, channel, shift)


def random_shift(rng: np.random.Generator, span: float) -> int:
    """Uniform integer offset in [-span/2, span/2), floored like a pixel index."""
    return int(np.floor((rng.random() - 0.5) * span))
