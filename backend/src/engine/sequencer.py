"""Animation sequencer — tension/release pacing for glitch GIFs.

A sequence opens on the clean image, then repeats cycles of

    buildup (light → medium → heavy) → climax → release → clean image

with buildup lengths in golden ratio to the release. Buildup frames follow
a 4-beat rhythm of delay classes chosen once per sequence, and the space
between cycles is sometimes filled with a quick "breath" of clean image.

Sequences always hold exactly the requested number of frames and always
begin and end on ORIGINAL.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from engine.determinism import make_rng

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_FRAMES = 50
GOLDEN_RATIO = 1.618
MIN_CYCLE_BUDGET = 3
BREATH_PROBABILITY = 0.4
BREATH_FLICKER_PROBABILITY = 0.6


class FrameType(Enum):
    ORIGINAL = "original"
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    BUILDUP = "buildup"
    RELEASE = "release"


class DelayClass(Enum):
    FLASH = "flash"
    QUICK = "quick"
    NORMAL = "normal"
    FREEZE = "freeze"


# Inclusive millisecond ranges
DELAY_RANGES_MS: dict[DelayClass, tuple[int, int]] = {
    DelayClass.FLASH: (30, 50),
    DelayClass.QUICK: (60, 100),
    DelayClass.NORMAL: (120, 180),
    DelayClass.FREEZE: (250, 400),
}

_F, _Q, _N, _Z = DelayClass.FLASH, DelayClass.QUICK, DelayClass.NORMAL, DelayClass.FREEZE

RHYTHM_PATTERNS: tuple[tuple[DelayClass, ...], ...] = (
    (_Z, _Q, _N, _Q),  # strong-weak-medium-weak
    (_Q, _Z, _Q, _N),  # syncopated
    (_Z, _N, _Q, _F),  # accelerating
    (_N, _Q, _F, _N),  # wave
    (_F, _F, _Q, _Q),  # rapid
    (_F, _N, _F, _Z),  # staccato
    (_F, _F, _F, _N),  # drum roll
)


@dataclass(frozen=True)
class AnimationFrame:
    """One step of an animation: what to draw and how long to hold it."""

    type: FrameType
    delay_class: DelayClass
    intensity: float = 0.0
    repeat_count: int = 0

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "delay_class": self.delay_class.value,
            "intensity": round(self.intensity, 4),
            "repeat_count": self.repeat_count,
        }


def clean_frame(delay_class: DelayClass = DelayClass.FREEZE) -> AnimationFrame:
    return AnimationFrame(FrameType.ORIGINAL, delay_class, 0.0, 0)


def resolve_delay(delay_class: DelayClass, rng: np.random.Generator) -> int:
    """Sample a frame duration in milliseconds for a delay class."""
    low, high = DELAY_RANGES_MS[delay_class]
    return int(rng.integers(low, high + 1))


def _tension_cycle(rng: np.random.Generator) -> tuple[int, int]:
    base = int(rng.integers(2, 5))
    return math.ceil(base * GOLDEN_RATIO), base


def _buildup_frame(
    i: int, length: int, delay_class: DelayClass, rng: np.random.Generator
) -> AnimationFrame:
    progress = i / (length - 1)
    level = 0.2 + 0.8 * progress
    if progress < 0.3:
        return AnimationFrame(FrameType.LIGHT, delay_class, level, 1)
    if progress < 0.7:
        return AnimationFrame(FrameType.MEDIUM, delay_class, level, 2)
    return AnimationFrame(
        FrameType.HEAVY, delay_class, level, 3 + int(np.floor(rng.random() * 2))
    )


def _release_frame(i: int, length: int) -> AnimationFrame:
    if i == length - 1:
        return clean_frame()
    progress = i / (length - 1)
    level = (1 - progress) * 0.6
    return AnimationFrame(
        FrameType.LIGHT, DelayClass.NORMAL, level, max(1, math.floor(level * 2))
    )


def generate_sequence(
    total_frames: int = DEFAULT_TOTAL_FRAMES,
    rng: np.random.Generator | None = None,
) -> list[AnimationFrame]:
    """Build a paced sequence of exactly total_frames descriptors.

    Raises:
        ValueError: If total_frames < 1.
    """
    if total_frames < 1:
        raise ValueError(f"total_frames must be >= 1, got {total_frames}")
    if rng is None:
        rng = make_rng()

    pattern = RHYTHM_PATTERNS[int(rng.integers(0, len(RHYTHM_PATTERNS)))]
    beat = 0
    sequence: list[AnimationFrame] = [clean_frame()]
    remaining = total_frames - 1

    while remaining > 0:
        buildup_len, release_len = _tension_cycle(rng)

        if remaining < MIN_CYCLE_BUDGET:
            sequence.append(
                AnimationFrame(
                    FrameType.LIGHT, DelayClass.QUICK, 0.3 + rng.random() * 0.5, 1
                )
            )
            remaining -= 1
            continue

        for i in range(buildup_len):
            if remaining == 0:
                break
            sequence.append(
                _buildup_frame(i, buildup_len, pattern[beat % len(pattern)], rng)
            )
            beat += 1
            remaining -= 1

        if remaining > 0:
            sequence.append(
                AnimationFrame(
                    FrameType.HEAVY,
                    DelayClass.FLASH,
                    0.9 + rng.random() * 0.1,
                    4 + int(np.floor(rng.random() * 3)),
                )
            )
            remaining -= 1

        for i in range(release_len):
            if remaining == 0:
                break
            sequence.append(_release_frame(i, release_len))
            remaining -= 1

        if remaining > 3 and rng.random() < BREATH_PROBABILITY:
            sequence.append(clean_frame(DelayClass.QUICK))
            remaining -= 1
            if remaining > 1 and rng.random() < BREATH_FLICKER_PROBABILITY:
                sequence.append(
                    AnimationFrame(
                        FrameType.LIGHT,
                        DelayClass.FLASH,
                        0.2 + rng.random() * 0.3,
                        1,
                    )
                )
                remaining -= 1

    # A cycle cut short by the budget ends mid-glitch; the closing frame
    # takes its slot so the length stays exact.
    if sequence[-1].type is not FrameType.ORIGINAL:
        sequence[-1] = clean_frame()

    logger.debug("Generated sequence of %d frames", len(sequence))
    return sequence


def sequence_stats(
    sequence: list[AnimationFrame], rng: np.random.Generator | None = None
) -> dict:
    """Summarize a sequence: sampled duration, frame type counts, mean intensity.

    total_duration_ms draws one delay per frame, so it is an estimate.
    """
    if rng is None:
        rng = make_rng()
    counts = {t.value: 0 for t in FrameType}
    for frame in sequence:
        counts[frame.type.value] += 1
    return {
        "frames": len(sequence),
        "total_duration_ms": sum(resolve_delay(f.delay_class, rng) for f in sequence),
        "frame_type_count": counts,
        "average_intensity": (
            sum(f.intensity for f in sequence) / len(sequence) if sequence else 0.0
        ),
    }
