"""Frame assembly pipeline — drives a sequence through the buffer into a codec.

For each descriptor the buffer is reset or glitched, allowed to settle,
snapshotted, and the snapshot is handed to the encoder with its sampled
delay. Preparation is strictly sequential: the sleeps are ordering
barriers between one frame's writes and its capture.

Preparation reports progress over [0, 0.5]; encoding owns (0.5, 1].
"""

import logging
import time

import numpy as np
import sentry_sdk

from engine.buffer import PixelBuffer
from engine.operations import apply_intensity_glitch
from engine.sequencer import AnimationFrame, FrameType, resolve_delay

logger = logging.getLogger(__name__)

SETTLE_DELAY_S = 0.05
BUILDUP_STEP_DELAY_S = 0.02
PREPARE_PROGRESS_SPAN = 0.5


class ExportCancelled(Exception):
    """Generation was cancelled between frames."""


def fix_transparent_pixels(frame: np.ndarray) -> np.ndarray:
    """Rewrite every fully transparent pixel to opaque black, in place."""
    frame[frame[:, :, 3] == 0] = (0, 0, 0, 255)
    return frame


def process_frame(
    buffer: PixelBuffer,
    frame: AnimationFrame,
    rng: np.random.Generator,
    sleep=time.sleep,
):
    """Put the buffer into the state described by one animation frame."""
    if frame.type in (FrameType.ORIGINAL, FrameType.RELEASE):
        buffer.reset()
    elif frame.type in (FrameType.LIGHT, FrameType.MEDIUM, FrameType.HEAVY):
        apply_intensity_glitch(buffer, frame.intensity, frame.repeat_count, rng)
    elif frame.type is FrameType.BUILDUP:
        steps = frame.repeat_count
        for step in range(steps):
            level = frame.intensity * (step + 1) / steps
            apply_intensity_glitch(buffer, level, 1, rng)
            sleep(BUILDUP_STEP_DELAY_S)
    else:
        raise ValueError(f"Unhandled frame type: {frame.type}")


def render_sequence(
    buffer: PixelBuffer,
    sequence: list[AnimationFrame],
    encoder,
    rng: np.random.Generator,
    *,
    sleep=time.sleep,
    on_progress=None,
    cancel_event=None,
) -> int:
    """Capture one encoder frame per descriptor. Returns frames captured.

    Raises:
        ExportCancelled: If cancel_event is set before a frame starts.
        NotReadyError: If the buffer holds no image.
    """
    total = len(sequence)
    sentry_sdk.add_breadcrumb(
        category="export",
        message=f"Rendering {total} frames",
        data={"width": buffer.width, "height": buffer.height},
        level="info",
    )

    for i, frame in enumerate(sequence):
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Sequence render cancelled at frame %d/%d", i, total)
            raise ExportCancelled(f"Cancelled at frame {i}")

        process_frame(buffer, frame, rng, sleep)
        sleep(SETTLE_DELAY_S)

        pixels = fix_transparent_pixels(buffer.snapshot())
        encoder.add_frame(pixels, resolve_delay(frame.delay_class, rng))

        if on_progress is not None:
            on_progress((i + 1) / total * PREPARE_PROGRESS_SPAN)

    return total
