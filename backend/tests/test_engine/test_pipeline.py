"""Tests for engine.pipeline — frame assembly from a sequence into a codec."""

import threading

import numpy as np
import pytest

from conftest import FakeEncoder, make_gradient, no_sleep
from engine.buffer import NotReadyError, PixelBuffer
from engine.determinism import make_rng
from engine.pipeline import (
    BUILDUP_STEP_DELAY_S,
    SETTLE_DELAY_S,
    ExportCancelled,
    fix_transparent_pixels,
    process_frame,
    render_sequence,
)
from engine.sequencer import (
    DELAY_RANGES_MS,
    AnimationFrame,
    DelayClass,
    FrameType,
    clean_frame,
)


def _buffer(w=32, h=24) -> PixelBuffer:
    buf = PixelBuffer()
    buf.load(make_gradient(w, h), w, h)
    return buf


def test_fix_transparent_pixels_rewrites_to_opaque_black():
    frame = make_gradient(4, 2)
    frame[0, 0] = (0, 0, 0, 0)
    frame[1, 3] = (50, 60, 70, 0)
    fix_transparent_pixels(frame)
    assert frame[0, 0].tolist() == [0, 0, 0, 255]
    assert frame[1, 3].tolist() == [0, 0, 0, 255]
    assert (frame[:, :, 3] == 255).all()


def test_three_frame_scenario(fake_encoder):
    buf = _buffer()
    seq = [
        clean_frame(),
        AnimationFrame(FrameType.HEAVY, DelayClass.FLASH, 1.0, 1),
        clean_frame(),
    ]
    encoder = fake_encoder(buf.width, buf.height)
    captured = render_sequence(buf, seq, encoder, make_rng(4), sleep=no_sleep)

    assert captured == 3
    assert len(encoder.frames) == 3
    freeze_low, freeze_high = DELAY_RANGES_MS[DelayClass.FREEZE]
    assert freeze_low <= encoder.frames[0][1] <= freeze_high
    assert freeze_low <= encoder.frames[2][1] <= freeze_high
    np.testing.assert_array_equal(encoder.frames[0][0], buf.origin)
    np.testing.assert_array_equal(encoder.frames[2][0], buf.origin)
    flash_low, flash_high = DELAY_RANGES_MS[DelayClass.FLASH]
    assert flash_low <= encoder.frames[1][1] <= flash_high


def test_captured_frames_have_no_transparent_pixels(fake_encoder):
    frame = make_gradient(16, 8)
    frame[0:2, :, :3] = 0
    buf = PixelBuffer()
    buf.load(frame, 16, 8)
    encoder = fake_encoder(16, 8)
    render_sequence(buf, [clean_frame()], encoder, make_rng(0), sleep=no_sleep)

    pixels, _ = encoder.frames[0]
    assert (pixels[:, :, 3] == 255).all()
    assert (pixels[0:2, :, :3] == 0).all()


def test_release_resets_to_origin():
    buf = _buffer()
    glitched = buf.snapshot()
    glitched[:, :, 0] = 3
    buf.write(glitched)
    buf.commit()
    release = AnimationFrame(FrameType.RELEASE, DelayClass.NORMAL, 0.3, 1)
    process_frame(buf, release, make_rng(0))
    np.testing.assert_array_equal(buf.snapshot(), buf.origin)
    np.testing.assert_array_equal(buf.previous, buf.origin)


def test_buildup_runs_one_step_per_repeat():
    buf = _buffer()
    sleeps = []
    frame = AnimationFrame(FrameType.BUILDUP, DelayClass.NORMAL, 0.8, 3)
    process_frame(buf, frame, make_rng(1), sleep=sleeps.append)
    assert sleeps == [BUILDUP_STEP_DELAY_S] * 3


def test_buildup_without_repeats_leaves_buffer_alone():
    buf = _buffer()
    before = buf.snapshot()
    sleeps = []
    frame = AnimationFrame(FrameType.BUILDUP, DelayClass.NORMAL, 1.0, 0)
    process_frame(buf, frame, make_rng(1), sleep=sleeps.append)
    assert sleeps == []
    np.testing.assert_array_equal(buf.snapshot(), before)


def test_each_frame_settles_before_capture(fake_encoder):
    buf = _buffer()
    sleeps = []
    seq = [clean_frame(), clean_frame()]
    encoder = fake_encoder(buf.width, buf.height)
    render_sequence(buf, seq, encoder, make_rng(0), sleep=sleeps.append)
    assert sleeps == [SETTLE_DELAY_S, SETTLE_DELAY_S]


def test_progress_spans_first_half(fake_encoder):
    buf = _buffer()
    progress = []
    seq = [clean_frame()] * 4
    render_sequence(
        buf,
        seq,
        fake_encoder(buf.width, buf.height),
        make_rng(0),
        sleep=no_sleep,
        on_progress=progress.append,
    )
    assert progress == [0.125, 0.25, 0.375, 0.5]


def test_cancel_stops_before_next_frame(fake_encoder):
    buf = _buffer()
    cancel = threading.Event()
    encoder = fake_encoder(buf.width, buf.height)

    def _progress(p):
        if p >= 0.25:
            cancel.set()

    with pytest.raises(ExportCancelled):
        render_sequence(
            buf,
            [clean_frame()] * 4,
            encoder,
            make_rng(0),
            sleep=no_sleep,
            on_progress=_progress,
            cancel_event=cancel,
        )
    assert len(encoder.frames) == 2


def test_glitch_frames_commit_to_previous():
    buf = _buffer(64, 64)
    frame = AnimationFrame(FrameType.HEAVY, DelayClass.FLASH, 1.0, 2)
    process_frame(buf, frame, make_rng(11))
    np.testing.assert_array_equal(buf.previous, buf.snapshot())


def test_render_without_image_raises():
    with pytest.raises(NotReadyError):
        render_sequence(PixelBuffer(), [clean_frame()], FakeEncoder(1, 1), make_rng(0))
