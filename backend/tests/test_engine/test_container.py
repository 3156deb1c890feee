"""Tests for effect container — param sanitizing and output validation."""

from unittest.mock import patch

import numpy as np
import pytest

from effects.glitch import channel_shift
from engine.container import EffectContainer, sanitize_params

pytestmark = pytest.mark.smoke


def _make_frame(h=4, w=8):
    frame = np.zeros((h, w, 4), dtype=np.uint8)
    frame[:, :, 0] = np.arange(1, w + 1, dtype=np.uint8)[None, :] * 10
    frame[:, :, 1] = 100
    frame[:, :, 2] = 50
    frame[:, :, 3] = 255
    return frame


def _shift_container():
    return EffectContainer(
        channel_shift.apply, channel_shift.EFFECT_ID, channel_shift.PARAMS
    )


def test_sanitize_clamps_int_range():
    clean = sanitize_params({"distance_x": 10**9}, channel_shift.PARAMS)
    assert clean["distance_x"] == channel_shift.MAX_DISTANCE
    clean = sanitize_params({"distance_x": -(10**9)}, channel_shift.PARAMS)
    assert clean["distance_x"] == -channel_shift.MAX_DISTANCE


def test_sanitize_drops_nan_and_inf():
    spec = {"intensity": {"type": "float", "min": 0.0, "max": 1.0}}
    assert sanitize_params({"intensity": float("nan")}, spec) == {}
    assert sanitize_params({"intensity": float("inf")}, spec) == {}


def test_sanitize_drops_undeclared_keys():
    clean = sanitize_params({"distance_x": 3, "bogus": 1}, channel_shift.PARAMS)
    assert clean == {"distance_x": 3}


def test_sanitize_coerces_bool():
    spec = {"flag": {"type": "bool"}}
    assert sanitize_params({"flag": 1}, spec) == {"flag": True}


def test_sanitize_rejects_unknown_choice():
    with pytest.raises(ValueError, match="mode"):
        sanitize_params({"mode": "cmyk"}, channel_shift.PARAMS)


def test_container_runs_effect():
    frame = _make_frame()
    output, state = _shift_container().process(frame, {"distance_x": 2, "mode": "r"})
    assert state is None
    np.testing.assert_array_equal(output[:, 2:, 0], frame[:, :-2, 0])
    np.testing.assert_array_equal(output[:, :, 1:3], frame[:, :, 1:3])


def test_container_does_not_mutate_input():
    frame = _make_frame()
    before = frame.copy()
    _shift_container().process(frame, {"distance_x": 3})
    np.testing.assert_array_equal(frame, before)


def test_container_rejects_wrong_shape_and_reports():
    def bad_effect(frame, params, *, rng=None, origin=None):
        return frame[:1], None

    container = EffectContainer(bad_effect, "test.bad")
    with patch("engine.container.sentry_sdk.capture_exception") as capture:
        with pytest.raises(ValueError, match="shape"):
            container.process(_make_frame(), {})
    capture.assert_called_once()


def test_container_rejects_wrong_dtype():
    def float_effect(frame, params, *, rng=None, origin=None):
        return frame.astype(np.float32), None

    with pytest.raises(TypeError, match="dtype"):
        EffectContainer(float_effect, "test.float").process(_make_frame(), {})


def test_container_reraises_effect_errors():
    def crashing(frame, params, *, rng=None, origin=None):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        EffectContainer(crashing, "test.crash").process(_make_frame(), {})
