"""Effect container — wraps pure glitch functions with param and output checks.

Pipeline: sanitize params → process → validate output.
Failures are reported to Sentry with effect context and then re-raised:
a glitch that throws is a bug, not something to paper over with the input
frame.
"""

import logging
import math

import numpy as np
import sentry_sdk

logger = logging.getLogger(__name__)


def _capture_with_context(e: Exception, effect_id: str, extra: dict):
    """Capture exception to Sentry with effect-level context and fingerprint dedup."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("effect_id", effect_id)
        scope.fingerprint = ["effect-crash", effect_id, type(e).__name__]
        scope.set_context("effect", extra)
        sentry_sdk.capture_exception(e, scope=scope)


def sanitize_params(params: dict, spec: dict) -> dict:
    """Drop NaN/Inf and unknown keys, clamp numbers into their declared range.

    Raises:
        ValueError: If a choice param holds a value outside its choices.
    """
    clean: dict = {}
    for key, value in params.items():
        decl = spec.get(key)
        if decl is None:
            logger.debug("Dropping undeclared param %s", key)
            continue
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            continue

        kind = decl.get("type")
        if kind == "int":
            value = int(max(decl["min"], min(decl["max"], int(value))))
        elif kind == "float":
            value = float(max(decl["min"], min(decl["max"], float(value))))
        elif kind == "bool":
            value = bool(value)
        elif kind == "choice" and value not in decl["choices"]:
            raise ValueError(f"{key} must be one of {decl['choices']}, got {value!r}")
        clean[key] = value
    return clean


class EffectContainer:
    """Container that wraps an effect's apply() function."""

    def __init__(self, effect_fn, effect_id: str, param_spec: dict | None = None):
        self.effect_fn = effect_fn
        self.effect_id = effect_id
        self.param_spec = param_spec or {}

    def process(
        self,
        frame: np.ndarray,
        params: dict,
        *,
        rng: np.random.Generator | None = None,
        origin: np.ndarray | None = None,
    ) -> tuple[np.ndarray, dict | None]:
        effect_params = sanitize_params(params, self.param_spec)

        # Context for Sentry (keys only, no pixel data)
        sentry_ctx = {
            "param_keys": list(effect_params.keys()),
            "frame_shape": list(frame.shape),
            "has_origin": origin is not None,
        }

        try:
            output, state_out = self.effect_fn(
                frame, effect_params, rng=rng, origin=origin
            )
            if not isinstance(output, np.ndarray):
                raise TypeError(
                    f"Effect returned {type(output).__name__}, expected ndarray"
                )
            if output.shape != frame.shape:
                raise ValueError(
                    f"Effect returned shape {output.shape}, expected {frame.shape}"
                )
            if output.dtype != np.uint8:
                raise TypeError(f"Effect returned dtype {output.dtype}, expected uint8")
        except Exception as e:
            _capture_with_context(e, self.effect_id, sentry_ctx)
            logger.error("Effect %s failed: %s", self.effect_id, type(e).__name__)
            raise

        return output, state_out
