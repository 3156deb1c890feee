"""Seeded randomness for reproducible glitches and sequences."""

import hashlib

import numpy as np


def derive_seed(base_seed: int, scope: str, counter: int = 0) -> int:
    """Derive a deterministic seed from context. Same inputs = same output, always."""
    key = f"{base_seed}:{scope}:{counter}"
    return int(hashlib.sha256(key.encode()).hexdigest()[:16], 16)


def make_rng(seed: int | None = None) -> np.random.Generator:
    """Create an RNG. None draws fresh OS entropy (non-reproducible)."""
    return np.random.default_rng(seed)
