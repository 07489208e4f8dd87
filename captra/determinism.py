# captra/determinism.py
"""
Deterministic stand-ins for wall-clock time.

ts_seed(seed, seq) is a pure function of its two arguments: the same pair
yields the same value in every process on every platform. It is not a real
timestamp.
"""
from __future__ import annotations

import random

# Odd multipliers; multiplication by an odd number is a bijection mod 2**64.
PRIME_MULTIPLIER = 314_159
GOLDEN_GAMMA = 0x9E3779B97F4A7C15

U64_MASK = (1 << 64) - 1

RUN_ID_PREFIX = "captra-run-"


def _check_u64(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > U64_MASK:
        raise ValueError(f"{name} must fit in an unsigned 64-bit integer")
    return value


def mix_seed(seed: int, seq: int) -> int:
    """
    Fold (seed, seq) into one 64-bit RNG seed.

    For a fixed seed the result is injective in seq (mod 2**64).
    """
    _check_u64("seed", seed)
    _check_u64("seq", seq)
    spread = (seq * PRIME_MULTIPLIER) & U64_MASK
    return ((seed ^ spread) * GOLDEN_GAMMA) & U64_MASK


def ts_seed(seed: int, seq: int) -> int:
    rng = random.Random(mix_seed(seed, seq))
    return rng.getrandbits(64)


def run_id_for_seed(seed: int) -> str:
    return f"{RUN_ID_PREFIX}{_check_u64('seed', seed)}"


__all__ = [
    "PRIME_MULTIPLIER",
    "U64_MASK",
    "mix_seed",
    "run_id_for_seed",
    "ts_seed",
]
