"""Deterministic pseudo-random helpers shared by every pipeline stage.

All randomness in a composition flows through the linear congruential
generator below so that a seed always reproduces the same output.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, TypeVar

MASK_32 = 0xFFFFFFFF
DEFAULT_FALLBACK_SEED = 1337
VOICE_SEED_STRIDE = 100

_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223
_SALT_MULTIPLIER = 22695477

T = TypeVar("T")

Rng = Callable[[], float]


def create_rng(seed: Optional[int], fallback: int = DEFAULT_FALLBACK_SEED) -> Rng:
    """Return a generator of floats in [0, 1] driven by a 32-bit LCG."""
    state = (seed or 0) & MASK_32
    if state == 0:
        state = fallback & MASK_32

    def next_value() -> float:
        nonlocal state
        state = (state * _LCG_MULTIPLIER + _LCG_INCREMENT) & MASK_32
        return state / MASK_32

    return next_value


def create_voice_rng(
    seed: int, voice_index: int, fallback: int = DEFAULT_FALLBACK_SEED
) -> Rng:
    return create_rng(seed + voice_index * VOICE_SEED_STRIDE, fallback)


def random_from_seed(seed: Optional[int], salt: int) -> float:
    """Single salted draw that does not advance any generator."""
    base = ((seed or 0) * _LCG_MULTIPLIER + salt * _LCG_INCREMENT) & MASK_32
    value = (base * _SALT_MULTIPLIER + 1) & MASK_32
    return value / MASK_32


def pick_index(value: float, size: int) -> int:
    # the normalisation divisor can yield exactly 1.0
    return min(int(value * size), size - 1)


def shuffle_with_seed(items: Sequence[T], seed: int, salt: int) -> List[T]:
    result = list(items)
    for index in range(len(result) - 1, 0, -1):
        swap = int(random_from_seed(seed, salt + index) * (index + 1))
        swap = min(swap, index)
        result[index], result[swap] = result[swap], result[index]
    return result


def shuffle_with_rng(items: Sequence[T], rng: Rng) -> List[T]:
    result = list(items)
    for index in range(len(result) - 1, 0, -1):
        swap = min(int(rng() * (index + 1)), index)
        result[index], result[swap] = result[swap], result[index]
    return result
