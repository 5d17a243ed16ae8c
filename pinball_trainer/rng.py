from __future__ import annotations

import random
from collections.abc import Sequence
from typing import TypeVar

T = TypeVar("T")

# Seed used when the "seeded random" toggle is on, so two runs with the same
# shots see the same hidden values and the same target order.
FIXED_SEED = 42


class SeededRandom:
    """Seeded RNG wrapper to keep deterministic streams explicit.

    ``seed=None`` draws from OS entropy; any integer gives a reproducible stream.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._seed = None if seed is None else int(seed)
        self._rng = random.Random(self._seed)

    @classmethod
    def for_toggle(cls, seeded: bool, seed: int | None = None) -> "SeededRandom":
        if not seeded:
            return cls(None)
        return cls(FIXED_SEED if seed is None else seed)

    @property
    def seed(self) -> int | None:
        return self._seed

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def random(self) -> float:
        return self._rng.random()

    def offset_steps(self, max_steps: int) -> int:
        """Uniform integer in [-max_steps, +max_steps]."""

        m = max(0, int(max_steps))
        if m == 0:
            return 0
        return self._rng.randint(-m, m)


def new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)
