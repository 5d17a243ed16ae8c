"""Hidden ("truth") values for a practice session.

The session never drills the user's own numbers directly. At start each base
value is offset by a few random grid steps, and every ``drift_every`` attempts
the values are re-drawn around the base again. Both go through the solver
with per-entry bounds so the hidden table keeps the same ordering as the base
table and never strays more than the configured number of steps from it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from .percent import PercentValue, Side, step_away
from .rng import SeededRandom
from .shots import ShotSequence
from .solver import Bound, solve

if TYPE_CHECKING:
    from .session import SessionState

# Hard ceiling for both the initial offset and drift, in grid steps (+-20%).
MAX_OFFSET_STEPS = 4


@dataclass(frozen=True, slots=True)
class ShotValues:
    """Left/right values for every shot, keyed by shot id, in sequence order."""

    shot_ids: tuple[int, ...]
    left: tuple[PercentValue, ...]
    right: tuple[PercentValue, ...]

    def __post_init__(self) -> None:
        if not (len(self.shot_ids) == len(self.left) == len(self.right)):
            raise ValueError("shot_ids, left and right must have the same length")

    @classmethod
    def from_sequence(cls, sequence: ShotSequence) -> "ShotValues":
        return cls(
            shot_ids=sequence.ids(),
            left=sequence.values(Side.LEFT),
            right=sequence.values(Side.RIGHT),
        )

    def side(self, side: Side) -> tuple[PercentValue, ...]:
        return self.left if side is Side.LEFT else self.right

    def get(self, shot_id: int, side: Side) -> PercentValue:
        return self.side(side)[self.shot_ids.index(shot_id)]

    def with_side(self, side: Side, values: tuple[PercentValue, ...]) -> "ShotValues":
        if side is Side.LEFT:
            return ShotValues(self.shot_ids, tuple(values), self.right)
        return ShotValues(self.shot_ids, self.left, tuple(values))

    def pairs(self) -> list[tuple[int, Side]]:
        """Every (shot id, side) whose value is not NOT_POSSIBLE."""

        out: list[tuple[int, Side]] = []
        for i, shot_id in enumerate(self.shot_ids):
            for side in Side:
                if not self.side(side)[i].is_not_possible:
                    out.append((shot_id, side))
        return out


def _redraw(base: ShotValues, steps: int, rng: SeededRandom) -> ShotValues:
    out = base
    for side in Side:
        values = base.side(side)
        candidates: list[PercentValue] = []
        for v in values:
            if v.is_not_possible:
                candidates.append(v)
                continue
            candidates.append(step_away(v, rng.offset_steps(steps)))
        bounds = [Bound.around(v, steps) for v in values]
        # Base values are ordered and inside their own bounds, so this is always feasible.
        out = out.with_side(side, solve(candidates, side.direction, bounds))
    return out


def initialize_hidden_values(base: ShotValues, offset_steps: int, rng: SeededRandom) -> ShotValues:
    steps = max(0, min(MAX_OFFSET_STEPS, int(offset_steps)))
    return _redraw(base, steps, rng)


def drift_steps(drift_magnitude_steps: float) -> int:
    """Usable whole steps for a (possibly fractional) configured drift magnitude."""

    if not math.isfinite(drift_magnitude_steps):
        return 0
    return max(0, min(MAX_OFFSET_STEPS, math.floor(drift_magnitude_steps)))


def maybe_drift(
    state: "SessionState",
    base: ShotValues,
    drift_every: int,
    drift_magnitude_steps: float,
    rng: SeededRandom,
) -> ShotValues | None:
    """Re-draw ``state.hidden`` around ``base`` once enough attempts have passed.

    Returns the new hidden values, or None when drift did not fire.
    """

    if drift_every <= 0 or state.hidden is None:
        return None
    if state.attempts_since_last_drift < drift_every:
        return None

    steps = drift_steps(drift_magnitude_steps)
    drifted = _redraw(base, steps, rng)
    state.hidden = drifted
    state.attempts_since_last_drift = 0
    logger.debug("drift fired: +-{} steps around base", steps)
    return drifted


class DriftScheduler:
    """Holds the drift cadence so the session only has to report attempts."""

    def __init__(
        self,
        *,
        drift_every: int,
        drift_magnitude_steps: float,
        rng: SeededRandom,
    ) -> None:
        self._drift_every = int(drift_every)
        self._magnitude = float(drift_magnitude_steps)
        self._rng = rng

    @property
    def drift_every(self) -> int:
        return self._drift_every

    @property
    def max_distance_steps(self) -> int:
        return drift_steps(self._magnitude)

    def maybe_drift(self, state: "SessionState", base: ShotValues) -> ShotValues | None:
        return maybe_drift(state, base, self._drift_every, self._magnitude, self._rng)
