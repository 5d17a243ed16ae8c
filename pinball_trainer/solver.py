"""Bounded isotonic regression over one flipper side.

``solve`` returns the closest sequence whose non-sentinel entries are strictly
monotone in the requested direction, stay on the 5% grid and stay inside
their per-entry bounds. NOT_POSSIBLE entries are fixed points: they keep their
position, are never changed and never act as neighbours.

Implementation outline (all arithmetic in whole grid steps):

1. Drop sentinels; reverse the remainder for DESCENDING so the core only
   handles the ascending case.
2. Subtract each entry's rank. A strictly increasing integer sequence ``a``
   is exactly a non-decreasing ``b = a - rank``, so pool-adjacent-violators
   (which produces weak order) can be used unchanged and neighbouring blocks
   still end up one step apart afterwards.
3. Tighten bounds into monotone envelopes: lower bounds take the running
   maximum from the left, upper bounds the running minimum from the right.
   An envelope with ``lo > hi`` anywhere means no ordered solution exists.
4. Pool adjacent violators on the unconstrained values (block value = mean),
   round each block half-up, clamp into the envelope, add the rank back.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from .errors import ConstraintInfeasible
from .percent import (
    MAX_PERCENT,
    MAX_STEPS,
    MIN_PERCENT,
    MIN_STEPS,
    STEP,
    Direction,
    PercentValue,
    round_half_up,
)


@dataclass(frozen=True, slots=True)
class Bound:
    """Inclusive percentage range for one entry; None leaves that end at the domain edge."""

    lo: int | None = None
    hi: int | None = None

    @classmethod
    def around(cls, center: PercentValue, steps: int) -> "Bound":
        if center.percent is None:
            return cls()
        reach = max(0, int(steps)) * STEP
        return cls(center.percent - reach, center.percent + reach)

    @classmethod
    def pinned(cls, value: PercentValue) -> "Bound":
        return cls(value.percent, value.percent)

    def step_range(self) -> tuple[int, int]:
        lo = MIN_PERCENT if self.lo is None else max(MIN_PERCENT, int(self.lo))
        hi = MAX_PERCENT if self.hi is None else min(MAX_PERCENT, int(self.hi))
        # Round inward so the result never leaves the requested range.
        return math.ceil(lo / STEP), math.floor(hi / STEP)


@dataclass(slots=True)
class _Block:
    total: float
    count: int

    @property
    def mean(self) -> float:
        return self.total / self.count


def solve(
    values: Sequence[PercentValue],
    direction: Direction,
    bounds: Sequence[Bound | None] | None = None,
) -> tuple[PercentValue, ...]:
    """Nearest strictly ordered sequence; see module docstring.

    Raises ConstraintInfeasible if the bounds leave no room for strict order.
    """

    if bounds is not None and len(bounds) != len(values):
        raise ValueError("bounds must be the same length as values")

    positions = [i for i, v in enumerate(values) if not v.is_not_possible]
    if not positions:
        return tuple(values)

    if direction is Direction.DESCENDING:
        positions.reverse()

    steps: list[int] = []
    lows: list[int] = []
    highs: list[int] = []
    for rank, pos in enumerate(positions):
        bound = None if bounds is None else bounds[pos]
        lo, hi = (MIN_STEPS, MAX_STEPS) if bound is None else bound.step_range()
        steps.append(values[pos].steps - rank)
        lows.append(lo - rank)
        highs.append(hi - rank)

    n = len(positions)
    for k in range(1, n):
        lows[k] = max(lows[k], lows[k - 1])
    for k in range(n - 2, -1, -1):
        highs[k] = min(highs[k], highs[k + 1])
    for k in range(n):
        if lows[k] > highs[k]:
            logger.debug("solve: infeasible at index {} ({} {})", positions[k], lows[k], highs[k])
            raise ConstraintInfeasible(
                f"no {direction.value} ordering fits the bounds at index {positions[k]}",
                index=positions[k],
            )

    fitted = _pool_adjacent_violators(steps)

    out = list(values)
    for rank, pos in enumerate(positions):
        b = max(lows[rank], min(highs[rank], fitted[rank]))
        out[pos] = PercentValue.from_steps(b + rank)
    return tuple(out)


def _pool_adjacent_violators(values: Sequence[int]) -> list[int]:
    """Non-decreasing fit, each pooled block rounded half-up."""

    blocks: list[_Block] = []
    for v in values:
        blocks.append(_Block(float(v), 1))
        while len(blocks) >= 2 and blocks[-2].mean > blocks[-1].mean:
            b = blocks.pop()
            a = blocks.pop()
            blocks.append(_Block(a.total + b.total, a.count + b.count))

    fitted: list[int] = []
    for block in blocks:
        fitted.extend([round_half_up(block.mean)] * block.count)
    return fitted


def violations(values: Sequence[PercentValue], direction: Direction) -> list[int]:
    """Indices whose value breaks strict order with the previous non-sentinel entry."""

    bad: list[int] = []
    prev: int | None = None
    for i, v in enumerate(values):
        if v.percent is None:
            continue
        if prev is not None and (v.percent - prev) * direction.sign <= 0:
            bad.append(i)
        prev = v.percent
    return bad


def is_strictly_ordered(values: Sequence[PercentValue], direction: Direction) -> bool:
    return not violations(values, direction)
