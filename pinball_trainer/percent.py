"""Percentage values on the 5% grid, plus the flipper side vocabulary.

A shot's accuracy from one flipper is either a percentage in ``5..95`` (a
multiple of :data:`STEP`) or the distinct ``NOT_POSSIBLE`` tag. Zero is not a
magnitude: "can't make this shot" is its own value rather than a number that
happens to be small.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidValue

STEP = 5
DOMAIN_MAX = 100
MIN_PERCENT = STEP
MAX_PERCENT = DOMAIN_MAX - STEP
MIN_STEPS = MIN_PERCENT // STEP
MAX_STEPS = MAX_PERCENT // STEP

# Error used when exactly one side of a comparison is NOT_POSSIBLE.
MAX_ERROR = DOMAIN_MAX

NP_MARKER = "NP"


class Side(str, Enum):
    LEFT = "L"
    RIGHT = "R"

    @property
    def direction(self) -> "Direction":
        # Left flipper: low -> high top to bottom. Right flipper: high -> low.
        return Direction.ASCENDING if self is Side.LEFT else Direction.DESCENDING

    @property
    def label(self) -> str:
        return "Left Flipper" if self is Side.LEFT else "Right Flipper"


class Direction(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.ASCENDING else -1


@dataclass(frozen=True, slots=True)
class PercentValue:
    """A grid percentage, or NOT_POSSIBLE when ``percent`` is None."""

    percent: int | None

    def __post_init__(self) -> None:
        p = self.percent
        if p is None:
            return
        if isinstance(p, bool) or not isinstance(p, int):
            raise ValueError(f"percent must be an int or None, got {p!r}")
        if p % STEP != 0 or not (MIN_PERCENT <= p <= MAX_PERCENT):
            raise ValueError(f"{p} is not on the {STEP}% grid within {MIN_PERCENT}..{MAX_PERCENT}")

    @property
    def is_not_possible(self) -> bool:
        return self.percent is None

    @property
    def steps(self) -> int:
        if self.percent is None:
            raise ValueError("NOT_POSSIBLE has no magnitude")
        return self.percent // STEP

    @classmethod
    def from_steps(cls, steps: int) -> "PercentValue":
        return cls(int(steps) * STEP)

    def __str__(self) -> str:
        return format_percent(self)


NOT_POSSIBLE = PercentValue(None)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def snap_to_grid(x: float) -> PercentValue:
    """Nearest in-domain grid value; halves round up."""

    snapped = round_half_up(float(x) / STEP) * STEP
    return PercentValue(max(MIN_PERCENT, min(MAX_PERCENT, snapped)))


def parse_percent(raw: object) -> PercentValue:
    """Lenient conversion of user or file input into a PercentValue.

    Raises InvalidValue only when the input is not numeric at all.
    """

    if isinstance(raw, PercentValue):
        return raw
    if raw is None:
        return NOT_POSSIBLE
    if isinstance(raw, bool):
        raise InvalidValue(f"not a percentage: {raw!r}")
    if isinstance(raw, (int, float)):
        if not math.isfinite(raw):
            raise InvalidValue(f"not a finite percentage: {raw!r}")
        return snap_to_grid(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.upper() == NP_MARKER:
            return NOT_POSSIBLE
        if text.endswith("%"):
            text = text[:-1].strip()
        try:
            value = float(text)
        except ValueError:
            raise InvalidValue(f"not a percentage: {raw!r}") from None
        if not math.isfinite(value):
            raise InvalidValue(f"not a finite percentage: {raw!r}")
        return snap_to_grid(value)
    raise InvalidValue(f"not a percentage: {raw!r}")


def format_percent(value: PercentValue) -> str:
    if value.percent is None:
        return NP_MARKER
    return f"{value.percent:02d}%"


def to_json_value(value: PercentValue) -> int | str:
    return NP_MARKER if value.percent is None else value.percent


def step_away(value: PercentValue, steps: int) -> PercentValue:
    """Move a magnitude by whole grid steps, clamped to the domain."""

    return PercentValue.from_steps(max(MIN_STEPS, min(MAX_STEPS, value.steps + int(steps))))
