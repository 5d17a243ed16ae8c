from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .percent import MAX_ERROR, STEP, PercentValue

BASE_POINTS = 100
ADJUSTMENT_PENALTY_BASE = 5
ADJUSTMENT_PENALTY_MAX = 25


class Severity(str, Enum):
    PERFECT = "perfect"
    SLIGHT = "slight"
    FAIRLY = "fairly"
    VERY = "very"


class AdjustmentQuality(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    NO_CHANGE = "no_change"
    # Previous attempt was exact, so there was nothing to correct.
    NOT_REQUIRED = "not_required"


@dataclass(frozen=True, slots=True)
class PreviousAttempt:
    guess: PercentValue
    truth: PercentValue


@dataclass(frozen=True, slots=True)
class Evaluation:
    signed_error: int | None  # guess - truth; None when a sentinel is involved
    abs_error: int
    severity: Severity
    label: str  # "perfect" | "early" | "late" | "mismatch"
    adjustment_quality: AdjustmentQuality | None
    points: int
    adjustment_point: int

    @property
    def is_correct(self) -> bool:
        return self.abs_error == 0


def severity_for(abs_error: int) -> Severity:
    if abs_error <= 0:
        return Severity.PERFECT
    if abs_error <= STEP:
        return Severity.SLIGHT
    if abs_error <= 2 * STEP:
        return Severity.FAIRLY
    return Severity.VERY


def _signed_error(guess: PercentValue, truth: PercentValue) -> int | None:
    if guess.percent is None or truth.percent is None:
        return None
    return guess.percent - truth.percent


def _adjustment(guess: PercentValue, previous: PreviousAttempt | None) -> AdjustmentQuality | None:
    if previous is None or guess.percent is None or previous.guess.percent is None:
        return None
    prev_delta = _signed_error(previous.guess, previous.truth)
    if prev_delta is None:
        return None
    if prev_delta == 0:
        return AdjustmentQuality.NOT_REQUIRED
    moved = guess.percent - previous.guess.percent
    if moved == 0:
        return AdjustmentQuality.NO_CHANGE
    # Overshot last time -> should come down, and vice versa.
    if (moved > 0) == (prev_delta < 0):
        return AdjustmentQuality.CORRECT
    return AdjustmentQuality.INCORRECT


def evaluate(
    guess: PercentValue,
    truth: PercentValue,
    previous: PreviousAttempt | None = None,
) -> Evaluation:
    """Score one guess against the current truth.

    ``previous`` is the most recent attempt on the same shot and side, with
    the truth as it was at that time. First attempts pass None and are never
    adjustment-scored.
    """

    signed = _signed_error(guess, truth)
    if signed is None:
        abs_error = 0 if guess.is_not_possible and truth.is_not_possible else MAX_ERROR
    else:
        abs_error = abs(signed)

    if abs_error == 0:
        label = "perfect"
    elif signed is None:
        label = "mismatch"
    else:
        label = "early" if signed < 0 else "late"

    quality = _adjustment(guess, previous)

    penalty = 0
    if quality in (AdjustmentQuality.INCORRECT, AdjustmentQuality.NO_CHANGE):
        assert previous is not None and previous.guess.percent is not None and guess.percent is not None
        moved = abs(guess.percent - previous.guess.percent)
        penalty = min(ADJUSTMENT_PENALTY_MAX, ADJUSTMENT_PENALTY_BASE + moved // STEP)

    return Evaluation(
        signed_error=signed,
        abs_error=abs_error,
        severity=severity_for(abs_error),
        label=label,
        adjustment_quality=quality,
        points=max(0, BASE_POINTS - abs_error - penalty),
        adjustment_point=1 if quality is AdjustmentQuality.CORRECT else 0,
    )
