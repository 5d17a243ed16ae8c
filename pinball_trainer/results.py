from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .evaluation import AdjustmentQuality, Severity
from .session import AttemptRecord, PracticeSession


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Persistable summary + attempt log for a practice session."""

    mode: str
    seed: int | None
    drift_every: int
    drift_magnitude_steps: float
    initial_offset_steps: int

    attempted: int
    perfect: int
    severity_counts: dict[str, int]
    total_points: int
    mean_abs_error: float | None
    median_abs_error: float | None
    adjustments_required: int
    adjustments_correct: int
    adjustment_accuracy: float | None
    drift_count: int
    final_score: int | None

    attempts: list[AttemptRecord]


def session_summary(session: PracticeSession) -> SessionSummary:
    """Build a SessionSummary from a session in any phase."""

    cfg = session.config
    records = list(session.history())
    errors = sorted(r.abs_error for r in records if r.signed_error is not None)

    mean_err: float | None
    median_err: float | None
    if not errors:
        mean_err = None
        median_err = None
    else:
        mean_err = float(sum(errors)) / float(len(errors))
        mid = len(errors) // 2
        if len(errors) % 2 == 1:
            median_err = float(errors[mid])
        else:
            median_err = float(errors[mid - 1] + errors[mid]) / 2.0

    counts = {s.value: 0 for s in Severity}
    for r in records:
        counts[r.severity.value] += 1

    scored = [
        r
        for r in records
        if r.adjustment_quality is not None and r.adjustment_quality is not AdjustmentQuality.NOT_REQUIRED
    ]
    correct = sum(r.adjustment_point for r in scored)
    grade = session.state.grade

    return SessionSummary(
        mode=cfg.mode.value,
        seed=session.seed,
        drift_every=int(cfg.drift_every),
        drift_magnitude_steps=float(cfg.drift_magnitude_steps),
        initial_offset_steps=int(cfg.initial_offset_steps),
        attempted=len(records),
        perfect=counts[Severity.PERFECT.value],
        severity_counts=counts,
        total_points=sum(r.points for r in records),
        mean_abs_error=mean_err,
        median_abs_error=median_err,
        adjustments_required=len(scored),
        adjustments_correct=correct,
        adjustment_accuracy=None if not scored else correct / len(scored),
        drift_count=session.state.drift_count,
        final_score=None if grade is None else grade.score,
        attempts=records,
    )


def previous_session_line(records: Sequence[AttemptRecord]) -> str:
    """One-line recap of a stored attempt history; empty when there is none."""

    if not records:
        return ""
    errors = [r.abs_error for r in records if r.signed_error is not None]
    perfect = sum(1 for r in records if r.severity is Severity.PERFECT)
    text = f"Last session: {len(records)} attempts, {perfect} perfect"
    if errors:
        text += f", mean error {sum(errors) / len(errors):.1f}%"
    return text
