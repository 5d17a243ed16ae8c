"""Practice session state machine.

    IDLE -> SELECTING -> AWAITING_GUESS -> SHOWING_FEEDBACK -> AWAITING_CONTINUE -> SELECTING ...

    any practice phase --end_session()--> FINAL_RECALL -> GRADED -> COMPLETE
    any phase --reset()--> IDLE

- Deterministic: hidden values, drift and random targets all come from one
  SeededRandom owned by the session.
- Time is entirely via the injected Clock; the feedback delay only gates what
  the UI shows. A guess is fully recorded (history, mental model, drift) before
  ``submit_guess`` returns.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from .clock import Clock, FeedbackTimer
from .errors import InvalidValue
from .evaluation import AdjustmentQuality, PreviousAttempt, Severity, evaluate
from .hidden import DriftScheduler, ShotValues, initialize_hidden_values
from .percent import NOT_POSSIBLE, PercentValue, Side, format_percent, parse_percent, round_half_up
from .rng import SeededRandom
from .shots import ShotSequence

HISTORY_LIMIT = 200

FEEDBACK_TRAVEL_S = 1.0
FEEDBACK_PERFECT_PAUSE_S = 0.3
FEEDBACK_SHAKE_BASE_S = 0.2
FEEDBACK_SHAKE_PER_POINT_S = 0.008
FEEDBACK_SHAKE_MAX_EXTRA_S = 0.4


class Phase(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    AWAITING_GUESS = "awaiting_guess"
    SHOWING_FEEDBACK = "showing_feedback"
    AWAITING_CONTINUE = "awaiting_continue"
    FINAL_RECALL = "final_recall"
    GRADED = "graded"
    COMPLETE = "complete"


PRACTICE_PHASES = (Phase.SELECTING, Phase.AWAITING_GUESS, Phase.SHOWING_FEEDBACK, Phase.AWAITING_CONTINUE)


class SelectionMode(str, Enum):
    MANUAL = "manual"
    RANDOM = "random"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    mode: SelectionMode = SelectionMode.RANDOM
    drift_every: int = 4  # 0 disables drift
    drift_magnitude_steps: float = 2.0  # in 5% steps, floored, capped at 4
    initial_offset_steps: int = 2  # 0..4
    seeded: bool = False
    seed: int | None = None  # used only when seeded; None means the fixed seed
    animations_enabled: bool = True
    history_limit: int = HISTORY_LIMIT
    avoid_repeat: bool = True


@dataclass(frozen=True, slots=True)
class Selection:
    shot_id: int
    side: Side


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    index: int
    shot_id: int
    side: Side
    guess: PercentValue
    truth: PercentValue
    signed_error: int | None
    abs_error: int
    severity: Severity
    label: str
    previous_guess: PercentValue | None
    previous_truth: PercentValue | None
    adjustment_quality: AdjustmentQuality | None
    points: int
    adjustment_point: int
    submitted_at_s: float


@dataclass(frozen=True, slots=True)
class FinalGrade:
    matches: int
    total: int
    mean_abs_error: float
    score: int


@dataclass(slots=True)
class SessionState:
    phase: Phase = Phase.IDLE
    selection: Selection | None = None
    pending_selection: Selection | None = None
    attempts_since_last_drift: int = 0
    attempt_count: int = 0
    drift_count: int = 0
    history: list[AttemptRecord] = field(default_factory=list)
    base: ShotValues | None = None
    hidden: ShotValues | None = None
    labels: dict[int, str] = field(default_factory=dict)
    mental_model: dict[tuple[int, Side], PercentValue] = field(default_factory=dict)
    final_recall: dict[tuple[int, Side], PercentValue] = field(default_factory=dict)
    last_attempt: AttemptRecord | None = None
    grade: FinalGrade | None = None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    phase: Phase
    mode: SelectionMode
    selection: Selection | None
    target_label: str
    prompt: str
    last_attempt: AttemptRecord | None
    attempt_count: int
    total_points: int
    feedback_remaining_s: float | None
    drift_count: int
    grade: FinalGrade | None


def append_attempt(history: list[AttemptRecord], record: AttemptRecord, limit: int = HISTORY_LIMIT) -> None:
    """Append, evicting the oldest records beyond ``limit``."""

    history.append(record)
    overflow = len(history) - max(1, int(limit))
    if overflow > 0:
        del history[:overflow]


def previous_attempt(history: Sequence[AttemptRecord], shot_id: int, side: Side) -> AttemptRecord | None:
    for record in reversed(history):
        if record.shot_id == shot_id and record.side is side:
            return record
    return None


def pick_random_selection(
    pairs: Sequence[tuple[int, Side]],
    rng: SeededRandom,
    *,
    last: Selection | None = None,
    avoid_repeat: bool = True,
) -> Selection | None:
    options = [Selection(shot_id, side) for shot_id, side in pairs]
    if not options:
        return None
    if avoid_repeat and last is not None and len(options) > 1:
        options = [s for s in options if s != last] or options
    return rng.choice(options)


def feedback_duration_s(abs_error: int) -> float:
    if abs_error == 0:
        shake = FEEDBACK_PERFECT_PAUSE_S
    else:
        shake = FEEDBACK_SHAKE_BASE_S + min(FEEDBACK_SHAKE_MAX_EXTRA_S, abs_error * FEEDBACK_SHAKE_PER_POINT_S)
    return FEEDBACK_TRAVEL_S + shake


def grade_final_recall(hidden: ShotValues, recall: Mapping[tuple[int, Side], PercentValue]) -> FinalGrade:
    """Exact-match count plus a 0..100 score of 100 minus the mean absolute error."""

    matches = 0
    total = 0
    error_sum = 0
    for shot_id in hidden.shot_ids:
        for side in Side:
            truth = hidden.get(shot_id, side)
            guess = recall.get((shot_id, side), NOT_POSSIBLE)
            abs_error = evaluate(guess, truth).abs_error
            error_sum += abs_error
            total += 1
            if abs_error == 0:
                matches += 1
    mean = 0.0 if total == 0 else error_sum / total
    return FinalGrade(matches=matches, total=total, mean_abs_error=mean, score=max(0, round_half_up(100 - mean)))


class PracticeSession:
    def __init__(
        self,
        *,
        clock: Clock,
        config: SessionConfig | None = None,
        rng: SeededRandom | None = None,
    ) -> None:
        self._config = config or SessionConfig()
        if not (0 <= self._config.initial_offset_steps <= 4):
            raise ValueError("initial_offset_steps must be in [0, 4]")
        if self._config.drift_every < 0:
            raise ValueError("drift_every must be >= 0")
        if self._config.drift_magnitude_steps < 0:
            raise ValueError("drift_magnitude_steps must be >= 0")

        self._clock = clock
        self._rng = rng or SeededRandom.for_toggle(self._config.seeded, self._config.seed)
        self._timer = FeedbackTimer(clock)
        self._drift = DriftScheduler(
            drift_every=self._config.drift_every,
            drift_magnitude_steps=self._config.drift_magnitude_steps,
            rng=self._rng,
        )
        self._state = SessionState()

    # --- read access -----------------------------------------------------

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def seed(self) -> int | None:
        return self._rng.seed

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def selection(self) -> Selection | None:
        return self._state.selection

    @property
    def hidden(self) -> ShotValues | None:
        return self._state.hidden

    @property
    def base(self) -> ShotValues | None:
        return self._state.base

    @property
    def feedback_token(self) -> int:
        return self._timer.token

    def history(self) -> tuple[AttemptRecord, ...]:
        return tuple(self._state.history)

    def eligible_pairs(self) -> list[tuple[int, Side]]:
        hidden = self._state.hidden
        return [] if hidden is None else hidden.pairs()

    def total_points(self) -> int:
        return sum(r.points for r in self._state.history)

    def mean_abs_error(self) -> float | None:
        errors = [r.abs_error for r in self._state.history if r.signed_error is not None]
        return None if not errors else sum(errors) / len(errors)

    def can_exit(self) -> bool:
        return self._state.phase in (Phase.IDLE, Phase.GRADED, Phase.COMPLETE)

    # --- practice loop ---------------------------------------------------

    def start(self, sequence: ShotSequence) -> bool:
        if self._state.phase is not Phase.IDLE:
            return False
        base = ShotValues.from_sequence(sequence)
        if not base.pairs():
            raise ValueError("at least one shot side must be possible to start practice")

        state = SessionState()
        state.base = base
        state.hidden = initialize_hidden_values(base, self._config.initial_offset_steps, self._rng)
        state.labels = {shot.shot_id: shot.display_name for shot in sequence}
        state.selection = pick_random_selection(state.hidden.pairs(), self._rng)
        self._state = state
        self._timer.cancel()

        self._set_phase(Phase.SELECTING)
        if self._config.mode is SelectionMode.RANDOM:
            self._set_phase(Phase.AWAITING_GUESS)
        return True

    def select(self, shot_id: int, side: Side) -> bool:
        if self._state.phase not in (Phase.SELECTING, Phase.AWAITING_GUESS):
            return False
        if (shot_id, side) not in self.eligible_pairs():
            return False
        self._state.selection = Selection(shot_id, side)
        self._state.pending_selection = None
        self._set_phase(Phase.AWAITING_GUESS)
        return True

    def submit_guess(self, raw: object) -> bool:
        """Submit a guess. Returns True if accepted."""

        state = self._state
        if state.phase is not Phase.AWAITING_GUESS:
            return False
        try:
            guess = parse_percent(raw)
        except InvalidValue:
            return False

        assert state.selection is not None
        assert state.hidden is not None and state.base is not None

        sel = state.selection
        truth = state.hidden.get(sel.shot_id, sel.side)
        prev = previous_attempt(state.history, sel.shot_id, sel.side)
        result = evaluate(guess, truth, None if prev is None else PreviousAttempt(prev.guess, prev.truth))

        record = AttemptRecord(
            index=state.attempt_count,
            shot_id=sel.shot_id,
            side=sel.side,
            guess=guess,
            truth=truth,
            signed_error=result.signed_error,
            abs_error=result.abs_error,
            severity=result.severity,
            label=result.label,
            previous_guess=None if prev is None else prev.guess,
            previous_truth=None if prev is None else prev.truth,
            adjustment_quality=result.adjustment_quality,
            points=result.points,
            adjustment_point=result.adjustment_point,
            submitted_at_s=self._clock.now(),
        )
        append_attempt(state.history, record, self._config.history_limit)
        state.last_attempt = record
        state.attempt_count += 1
        state.attempts_since_last_drift += 1
        state.mental_model[(sel.shot_id, sel.side)] = guess

        if self._drift.maybe_drift(state, state.base) is not None:
            state.drift_count += 1

        if self._config.mode is SelectionMode.RANDOM:
            state.pending_selection = pick_random_selection(
                state.hidden.pairs(),
                self._rng,
                last=sel,
                avoid_repeat=self._config.avoid_repeat,
            )

        duration = feedback_duration_s(record.abs_error) if self._config.animations_enabled else 0.0
        self._timer.arm(duration)
        self._set_phase(Phase.SHOWING_FEEDBACK)
        return True

    def update(self) -> None:
        if self._state.phase is Phase.SHOWING_FEEDBACK and self._timer.expired():
            self.on_feedback_elapsed(self._timer.token)

    def on_feedback_elapsed(self, token: int) -> bool:
        """Timer event. Stale tokens (cancelled or superseded timers) are ignored."""

        if self._state.phase is not Phase.SHOWING_FEEDBACK or not self._timer.is_current(token):
            return False
        self._timer.cancel()
        self._set_phase(Phase.AWAITING_CONTINUE)
        return True

    def skip_feedback(self) -> bool:
        if self._state.phase is not Phase.SHOWING_FEEDBACK:
            return False
        self._timer.cancel()
        self._set_phase(Phase.AWAITING_CONTINUE)
        return True

    def feedback_remaining_s(self) -> float | None:
        if self._state.phase is not Phase.SHOWING_FEEDBACK:
            return None
        return self._timer.remaining_s()

    def advance(self) -> bool:
        if self._state.phase is Phase.SHOWING_FEEDBACK:
            self.skip_feedback()
        if self._state.phase is not Phase.AWAITING_CONTINUE:
            return False

        state = self._state
        self._set_phase(Phase.SELECTING)
        if self._config.mode is SelectionMode.RANDOM:
            nxt = state.pending_selection or pick_random_selection(
                self.eligible_pairs(),
                self._rng,
                last=state.selection,
                avoid_repeat=self._config.avoid_repeat,
            )
            state.pending_selection = None
            state.selection = nxt
            self._set_phase(Phase.AWAITING_GUESS)
        return True

    # --- final recall ----------------------------------------------------

    def end_session(self) -> bool:
        state = self._state
        if state.phase not in PRACTICE_PHASES:
            return False
        assert state.hidden is not None and state.base is not None
        self._timer.cancel()
        state.pending_selection = None
        state.final_recall = {
            (shot_id, side): state.mental_model.get((shot_id, side), state.base.get(shot_id, side))
            for shot_id in state.base.shot_ids
            for side in Side
        }
        self._set_phase(Phase.FINAL_RECALL)
        return True

    def set_final_recall(self, shot_id: int, side: Side, raw: object) -> bool:
        state = self._state
        if state.phase is not Phase.FINAL_RECALL:
            return False
        if (shot_id, side) not in state.final_recall:
            return False
        try:
            state.final_recall[(shot_id, side)] = parse_percent(raw)
        except InvalidValue:
            return False
        return True

    def grade(self) -> FinalGrade | None:
        state = self._state
        if state.phase is not Phase.FINAL_RECALL:
            return state.grade
        assert state.hidden is not None
        state.grade = grade_final_recall(state.hidden, state.final_recall)
        self._set_phase(Phase.GRADED)
        return state.grade

    def finish(self) -> bool:
        if self._state.phase is not Phase.GRADED:
            return False
        self._set_phase(Phase.COMPLETE)
        return True

    def reset(self) -> None:
        self._timer.cancel()
        self._state = SessionState()
        logger.debug("session reset")

    # --- view ------------------------------------------------------------

    def target_label(self, selection: Selection | None = None) -> str:
        sel = selection or self._state.selection
        if sel is None:
            return ""
        name = self._state.labels.get(sel.shot_id, f"Shot {sel.shot_id}")
        return f"{sel.side.label} -> {name}"

    def current_prompt(self) -> str:
        state = self._state
        phase = state.phase
        if phase is Phase.IDLE:
            return "Set up your shots, then press Enter to start practice."
        if phase is Phase.SELECTING:
            return "Pick a shot and flipper, then press Enter."
        if phase is Phase.AWAITING_GUESS:
            return f"{self.target_label()}: enter accuracy (5-95, NP for not possible)."
        if phase in (Phase.SHOWING_FEEDBACK, Phase.AWAITING_CONTINUE):
            rec = state.last_attempt
            if rec is None:
                return ""
            verdict = "Perfect!" if rec.abs_error == 0 else f"{rec.severity.value.capitalize()} {rec.label}"
            return f"{verdict}  You: {format_percent(rec.guess)}  Truth: {format_percent(rec.truth)}"
        if phase is Phase.FINAL_RECALL:
            return "Final recall: enter every value from memory, then press Enter to grade."
        g = state.grade
        if g is None:
            return ""
        return f"Final score: {g.score}\nExact matches: {g.matches}/{g.total}\nMean error: {g.mean_abs_error:.1f}"

    def snapshot(self) -> SessionSnapshot:
        state = self._state
        return SessionSnapshot(
            phase=state.phase,
            mode=self._config.mode,
            selection=state.selection,
            target_label=self.target_label(),
            prompt=self.current_prompt(),
            last_attempt=state.last_attempt,
            attempt_count=state.attempt_count,
            total_points=self.total_points(),
            feedback_remaining_s=self.feedback_remaining_s(),
            drift_count=state.drift_count,
            grade=state.grade,
        )

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self._state.phase:
            logger.debug("session phase {} -> {}", self._state.phase.value, phase.value)
        self._state.phase = phase


def build_practice_session(
    *,
    clock: Clock,
    config: SessionConfig | None = None,
    seed: int | None = None,
) -> PracticeSession:
    """Factory for a practice session; ``seed`` overrides the config's seeding toggle."""

    cfg = config or SessionConfig()
    rng = SeededRandom(seed) if seed is not None else SeededRandom.for_toggle(cfg.seeded, cfg.seed)
    return PracticeSession(clock=clock, config=cfg, rng=rng)
