from __future__ import annotations

from dataclasses import dataclass

import pytest

from pinball_trainer.percent import NOT_POSSIBLE, PercentValue, Side
from pinball_trainer.session import (
    FEEDBACK_TRAVEL_S,
    Phase,
    PracticeSession,
    SelectionMode,
    SessionConfig,
    build_practice_session,
    feedback_duration_s,
    pick_random_selection,
)
from pinball_trainer.rng import SeededRandom
from pinball_trainer.shots import Shot, ShotSequence, example_shots


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _session(clock: FakeClock, **overrides: object) -> PracticeSession:
    config = SessionConfig(seeded=True, **overrides)  # type: ignore[arg-type]
    return build_practice_session(clock=clock, config=config)


def _truth(session: PracticeSession) -> PercentValue:
    sel = session.selection
    assert sel is not None and session.hidden is not None
    return session.hidden.get(sel.shot_id, sel.side)


def test_feedback_duration() -> None:
    assert feedback_duration_s(0) == pytest.approx(1.3)
    assert feedback_duration_s(10) == pytest.approx(FEEDBACK_TRAVEL_S + 0.2 + 0.08)
    assert feedback_duration_s(100) == pytest.approx(1.6)


def test_start_random_mode_goes_straight_to_guess() -> None:
    clock = FakeClock()
    session = _session(clock)
    assert session.phase is Phase.IDLE
    assert session.can_exit()

    assert session.start(ShotSequence(example_shots())) is True
    assert session.phase is Phase.AWAITING_GUESS
    assert session.selection is not None
    assert session.seed == 42
    assert session.start(ShotSequence(example_shots())) is False
    assert not session.can_exit()


def test_start_requires_a_possible_shot() -> None:
    session = _session(FakeClock())
    seq = ShotSequence([Shot(shot_id=1, left=NOT_POSSIBLE, right=NOT_POSSIBLE)])
    with pytest.raises(ValueError):
        session.start(seq)
    assert session.phase is Phase.IDLE


def test_invalid_config_rejected() -> None:
    with pytest.raises(ValueError):
        PracticeSession(clock=FakeClock(), config=SessionConfig(initial_offset_steps=5))
    with pytest.raises(ValueError):
        PracticeSession(clock=FakeClock(), config=SessionConfig(drift_every=-1))


def test_submit_rejected_outside_guess_phase_or_when_not_numeric() -> None:
    clock = FakeClock()
    session = _session(clock)
    assert session.submit_guess("50") is False

    session.start(ShotSequence(example_shots()))
    assert session.submit_guess("abc") is False
    assert session.phase is Phase.AWAITING_GUESS
    assert session.history() == ()


def test_feedback_timer_gates_continue() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.start(ShotSequence(example_shots()))

    assert session.submit_guess(_truth(session)) is True
    assert session.phase is Phase.SHOWING_FEEDBACK
    assert session.feedback_remaining_s() == pytest.approx(1.3)

    clock.advance(1.29)
    session.update()
    assert session.phase is Phase.SHOWING_FEEDBACK

    clock.advance(0.02)
    session.update()
    assert session.phase is Phase.AWAITING_CONTINUE
    assert session.feedback_remaining_s() is None

    assert session.advance() is True
    assert session.phase is Phase.AWAITING_GUESS


def test_stale_timer_tokens_are_ignored() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.start(ShotSequence(example_shots()))

    session.submit_guess("50")
    first = session.feedback_token
    session.advance()
    session.submit_guess("50")

    assert session.on_feedback_elapsed(first) is False
    assert session.phase is Phase.SHOWING_FEEDBACK
    assert session.on_feedback_elapsed(session.feedback_token) is True
    assert session.phase is Phase.AWAITING_CONTINUE


def test_skip_feedback_cancels_timer() -> None:
    session = _session(FakeClock())
    session.start(ShotSequence(example_shots()))
    session.submit_guess("50")
    token = session.feedback_token
    assert session.skip_feedback() is True
    assert session.phase is Phase.AWAITING_CONTINUE
    assert session.on_feedback_elapsed(token) is False


def test_animations_disabled_means_no_feedback_delay() -> None:
    session = _session(FakeClock(), animations_enabled=False)
    session.start(ShotSequence(example_shots()))
    session.submit_guess("50")
    session.update()
    assert session.phase is Phase.AWAITING_CONTINUE


def test_random_mode_never_repeats_target_back_to_back() -> None:
    clock = FakeClock()
    session = _session(clock, drift_every=0)
    session.start(ShotSequence(example_shots()))
    for _ in range(30):
        before = session.selection
        session.submit_guess("50")
        session.advance()
        assert session.selection != before


def test_pick_random_selection_single_option_may_repeat() -> None:
    rng = SeededRandom(1)
    first = pick_random_selection([(1, Side.LEFT)], rng)
    assert first is not None
    assert pick_random_selection([(1, Side.LEFT)], rng, last=first) == first
    assert pick_random_selection([], rng) is None


def test_manual_mode_waits_for_selection() -> None:
    clock = FakeClock()
    session = _session(clock, mode=SelectionMode.MANUAL)
    session.start(ShotSequence(example_shots()))
    assert session.phase is Phase.SELECTING
    assert session.submit_guess("50") is False

    assert session.select(99, Side.LEFT) is False
    assert session.select(2, Side.RIGHT) is True
    assert session.phase is Phase.AWAITING_GUESS

    session.submit_guess("50")
    session.advance()
    assert session.phase is Phase.SELECTING


def test_attempt_record_contents_and_previous_guess() -> None:
    clock = FakeClock()
    session = _session(clock, mode=SelectionMode.MANUAL, drift_every=0)
    session.start(ShotSequence(example_shots()))

    session.select(1, Side.LEFT)
    clock.advance(2.0)
    session.submit_guess("30%")
    first = session.history()[-1]
    assert first.index == 0
    assert first.guess == PercentValue(30)
    assert first.truth == session.hidden.get(1, Side.LEFT)
    assert first.previous_guess is None
    assert first.adjustment_quality is None
    assert first.submitted_at_s == pytest.approx(2.0)

    session.advance()
    session.select(1, Side.LEFT)
    session.submit_guess("35")
    second = session.history()[-1]
    assert second.previous_guess == PercentValue(30)
    assert second.previous_truth == first.truth
    assert second.adjustment_quality is not None
    assert session.total_points() == first.points + second.points


def test_history_is_capped_fifo() -> None:
    session = _session(FakeClock(), history_limit=5, drift_every=0)
    session.start(ShotSequence(example_shots()))
    for _ in range(8):
        session.submit_guess("50")
        session.advance()
    history = session.history()
    assert len(history) == 5
    assert [r.index for r in history] == [3, 4, 5, 6, 7]
    assert session.state.attempt_count == 8


def test_drift_counts_every_n_attempts() -> None:
    session = _session(FakeClock(), drift_every=2)
    session.start(ShotSequence(example_shots()))
    counts = []
    for _ in range(5):
        session.submit_guess("50")
        session.advance()
        counts.append(session.state.drift_count)
    assert counts == [0, 1, 1, 2, 2]
    assert session.state.attempts_since_last_drift == 1


def test_same_seed_same_targets_and_truths() -> None:
    def run() -> list[tuple[int, Side, PercentValue]]:
        session = build_practice_session(clock=FakeClock(), config=SessionConfig(drift_every=3), seed=7)
        session.start(ShotSequence(example_shots()))
        out = []
        for _ in range(12):
            rec_sel = session.selection
            assert rec_sel is not None
            out.append((rec_sel.shot_id, rec_sel.side, _truth(session)))
            session.submit_guess("50")
            session.advance()
        return out

    assert run() == run()


def test_final_recall_prefill_and_grading() -> None:
    clock = FakeClock()
    session = _session(clock, mode=SelectionMode.MANUAL, drift_every=0)
    seq = ShotSequence(example_shots())
    assert session.end_session() is False

    session.start(seq)
    session.select(2, Side.LEFT)
    session.submit_guess("35")

    assert session.end_session() is True
    assert session.phase is Phase.FINAL_RECALL
    recall = session.state.final_recall
    assert recall[(2, Side.LEFT)] == PercentValue(35)
    assert recall[(1, Side.RIGHT)] == PercentValue(75)
    assert len(recall) == 6

    hidden = session.hidden
    assert hidden is not None
    for shot_id in hidden.shot_ids:
        for side in Side:
            assert session.set_final_recall(shot_id, side, hidden.get(shot_id, side)) is True
    assert session.set_final_recall(99, Side.LEFT, "50") is False
    assert session.set_final_recall(1, Side.LEFT, "abc") is False

    grade = session.grade()
    assert grade is not None
    assert session.phase is Phase.GRADED
    assert (grade.matches, grade.total, grade.score) == (6, 6, 100)
    assert grade.mean_abs_error == 0.0
    assert session.can_exit()

    assert session.finish() is True
    assert session.phase is Phase.COMPLETE


def test_final_recall_all_wrong_scores_zero() -> None:
    session = _session(FakeClock())
    session.start(ShotSequence(example_shots()))
    session.end_session()
    for shot_id, side in list(session.state.final_recall):
        session.set_final_recall(shot_id, side, "NP")
    grade = session.grade()
    assert grade is not None
    assert grade.matches == 0
    assert grade.score == 0


def test_reset_returns_to_idle() -> None:
    session = _session(FakeClock())
    session.start(ShotSequence(example_shots()))
    session.submit_guess("50")
    token = session.feedback_token
    session.reset()
    assert session.phase is Phase.IDLE
    assert session.history() == ()
    assert session.on_feedback_elapsed(token) is False


def test_snapshot_and_prompt_follow_phase() -> None:
    session = _session(FakeClock())
    assert "Set up" in session.snapshot().prompt
    session.start(ShotSequence(example_shots()))
    snap = session.snapshot()
    assert snap.phase is Phase.AWAITING_GUESS
    assert "Flipper" in snap.target_label
    assert snap.prompt.startswith(snap.target_label)
    session.submit_guess(_truth(session))
    snap = session.snapshot()
    assert snap.prompt.startswith("Perfect!")
    assert snap.total_points == 100
    assert snap.feedback_remaining_s == pytest.approx(1.3)
