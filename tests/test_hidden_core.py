from __future__ import annotations

from pinball_trainer.hidden import (
    MAX_OFFSET_STEPS,
    DriftScheduler,
    ShotValues,
    drift_steps,
    initialize_hidden_values,
    maybe_drift,
)
from pinball_trainer.percent import NOT_POSSIBLE, PercentValue, Side
from pinball_trainer.rng import SeededRandom
from pinball_trainer.session import SessionState
from pinball_trainer.shots import Shot, ShotSequence, example_shots
from pinball_trainer.solver import is_strictly_ordered


def _base() -> ShotValues:
    seq = ShotSequence(
        [
            Shot(shot_id=0, left=PercentValue(15), right=PercentValue(85)),
            Shot(shot_id=0, left=PercentValue(30), right=NOT_POSSIBLE),
            Shot(shot_id=0, left=NOT_POSSIBLE, right=PercentValue(55)),
            Shot(shot_id=0, left=PercentValue(70), right=PercentValue(40)),
            Shot(shot_id=0, left=PercentValue(90), right=PercentValue(10)),
        ]
    )
    return ShotValues.from_sequence(seq)


def _assert_within(hidden: ShotValues, base: ShotValues, steps: int) -> None:
    for side in Side:
        assert is_strictly_ordered(hidden.side(side), side.direction)
        for h, b in zip(hidden.side(side), base.side(side)):
            assert h.is_not_possible == b.is_not_possible
            if not b.is_not_possible:
                assert abs(h.percent - b.percent) <= steps * 5


def test_pairs_skip_not_possible() -> None:
    base = _base()
    pairs = base.pairs()
    assert len(pairs) == 8
    assert (base.shot_ids[1], Side.RIGHT) not in pairs
    assert (base.shot_ids[2], Side.LEFT) not in pairs


def test_zero_offset_keeps_base_values() -> None:
    base = _base()
    assert initialize_hidden_values(base, 0, SeededRandom(1)) == base


def test_initial_offset_stays_ordered_and_bounded() -> None:
    base = _base()
    for seed in range(60):
        for steps in range(0, 5):
            hidden = initialize_hidden_values(base, steps, SeededRandom(seed))
            _assert_within(hidden, base, steps)


def test_initial_offset_is_capped() -> None:
    base = _base()
    for seed in range(30):
        hidden = initialize_hidden_values(base, 10, SeededRandom(seed))
        _assert_within(hidden, base, MAX_OFFSET_STEPS)


def test_same_seed_same_hidden_values() -> None:
    base = ShotValues.from_sequence(ShotSequence(example_shots()))
    a = initialize_hidden_values(base, 3, SeededRandom(42))
    b = initialize_hidden_values(base, 3, SeededRandom(42))
    assert a == b


def test_drift_steps_floor_and_cap() -> None:
    assert drift_steps(2.7) == 2
    assert drift_steps(9.0) == 4
    assert drift_steps(-1.0) == 0
    assert drift_steps(float("inf")) == 0


def test_drift_fires_after_exactly_n_attempts_and_resets_counter() -> None:
    base = _base()
    rng = SeededRandom(5)
    state = SessionState(base=base, hidden=base)

    for attempt in range(1, 3):
        state.attempts_since_last_drift = attempt
        assert maybe_drift(state, base, 3, 2.0, rng) is None
        assert state.attempts_since_last_drift == attempt

    state.attempts_since_last_drift = 3
    drifted = maybe_drift(state, base, 3, 2.0, rng)
    assert drifted is not None
    assert state.hidden == drifted
    assert state.attempts_since_last_drift == 0
    _assert_within(drifted, base, 2)


def test_drift_disabled_when_every_is_zero() -> None:
    base = _base()
    state = SessionState(base=base, hidden=base, attempts_since_last_drift=100)
    assert maybe_drift(state, base, 0, 3.0, SeededRandom(1)) is None
    assert state.attempts_since_last_drift == 100


def test_drift_is_anchored_to_base_not_previous_hidden() -> None:
    base = _base()
    scheduler = DriftScheduler(drift_every=1, drift_magnitude_steps=1.5, rng=SeededRandom(9))
    assert scheduler.max_distance_steps == 1
    state = SessionState(base=base, hidden=base)
    for _ in range(50):
        state.attempts_since_last_drift = 1
        assert scheduler.maybe_drift(state, base) is not None
        assert state.hidden is not None
        _assert_within(state.hidden, base, 1)


def test_zero_magnitude_drift_returns_base() -> None:
    base = _base()
    state = SessionState(base=base, hidden=initialize_hidden_values(base, 4, SeededRandom(3)), attempts_since_last_drift=2)
    assert maybe_drift(state, base, 2, 0.0, SeededRandom(3)) == base
