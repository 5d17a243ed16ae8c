from __future__ import annotations

import pytest

from pinball_trainer.errors import ConstraintInfeasible
from pinball_trainer.percent import NOT_POSSIBLE, PercentValue, Side
from pinball_trainer.shots import Shot, ShotSequence, build_type_tag, example_shots
from pinball_trainer.solver import is_strictly_ordered


def _percents(seq: ShotSequence, side: Side) -> list[int | None]:
    return [v.percent for v in seq.values(side)]


def _assert_ordered(seq: ShotSequence) -> None:
    for side in Side:
        assert is_strictly_ordered(seq.values(side), side.direction)


def test_example_loads_with_fresh_ids_and_given_values() -> None:
    seq = ShotSequence(example_shots())
    assert seq.ids() == (1, 2, 3)
    assert _percents(seq, Side.LEFT) == [25, 50, 75]
    assert _percents(seq, Side.RIGHT) == [75, 50, 25]
    assert [s.display_name for s in seq] == ["Left Orbit", "Center Ramp", "Right Orbit"]
    assert [s.position for s in seq] == [0, 1, 2]


def test_type_tag() -> None:
    assert build_type_tag("Ramp", "Left") == "Left Ramp"
    assert build_type_tag("Ramp", "Base") == "Ramp"
    assert build_type_tag("", "Left") == ""


def test_set_value_keeps_edit_and_pushes_neighbours() -> None:
    seq = ShotSequence(example_shots())
    result = seq.set_value(2, Side.LEFT, PercentValue(80))
    assert result == PercentValue(80)
    assert _percents(seq, Side.LEFT) == [25, 80, 85]
    assert _percents(seq, Side.RIGHT) == [75, 50, 25]
    _assert_ordered(seq)


def test_set_sentinel_toggles_and_restores_last_value() -> None:
    seq = ShotSequence(example_shots())
    assert seq.set_sentinel(2, Side.RIGHT) is NOT_POSSIBLE
    assert seq.get(2).right.is_not_possible
    _assert_ordered(seq)

    restored = seq.set_sentinel(2, Side.RIGHT)
    assert restored == PercentValue(50)
    _assert_ordered(seq)


def test_set_sentinel_restore_without_history_uses_neighbours() -> None:
    seq = ShotSequence(
        [
            Shot(shot_id=1, left=PercentValue(20)),
            Shot(shot_id=2, left=NOT_POSSIBLE),
            Shot(shot_id=3, left=PercentValue(60)),
        ]
    )
    assert seq.set_sentinel(2, Side.LEFT) == PercentValue(40)


def test_insert_defaults_midpoint_edges_and_empty() -> None:
    seq = ShotSequence(example_shots())
    assert seq.compute_insert_default(1, Side.LEFT) == PercentValue(40)
    assert seq.compute_insert_default(1, Side.RIGHT) == PercentValue(65)
    assert seq.compute_insert_default(3, Side.LEFT) == PercentValue(80)
    assert seq.compute_insert_default(3, Side.RIGHT) == PercentValue(20)
    assert seq.compute_insert_default(0, Side.LEFT) == PercentValue(20)

    assert ShotSequence().compute_insert_default(0, Side.LEFT) == PercentValue(50)


def test_insert_default_skips_not_possible_neighbours() -> None:
    seq = ShotSequence(
        [
            Shot(shot_id=1, left=PercentValue(25)),
            Shot(shot_id=2, left=NOT_POSSIBLE),
            Shot(shot_id=3, left=PercentValue(75)),
        ]
    )
    assert seq.compute_insert_default(2, Side.LEFT) == PercentValue(50)


def test_append_insert_remove_and_move_keep_order() -> None:
    seq = ShotSequence(example_shots())
    added = seq.append_new(base_element="Scoop", location="Upper")
    assert added.shot_id == 4
    assert added.left == PercentValue(80)
    assert added.right == PercentValue(20)

    inserted = seq.insert_at(1, Shot(shot_id=0, base_element="Spinner", left=PercentValue(90), right=PercentValue(5)))
    assert seq.index_of(inserted.shot_id) == 1
    _assert_ordered(seq)

    removed = seq.remove_at(0)
    assert removed.shot_id == 1
    assert 1 not in seq.ids()

    seq.move(0, len(seq) - 1)
    assert seq.ids()[-1] == inserted.shot_id
    _assert_ordered(seq)
    assert [s.position for s in seq] == list(range(len(seq)))


def test_replace_all_renumbers_duplicate_and_missing_ids() -> None:
    seq = ShotSequence()
    seq.replace_all(
        [
            Shot(shot_id=7, left=PercentValue(20), right=PercentValue(80)),
            Shot(shot_id=7, left=PercentValue(40), right=PercentValue(60)),
            Shot(shot_id=0, left=PercentValue(60), right=PercentValue(40)),
        ]
    )
    ids = seq.ids()
    assert ids[0] == 7
    assert len(set(ids)) == 3
    assert seq.new_id() > max(ids)


def test_replace_all_solves_unordered_input() -> None:
    seq = ShotSequence(
        [
            Shot(shot_id=1, left=PercentValue(60), right=PercentValue(20)),
            Shot(shot_id=2, left=PercentValue(40), right=PercentValue(40)),
        ]
    )
    _assert_ordered(seq)


def test_allowed_range() -> None:
    seq = ShotSequence(example_shots())
    assert seq.allowed_range(2, Side.LEFT) == (PercentValue(30), PercentValue(70))
    assert seq.allowed_range(2, Side.RIGHT) == (PercentValue(30), PercentValue(70))
    assert seq.allowed_range(1, Side.LEFT) == (PercentValue(5), PercentValue(45))


def test_infeasible_insert_leaves_sequence_untouched() -> None:
    seq = ShotSequence()
    for _ in range(19):
        seq.append_new(base_element="Ramp")
    before = seq.shots
    assert len(before) == 19

    with pytest.raises(ConstraintInfeasible):
        seq.append_new(base_element="Ramp")
    assert seq.shots == before
    _assert_ordered(seq)


def test_failed_insert_does_not_consume_an_id() -> None:
    seq = ShotSequence()
    for _ in range(19):
        seq.append_new(base_element="Ramp")
    with pytest.raises(ConstraintInfeasible):
        seq.append_new(base_element="Ramp")

    seq.remove_at(0)
    assert seq.append_new(base_element="Ramp").shot_id == 20


def test_unknown_shot_id_raises_key_error() -> None:
    seq = ShotSequence(example_shots())
    with pytest.raises(KeyError):
        seq.get(99)
