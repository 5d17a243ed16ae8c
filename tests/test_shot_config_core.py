from __future__ import annotations

import json
from pathlib import Path

import pytest

from pinball_trainer.errors import MalformedImport
from pinball_trainer.percent import NOT_POSSIBLE, PercentValue, Side
from pinball_trainer.shot_config import (
    export_shots,
    import_shots,
    load_shot_file,
    parse_shots,
    save_shot_file,
)
from pinball_trainer.shots import Shot, ShotSequence, example_shots
from pinball_trainer.solver import is_strictly_ordered


def _content(seq: ShotSequence) -> list[tuple[str, str, str, PercentValue, PercentValue]]:
    return [(s.label, s.base_element, s.location, s.left, s.right) for s in seq]


def test_export_format() -> None:
    seq = ShotSequence(example_shots())
    seq.set_sentinel(3, Side.LEFT)
    data = json.loads(export_shots(seq))
    assert data[0] == {"id": 1, "label": "", "base": "Orbit", "location": "Left", "left": 25, "right": 75}
    assert data[2]["left"] == "NP"


def test_export_then_import_preserves_order_and_values() -> None:
    seq = ShotSequence(example_shots())
    seq.append_new(base_element="Scoop", location="Upper", label="Mystery")
    seq.set_sentinel(2, Side.RIGHT)

    again = import_shots(export_shots(seq))
    assert _content(again) == _content(seq)


def test_legacy_preset_keys_are_accepted() -> None:
    text = json.dumps(
        [
            {"shotType": "Left Orbit", "leftFlipper": 0, "rightFlipper": 70},
            {"shotType": "Spinner", "leftFlipper": 40, "rightFlipper": 50},
        ]
    )
    shots = parse_shots(text)
    assert shots[0].base_element == "Orbit"
    assert shots[0].location == "Left"
    assert shots[0].left is NOT_POSSIBLE
    assert shots[0].right == PercentValue(70)
    assert shots[1].type_tag == "Spinner"


def test_values_are_snapped_and_reordered_on_import() -> None:
    text = json.dumps(
        [
            {"base": "A", "left": 62, "right": 20},
            {"base": "B", "left": "40%", "right": 40},
        ]
    )
    seq = import_shots(text)
    assert len(seq) == 2
    for side in Side:
        assert is_strictly_ordered(seq.values(side), side.direction)


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "{}",
        "[1, 2]",
        '[{"base": "Ramp", "left": 50}]',
        '[{"base": "Ramp", "left": true, "right": 50}]',
        '[{"base": "Ramp", "left": null, "right": 50}]',
        '[{"base": "Ramp", "left": "lots", "right": 50}]',
        '[{"base": 3, "left": 50, "right": 50}]',
        '[{"id": "x", "base": "Ramp", "left": 50, "right": 50}]',
    ],
)
def test_malformed_documents_are_rejected(text: str) -> None:
    with pytest.raises(MalformedImport):
        parse_shots(text)
    assert len(import_shots(text)) == 0


def test_too_many_shots_import_as_empty() -> None:
    text = json.dumps([{"base": "Ramp", "left": 50, "right": 50}] * 20)
    assert len(import_shots(text)) == 0


def test_file_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "shots" / "table.json"
    seq = ShotSequence(example_shots())
    assert save_shot_file(path, seq) is True
    assert _content(load_shot_file(path)) == _content(seq)


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    assert len(load_shot_file(tmp_path / "nope.json")) == 0


def test_ids_are_kept_when_unique() -> None:
    seq = ShotSequence([Shot(shot_id=5, left=PercentValue(20)), Shot(shot_id=9, left=PercentValue(60))])
    assert import_shots(export_shots(seq)).ids() == (5, 9)
