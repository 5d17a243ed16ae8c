"""Shot configuration files (import / export).

Format: a JSON array of objects::

    [{"id": 1, "label": "", "base": "Orbit", "location": "Left", "left": 25, "right": "NP"}]

``id``, ``label`` and ``location`` are optional. Preset files written by older
versions use ``shotType`` / ``leftFlipper`` / ``rightFlipper`` with 0 meaning
"not possible"; those are accepted on import.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import ConstraintInfeasible, InvalidValue, MalformedImport
from .percent import NOT_POSSIBLE, PercentValue, Side, parse_percent, to_json_value
from .shots import LOCATIONS, Shot, ShotSequence


def shot_to_dict(shot: Shot) -> dict[str, Any]:
    return {
        "id": shot.shot_id,
        "label": shot.label,
        "base": shot.base_element,
        "location": shot.location,
        "left": to_json_value(shot.left),
        "right": to_json_value(shot.right),
    }


def export_shots(sequence: ShotSequence) -> str:
    return json.dumps([shot_to_dict(s) for s in sequence], indent=2)


def _split_type(type_tag: str) -> tuple[str, str]:
    text = type_tag.strip()
    for loc in LOCATIONS:
        if text.startswith(f"{loc} "):
            return text[len(loc) + 1 :].strip(), loc
    return text, ""


def _value(raw: object, *, where: str, legacy: bool) -> PercentValue:
    if legacy and isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw == 0:
        return NOT_POSSIBLE
    if raw is None or isinstance(raw, bool):
        raise MalformedImport(f"{where}: expected a percentage or 'NP', got {raw!r}")
    try:
        return parse_percent(raw)
    except InvalidValue as exc:
        raise MalformedImport(f"{where}: {exc}") from None


def shot_from_dict(item: object, index: int) -> Shot:
    if not isinstance(item, dict):
        raise MalformedImport(f"shot {index}: expected an object")

    legacy = "left" not in item and "leftFlipper" in item
    if legacy:
        base, location = _split_type(str(item.get("shotType", "")))
        left_raw = item.get("leftFlipper")
        right_raw = item.get("rightFlipper")
    else:
        base = item.get("base", "")
        location = item.get("location", "") or ""
        if not isinstance(base, str) or not isinstance(location, str):
            raise MalformedImport(f"shot {index}: 'base' and 'location' must be strings")
        if "left" not in item or "right" not in item:
            raise MalformedImport(f"shot {index}: 'left' and 'right' are required")
        left_raw = item["left"]
        right_raw = item["right"]

    shot_id = item.get("id", 0)
    if shot_id is None:
        shot_id = 0
    if isinstance(shot_id, bool) or not isinstance(shot_id, int):
        raise MalformedImport(f"shot {index}: 'id' must be an integer")

    label = item.get("label", "") or ""
    if not isinstance(label, str):
        raise MalformedImport(f"shot {index}: 'label' must be a string")

    return Shot(
        shot_id=shot_id,
        label=label,
        base_element=base.strip(),
        location=location.strip(),
        left=_value(left_raw, where=f"shot {index} {Side.LEFT.label}", legacy=legacy),
        right=_value(right_raw, where=f"shot {index} {Side.RIGHT.label}", legacy=legacy),
    )


def parse_shots(text: str) -> list[Shot]:
    """Strict parse. Raises MalformedImport on any schema violation."""

    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedImport(f"not valid JSON: {exc}") from None
    if not isinstance(payload, list):
        raise MalformedImport("expected a JSON array of shots")
    return [shot_from_dict(item, i) for i, item in enumerate(payload)]


def import_shots(text: str) -> ShotSequence:
    """Parse into a new sequence; any failure yields an empty sequence."""

    try:
        return ShotSequence(parse_shots(text))
    except (MalformedImport, ConstraintInfeasible) as exc:
        logger.warning("shot import rejected, using an empty list: {}", exc)
        return ShotSequence()


def load_shot_file(path: Path) -> ShotSequence:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("cannot read shot file {}: {}", path, exc)
        return ShotSequence()
    return import_shots(text)


def save_shot_file(path: Path, sequence: ShotSequence) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(f"{path.suffix}.tmp")
        tmp_path.write_text(export_shots(sequence), encoding="utf-8")
        tmp_path.replace(path)
    except OSError as exc:
        logger.warning("cannot write shot file {}: {}", path, exc)
        return False
    return True
