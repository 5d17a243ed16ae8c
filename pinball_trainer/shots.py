from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace

from loguru import logger

from .errors import ConstraintInfeasible
from .percent import (
    MAX_PERCENT,
    MIN_PERCENT,
    NOT_POSSIBLE,
    STEP,
    PercentValue,
    Side,
    snap_to_grid,
    step_away,
)
from .solver import Bound, solve

# Most common first.
BASE_ELEMENTS: tuple[str, ...] = (
    "Ramp",
    "Standups",
    "Orbit",
    "Drops",
    "Spinner",
    "Scoop",
    "Lane",
    "Toy",
    "Captive Ball",
    "Saucer",
    "Loop",
    "Lock",
    "VUK",
    "Bumper",
    "Deadend",
    "Gate",
    "Magnet",
    "Rollover",
    "Vari Target",
    "Roto Target",
)

LOCATIONS: tuple[str, ...] = ("Left", "Right", "Center", "Side", "Top", "Upper", "Bottom", "Lower")

DEFAULT_PERCENT = PercentValue(50)


def build_type_tag(base_element: str, location: str = "") -> str:
    base = base_element.strip()
    loc = location.strip()
    if not base:
        return ""
    if not loc or loc == "Base":
        return base
    return f"{loc} {base}"


@dataclass(frozen=True, slots=True)
class Shot:
    shot_id: int
    label: str = ""
    base_element: str = ""
    location: str = ""
    left: PercentValue = DEFAULT_PERCENT
    right: PercentValue = DEFAULT_PERCENT
    position: int = 0

    @property
    def type_tag(self) -> str:
        return build_type_tag(self.base_element, self.location)

    @property
    def display_name(self) -> str:
        return self.label or self.type_tag or f"Shot {self.shot_id}"

    def value(self, side: Side) -> PercentValue:
        return self.left if side is Side.LEFT else self.right

    def with_value(self, side: Side, value: PercentValue) -> "Shot":
        if side is Side.LEFT:
            return replace(self, left=value)
        return replace(self, right=value)


class ShotSequence:
    """Ordered shots whose left values rise and right values fall down the list.

    Every mutation re-solves both sides before returning, so callers only ever
    observe a sequence that satisfies the ordering invariant. A mutation that
    cannot be made consistent leaves the sequence untouched and raises
    ConstraintInfeasible.
    """

    def __init__(self, shots: Iterable[Shot] = ()) -> None:
        self._shots: list[Shot] = []
        self._next_id = 1
        self._last_known: dict[tuple[int, Side], PercentValue] = {}
        self.replace_all(shots)

    def __len__(self) -> int:
        return len(self._shots)

    def __iter__(self) -> Iterator[Shot]:
        return iter(tuple(self._shots))

    def __getitem__(self, index: int) -> Shot:
        return self._shots[index]

    @property
    def shots(self) -> tuple[Shot, ...]:
        return tuple(self._shots)

    def ids(self) -> tuple[int, ...]:
        return tuple(s.shot_id for s in self._shots)

    def values(self, side: Side) -> tuple[PercentValue, ...]:
        return tuple(s.value(side) for s in self._shots)

    def index_of(self, shot_id: int) -> int:
        for i, shot in enumerate(self._shots):
            if shot.shot_id == shot_id:
                return i
        raise KeyError(shot_id)

    def get(self, shot_id: int) -> Shot:
        return self._shots[self.index_of(shot_id)]

    def new_id(self) -> int:
        shot_id = self._next_id
        self._next_id += 1
        return shot_id

    # --- mutations -------------------------------------------------------

    def replace_all(self, shots: Iterable[Shot]) -> None:
        """Batch replace (presets, imports). Duplicate or missing ids are renumbered."""

        incoming = list(shots)
        supplied = [s.shot_id for s in incoming if s.shot_id > 0]
        next_id = max([self._next_id - 1, *supplied]) + 1 if supplied else self._next_id

        seen: set[int] = set()
        fixed: list[Shot] = []
        for shot in incoming:
            if shot.shot_id <= 0 or shot.shot_id in seen:
                shot = replace(shot, shot_id=next_id)
                next_id += 1
            seen.add(shot.shot_id)
            fixed.append(shot)

        self._commit(fixed)
        self._next_id = max(next_id, self._next_id)
        self._last_known = {k: v for k, v in self._last_known.items() if k[0] in seen}

    def append_new(
        self,
        *,
        base_element: str = "",
        location: str = "",
        label: str = "",
        left: PercentValue | None = None,
        right: PercentValue | None = None,
    ) -> Shot:
        index = len(self._shots)
        shot = Shot(
            shot_id=0,
            label=label,
            base_element=base_element,
            location=location,
            left=self.compute_insert_default(index, Side.LEFT) if left is None else left,
            right=self.compute_insert_default(index, Side.RIGHT) if right is None else right,
        )
        return self.insert_at(index, shot)

    def insert_at(self, index: int, shot: Shot) -> Shot:
        index = max(0, min(len(self._shots), int(index)))
        if shot.shot_id <= 0 or shot.shot_id in self.ids():
            shot = replace(shot, shot_id=self._next_id)
        candidate = list(self._shots)
        candidate.insert(index, shot)
        self._commit(candidate)
        self._next_id = max(self._next_id, shot.shot_id + 1)
        return self.get(shot.shot_id)

    def remove_at(self, index: int) -> Shot:
        candidate = list(self._shots)
        removed = candidate.pop(index)
        self._commit(candidate)
        for side in Side:
            self._last_known.pop((removed.shot_id, side), None)
        return removed

    def move(self, from_index: int, to_index: int) -> None:
        if from_index == to_index:
            return
        candidate = list(self._shots)
        shot = candidate.pop(from_index)
        candidate.insert(max(0, min(len(candidate), to_index)), shot)
        self._commit(candidate)

    def set_value(self, shot_id: int, side: Side, value: PercentValue) -> PercentValue:
        """Set one side of a shot; other shots move out of the way if needed."""

        index = self.index_of(shot_id)
        candidate = list(self._shots)
        candidate[index] = candidate[index].with_value(side, value)
        pin = None if value.is_not_possible else (index, side, value)
        self._commit(candidate, pin=pin)
        if not value.is_not_possible:
            self._last_known[(shot_id, side)] = self._shots[index].value(side)
        return self._shots[index].value(side)

    def set_sentinel(self, shot_id: int, side: Side) -> PercentValue:
        """Toggle a side between NOT_POSSIBLE and its last known value."""

        index = self.index_of(shot_id)
        current = self._shots[index].value(side)
        if not current.is_not_possible:
            candidate = list(self._shots)
            candidate[index] = candidate[index].with_value(side, NOT_POSSIBLE)
            self._commit(candidate)
            self._last_known[(shot_id, side)] = current
            return NOT_POSSIBLE

        restored = self._last_known.get((shot_id, side))
        if restored is None:
            others = self.values(side)[:index] + self.values(side)[index + 1 :]
            restored = _default_between(others, index, side)
        return self.set_value(shot_id, side, restored)

    # --- queries ---------------------------------------------------------

    def compute_insert_default(self, index: int, side: Side) -> PercentValue:
        """Value a new shot inserted at ``index`` should start with on ``side``."""

        return _default_between(self.values(side), index, side)

    def allowed_range(self, shot_id: int, side: Side) -> tuple[PercentValue, PercentValue] | None:
        """Inclusive range for this shot's value that leaves every other shot where it is."""

        index = self.index_of(shot_id)
        values = self.values(side)
        before = _nearest(values[:index][::-1])
        after = _nearest(values[index + 1 :])
        if side.direction.sign < 0:
            before, after = after, before
        lo = MIN_PERCENT if before is None else before.percent + STEP
        hi = MAX_PERCENT if after is None else after.percent - STEP
        if lo > hi:
            return None
        return PercentValue(lo), PercentValue(hi)

    # --- internals -------------------------------------------------------

    def _commit(self, shots: list[Shot], *, pin: tuple[int, Side, PercentValue] | None = None) -> None:
        solved = list(shots)
        for side in Side:
            values = [s.value(side) for s in solved]
            if pin is not None and pin[1] is side:
                bounds: list[Bound | None] = [None] * len(values)
                bounds[pin[0]] = Bound.pinned(pin[2])
                try:
                    fixed = solve(values, side.direction, bounds)
                except ConstraintInfeasible:
                    logger.debug("shot {} cannot keep {} on {}; solving unpinned", pin[0], pin[2], side.value)
                    fixed = solve(values, side.direction)
            else:
                fixed = solve(values, side.direction)
            solved = [s.with_value(side, v) for s, v in zip(solved, fixed)]
        self._shots = [replace(s, position=i) for i, s in enumerate(solved)]


def _nearest(values: Iterable[PercentValue]) -> PercentValue | None:
    for v in values:
        if not v.is_not_possible:
            return v
    return None


def _default_between(values: tuple[PercentValue, ...], index: int, side: Side) -> PercentValue:
    # NOT_POSSIBLE entries are skipped over rather than treated as neighbours.
    prev = _nearest(values[:index][::-1])
    nxt = _nearest(values[index:])
    sign = side.direction.sign
    if prev is not None and nxt is not None:
        return snap_to_grid((prev.percent + nxt.percent) / 2)
    if prev is not None:
        return step_away(prev, sign)
    if nxt is not None:
        return step_away(nxt, -sign)
    return DEFAULT_PERCENT


def example_shots() -> list[Shot]:
    return [
        Shot(shot_id=0, base_element="Orbit", location="Left", left=PercentValue(25), right=PercentValue(75)),
        Shot(shot_id=0, base_element="Ramp", location="Center", left=PercentValue(50), right=PercentValue(50)),
        Shot(shot_id=0, base_element="Orbit", location="Right", left=PercentValue(75), right=PercentValue(25)),
    ]
