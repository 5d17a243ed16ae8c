"""Pygame UI shell for the Pinball Accuracy Trainer.

Screens:
- Shot Setup (edit the ordered shot list; values stay strictly ordered)
- Practice (guess hidden accuracies, feedback, drift)
- Final Recall (enter every value from memory, graded)
- Settings (session config and display preferences)

Deterministic ordering/scoring/RNG/state lives in pinball_trainer/* (core modules).
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

import pygame
from loguru import logger

from .clock import RealClock
from .errors import ConstraintInfeasible
from .percent import NOT_POSSIBLE, Side, format_percent, step_away
from .persistence import SqliteKeyValueStore, TrainerStorage, default_db_path, record_practice_session
from .results import previous_session_line, session_summary
from .rng import new_seed
from .session import (
    PRACTICE_PHASES,
    Phase,
    PracticeSession,
    Selection,
    SelectionMode,
    SessionConfig,
    build_practice_session,
)
from .shots import Shot, ShotSequence, example_shots

APP_VERSION = "0.1.0"

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60


@dataclass(frozen=True, slots=True)
class Palette:
    bg: tuple[int, int, int]
    panel: tuple[int, int, int]
    header: tuple[int, int, int]
    border: tuple[int, int, int]
    text: tuple[int, int, int]
    muted: tuple[int, int, int]
    active_bg: tuple[int, int, int]
    active_text: tuple[int, int, int]
    good: tuple[int, int, int]
    warn: tuple[int, int, int]
    bad: tuple[int, int, int]


DARK = Palette(
    bg=(3, 9, 78),
    panel=(8, 18, 104),
    header=(18, 30, 118),
    border=(226, 236, 255),
    text=(238, 245, 255),
    muted=(186, 200, 224),
    active_bg=(244, 248, 255),
    active_text=(14, 26, 74),
    good=(120, 220, 140),
    warn=(240, 200, 90),
    bad=(240, 110, 110),
)

LIGHT = Palette(
    bg=(226, 232, 244),
    panel=(244, 247, 252),
    header=(206, 216, 236),
    border=(40, 52, 96),
    text=(18, 24, 48),
    muted=(90, 100, 130),
    active_bg=(30, 50, 120),
    active_text=(244, 248, 255),
    good=(30, 130, 60),
    warn=(170, 120, 10),
    bad=(180, 40, 40),
)

SEVERITY_COLOURS = {"perfect": "good", "slight": "good", "fairly": "warn", "very": "bad"}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(
        self,
        surface: pygame.Surface,
        font: pygame.font.Font,
        *,
        storage: TrainerStorage,
        db_path: Path | None = None,
    ) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True
        self._storage = storage
        self._db_path = db_path
        self._dark_mode = storage.get_preference("dark_mode", False)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def storage(self) -> TrainerStorage:
        return self._storage

    @property
    def db_path(self) -> Path | None:
        return self._db_path

    @property
    def palette(self) -> Palette:
        return DARK if self._dark_mode else LIGHT

    def refresh_preferences(self) -> None:
        self._dark_mode = self._storage.get_preference("dark_mode", False)

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


def _free_range_text(sequence: ShotSequence, shot_id: int, side: Side) -> str:
    """Room the selected cell has before a nudge starts pushing its neighbours."""

    if sequence.get(shot_id).value(side).is_not_possible:
        return ""
    bounds = sequence.allowed_range(shot_id, side)
    if bounds is None:
        return ""
    lo, hi = bounds
    if lo == hi:
        return f"Boxed in at {format_percent(lo)}, nudging pushes neighbours"
    return f"Free range {format_percent(lo)} to {format_percent(hi)}"


def _draw_frame(surface: pygame.Surface, pal: Palette, title: str, tag: str, font: pygame.font.Font) -> pygame.Rect:
    """Common window chrome; returns the content rect below the header."""

    w, h = surface.get_size()
    surface.fill(pal.bg)

    frame_margin = max(10, min(26, w // 34))
    frame = pygame.Rect(
        frame_margin,
        frame_margin,
        max(260, w - frame_margin * 2),
        max(220, h - frame_margin * 2),
    )
    pygame.draw.rect(surface, pal.panel, frame)
    pygame.draw.rect(surface, pal.border, frame, 2)

    header_h = max(34, min(52, h // 8))
    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
    pygame.draw.rect(surface, pal.header, header)
    pygame.draw.line(surface, pal.border, (header.x, header.bottom), (header.right, header.bottom), 1)

    hint_font = pygame.font.Font(None, 22)
    tag_surf = hint_font.render(tag, True, pal.muted)
    surface.blit(tag_surf, (header.x + 12, header.y + (header.h - tag_surf.get_height()) // 2))

    title_surf = font.render(title, True, pal.text)
    surface.blit(title_surf, title_surf.get_rect(center=(frame.centerx, header.centery)))

    return pygame.Rect(frame.x + 14, header.bottom + 12, frame.w - 28, frame.bottom - header.bottom - 24)


def _draw_footer(surface: pygame.Surface, pal: Palette, content: pygame.Rect, text: str) -> None:
    font = pygame.font.Font(None, 22)
    foot = font.render(_fit_label(font, text, content.w), True, pal.muted)
    surface.blit(foot, foot.get_rect(midbottom=(content.centerx, content.bottom + 6)))


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            self._handle_key(event.key)
            return

        if event.type == pygame.JOYHATMOTION:
            _, y = event.value
            if y == 1:
                self._move(-1)
            elif y == -1:
                self._move(1)
            return

        if event.type == pygame.JOYBUTTONDOWN:
            # Common mapping: 0 = select, 1 = back/cancel.
            if event.button == 0:
                self._activate()
            elif event.button == 1:
                self._back()

    def _handle_key(self, key: int) -> None:
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        pal = self._app.palette
        content = _draw_frame(surface, pal, self._title, "MENU", self._title_font)

        list_rect = pygame.Rect(content.x, content.y, content.w, max(120, content.h - 36))
        item_count = max(1, len(self._items))
        gap = max(4, min(10, list_rect.h // max(10, item_count * 3)))
        row_h = max(30, min(44, (list_rect.h - gap * (item_count + 1)) // item_count))
        total_h = row_h * item_count + gap * (item_count - 1)
        y = list_rect.y + max(8, (list_rect.h - total_h) // 2)

        for idx, item in enumerate(self._items):
            row = pygame.Rect(list_rect.x + 12, y, list_rect.w - 24, row_h)
            selected = idx == self._selected
            pygame.draw.rect(surface, pal.active_bg if selected else pal.header, row)
            pygame.draw.rect(surface, pal.border, row, 2 if selected else 1)

            color = pal.active_text if selected else pal.text
            label = _fit_label(self._item_font, item.label, row.w - 20)
            text = self._item_font.render(label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap

        _draw_footer(surface, pal, content, "Enter/Space: Select  |  Esc/Backspace: Back  |  D-pad + Button0/1")


class SetupScreen:
    """Edit the ordered shot list. Every edit is re-solved and saved immediately."""

    def __init__(self, app: App, *, sequence: ShotSequence, on_start: Callable[[], None]) -> None:
        self._app = app
        self._sequence = sequence
        self._on_start = on_start
        self._row = 0
        self._side = Side.LEFT
        self._message = ""
        self._title_font = pygame.font.Font(None, 42)
        self._row_font = pygame.font.Font(None, 30)
        self._small_font = pygame.font.Font(None, 24)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        shift = bool(getattr(event, "mod", 0) & pygame.KMOD_SHIFT)
        self._message = ""

        if key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
        elif key in (pygame.K_UP, pygame.K_DOWN):
            delta = -1 if key == pygame.K_UP else 1
            if shift:
                self._move_row(delta)
            else:
                self._select_row(self._row + delta)
        elif key in (pygame.K_LEFT, pygame.K_RIGHT):
            self._side = Side.LEFT if key == pygame.K_LEFT else Side.RIGHT
        elif key in (pygame.K_PLUS, pygame.K_EQUALS, pygame.K_KP_PLUS):
            self._nudge(1)
        elif key in (pygame.K_MINUS, pygame.K_KP_MINUS):
            self._nudge(-1)
        elif key == pygame.K_n:
            self._toggle_not_possible()
        elif key == pygame.K_i:
            self._insert()
        elif key == pygame.K_DELETE:
            self._remove()
        elif key == pygame.K_e:
            self._edit(lambda: self._sequence.replace_all(example_shots()))
            self._row = 0
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._on_start()

    def _select_row(self, row: int) -> None:
        if len(self._sequence) == 0:
            self._row = 0
            return
        self._row = max(0, min(len(self._sequence) - 1, row))

    def _edit(self, action: Callable[[], object]) -> bool:
        try:
            action()
        except ConstraintInfeasible:
            self._message = "No room to keep every shot strictly ordered."
            return False
        self._app.storage.save_shots(self._sequence)
        return True

    def _current_id(self) -> int | None:
        if not (0 <= self._row < len(self._sequence)):
            return None
        return self._sequence[self._row].shot_id

    def _nudge(self, delta: int) -> None:
        shot_id = self._current_id()
        if shot_id is None:
            return
        current = self._sequence.get(shot_id).value(self._side)
        if current.is_not_possible:
            self._message = "Press N to make this shot possible first."
            return
        self._edit(lambda: self._sequence.set_value(shot_id, self._side, step_away(current, delta)))

    def _toggle_not_possible(self) -> None:
        shot_id = self._current_id()
        if shot_id is not None:
            self._edit(lambda: self._sequence.set_sentinel(shot_id, self._side))

    def _insert(self) -> None:
        index = 0 if len(self._sequence) == 0 else self._row + 1
        if self._edit(lambda: self._sequence.insert_at(index, self._blank_shot(index))):
            self._select_row(index)

    def _blank_shot(self, index: int) -> Shot:
        return Shot(
            shot_id=0,
            base_element="Ramp",
            left=self._sequence.compute_insert_default(index, Side.LEFT),
            right=self._sequence.compute_insert_default(index, Side.RIGHT),
        )

    def _remove(self) -> None:
        if self._current_id() is None:
            return
        self._edit(lambda: self._sequence.remove_at(self._row))
        self._select_row(self._row)

    def _move_row(self, delta: int) -> None:
        target = self._row + delta
        if self._current_id() is None or not (0 <= target < len(self._sequence)):
            return
        if self._edit(lambda: self._sequence.move(self._row, target)):
            self._row = target

    def render(self, surface: pygame.Surface) -> None:
        pal = self._app.palette
        content = _draw_frame(surface, pal, "Shot Setup", "SETUP", self._title_font)

        col_name = content.x + 12
        col_left = content.x + int(content.w * 0.55)
        col_right = content.x + int(content.w * 0.78)
        y = content.y
        for label, x in (("Shot", col_name), (Side.LEFT.label, col_left), (Side.RIGHT.label, col_right)):
            surface.blit(self._small_font.render(label, True, pal.muted), (x, y))
        y += 26

        if len(self._sequence) == 0:
            empty = self._row_font.render("No shots. Press I to add one or E for the example.", True, pal.muted)
            surface.blit(empty, (col_name, y + 8))

        row_h = 32
        visible = max(1, (content.h - 114) // row_h)
        first = max(0, min(self._row - visible // 2, len(self._sequence) - visible))
        for idx in range(first, min(len(self._sequence), first + visible)):
            shot = self._sequence[idx]
            row = pygame.Rect(content.x, y, content.w, row_h - 4)
            if idx == self._row:
                pygame.draw.rect(surface, pal.header, row)
            name = _fit_label(self._row_font, f"{idx + 1}. {shot.display_name}", col_left - col_name - 12)
            surface.blit(self._row_font.render(name, True, pal.text), (col_name, y + 2))
            for side, x in ((Side.LEFT, col_left), (Side.RIGHT, col_right)):
                selected = idx == self._row and side is self._side
                text = format_percent(shot.value(side))
                cell = pygame.Rect(x - 6, y, 90, row_h - 4)
                if selected:
                    pygame.draw.rect(surface, pal.active_bg, cell)
                color = pal.active_text if selected else pal.text
                surface.blit(self._row_font.render(text, True, color), (x, y + 2))
            y += row_h

        shot_id = self._current_id()
        hint = "" if shot_id is None else _free_range_text(self._sequence, shot_id, self._side)
        if hint:
            surface.blit(self._small_font.render(hint, True, pal.muted), (content.x + 12, content.bottom - 72))
        if self._message:
            msg = self._small_font.render(self._message, True, pal.bad)
            surface.blit(msg, (content.x + 12, content.bottom - 48))

        _draw_footer(
            surface,
            pal,
            content,
            "Arrows: pick  Shift+Up/Down: reorder  +/-: nudge  N: not possible  "
            "I: insert  Del: remove  E: example  Enter: practice  Esc: back",
        )


class FinalRecallScreen:
    """Enter every hidden value from memory, then grade."""

    def __init__(self, app: App, *, session: PracticeSession, on_complete: Callable[[], None]) -> None:
        self._app = app
        self._session = session
        self._on_complete = on_complete
        self._row = 0
        self._side = Side.LEFT
        self._input = ""
        self._title_font = pygame.font.Font(None, 42)
        self._row_font = pygame.font.Font(None, 30)
        self._small_font = pygame.font.Font(None, 24)

    def _shot_ids(self) -> tuple[int, ...]:
        base = self._session.base
        return () if base is None else base.shot_ids

    def _commit_input(self) -> None:
        ids = self._shot_ids()
        if self._input and ids:
            self._session.set_final_recall(ids[self._row], self._side, self._input)
        self._input = ""

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        phase = self._session.phase

        if phase is Phase.GRADED:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_ESCAPE, pygame.K_SPACE):
                self._session.finish()
                self._on_complete()
            return
        if phase is not Phase.FINAL_RECALL:
            return

        ids = self._shot_ids()
        key = event.key
        if key in (pygame.K_UP, pygame.K_DOWN, pygame.K_TAB):
            self._commit_input()
            if key == pygame.K_TAB:
                if self._side is Side.LEFT:
                    self._side = Side.RIGHT
                else:
                    self._side = Side.LEFT
                    self._row = (self._row + 1) % max(1, len(ids))
            else:
                delta = -1 if key == pygame.K_UP else 1
                self._row = max(0, min(len(ids) - 1, self._row + delta))
        elif key in (pygame.K_LEFT, pygame.K_RIGHT):
            self._commit_input()
            self._side = Side.LEFT if key == pygame.K_LEFT else Side.RIGHT
        elif key in (pygame.K_PLUS, pygame.K_EQUALS, pygame.K_KP_PLUS, pygame.K_MINUS, pygame.K_KP_MINUS):
            self._commit_input()
            if ids:
                current = self._session.state.final_recall[(ids[self._row], self._side)]
                if not current.is_not_possible:
                    delta = -1 if key in (pygame.K_MINUS, pygame.K_KP_MINUS) else 1
                    self._session.set_final_recall(ids[self._row], self._side, step_away(current, delta))
        elif key == pygame.K_n:
            self._input = ""
            if ids:
                self._session.set_final_recall(ids[self._row], self._side, NOT_POSSIBLE)
        elif key == pygame.K_BACKSPACE:
            self._input = self._input[:-1]
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if self._input:
                self._commit_input()
            else:
                self._session.grade()
        elif event.unicode and event.unicode.isdigit() and len(self._input) < 3:
            self._input += event.unicode

    def render(self, surface: pygame.Surface) -> None:
        pal = self._app.palette
        content = _draw_frame(surface, pal, "Final Recall", "RECALL", self._title_font)
        state = self._session.state
        ids = self._shot_ids()
        graded = self._session.phase in (Phase.GRADED, Phase.COMPLETE)

        col_left = content.x + int(content.w * 0.55)
        col_right = content.x + int(content.w * 0.78)
        y = content.y
        row_h = 30
        visible = max(1, (content.h - 120) // row_h)
        first = max(0, min(self._row - visible // 2, len(ids) - visible))
        for idx in range(first, min(len(ids), first + visible)):
            shot_id = ids[idx]
            name = _fit_label(self._row_font, state.labels.get(shot_id, f"Shot {shot_id}"), col_left - content.x - 24)
            surface.blit(self._row_font.render(name, True, pal.text), (content.x + 12, y))
            for side, x in ((Side.LEFT, col_left), (Side.RIGHT, col_right)):
                selected = not graded and idx == self._row and side is self._side
                value = state.final_recall.get((shot_id, side), NOT_POSSIBLE)
                text = self._input if selected and self._input else format_percent(value)
                color = pal.text
                if graded and state.hidden is not None:
                    truth = state.hidden.get(shot_id, side)
                    color = pal.good if truth == value else pal.bad
                    text = f"{format_percent(value)} ({format_percent(truth)})"
                if selected:
                    pygame.draw.rect(surface, pal.active_bg, pygame.Rect(x - 6, y - 2, 90, row_h - 2))
                    color = pal.active_text
                surface.blit(self._row_font.render(text, True, color), (x, y))
            y += row_h

        prompt_y = content.bottom - 100
        for line in self._session.current_prompt().splitlines():
            surface.blit(self._small_font.render(line, True, pal.text), (content.x + 12, prompt_y))
            prompt_y += 22

        hint = (
            "Enter: done"
            if graded
            else "Arrows/Tab: move  Digits+Enter: set  +/-: nudge  N: not possible  Enter: grade"
        )
        _draw_footer(surface, pal, content, hint)


class PracticeScreen:
    def __init__(self, app: App, *, session_factory: Callable[[], PracticeSession], sequence: ShotSequence) -> None:
        self._app = app
        self._session = session_factory()
        self._input = ""
        self._pick = 0
        self._error = ""
        self._title_font = pygame.font.Font(None, 42)
        self._big_font = pygame.font.Font(None, 72)
        self._mid_font = pygame.font.Font(None, 40)
        self._small_font = pygame.font.Font(None, 24)
        self._show_truth = app.storage.get_preference("show_truth", False)
        self._previous = previous_session_line(app.storage.load_history())
        self._session.start(sequence)

    def _eligible(self) -> list[Selection]:
        return [Selection(shot_id, side) for shot_id, side in self._session.eligible_pairs()]

    def handle_event(self, event: pygame.event.Event) -> None:
        session = self._session
        phase = session.phase

        if event.type == pygame.MOUSEBUTTONDOWN and phase in (Phase.SHOWING_FEEDBACK, Phase.AWAITING_CONTINUE):
            session.advance()
            return
        if event.type != pygame.KEYDOWN:
            return

        key = event.key
        # Emergency exit: abandon the session from any state.
        if key == pygame.K_F12 or key == pygame.K_ESCAPE:
            session.reset()
            self._app.pop()
            return
        if key == pygame.K_f and phase in PRACTICE_PHASES:
            self._input = ""
            session.end_session()
            self._app.push(FinalRecallScreen(self._app, session=session, on_complete=self._complete))
            return

        if phase is Phase.SELECTING:
            options = self._eligible()
            if key in (pygame.K_UP, pygame.K_DOWN) and options:
                delta = -1 if key == pygame.K_UP else 1
                self._pick = (self._pick + delta) % len(options)
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER) and options:
                choice = options[self._pick % len(options)]
                session.select(choice.shot_id, choice.side)
            return

        if phase is Phase.AWAITING_GUESS:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                if self._input and session.submit_guess(self._input):
                    self._input = ""
                    self._error = ""
                    self._app.storage.save_history(session.history())
                else:
                    self._error = "Enter a percentage (5-95) or N for not possible."
            elif key == pygame.K_BACKSPACE:
                self._input = self._input[:-1]
            elif key == pygame.K_n:
                self._input = "NP"
            elif event.unicode and event.unicode.isdigit():
                if self._input == "NP":
                    self._input = ""
                if len(self._input) < 3:
                    self._input += event.unicode
            return

        if phase in (Phase.SHOWING_FEEDBACK, Phase.AWAITING_CONTINUE):
            session.advance()

    def _complete(self) -> None:
        summary = session_summary(self._session)
        self._app.storage.save_history(self._session.history())
        if self._app.db_path is not None:
            try:
                record_practice_session(db_path=self._app.db_path, summary=summary, app_version=APP_VERSION)
            except (sqlite3.Error, OSError) as exc:
                logger.warning("could not record practice session: {}", exc)
        # Pop the recall screen and this one.
        self._app.pop()
        self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        session = self._session
        session.update()
        snap = session.snapshot()
        pal = self._app.palette
        content = _draw_frame(surface, pal, "Practice", snap.mode.value.upper(), self._title_font)

        stats = f"Attempts: {snap.attempt_count}   Points: {snap.total_points}"
        surface.blit(self._small_font.render(stats, True, pal.muted), (content.x + 12, content.y))
        if self._previous and snap.attempt_count == 0:
            recap = self._small_font.render(self._previous, True, pal.muted)
            surface.blit(recap, (content.x + 12, content.y + 22))

        mid_y = content.y + 48
        if snap.phase is Phase.SELECTING:
            options = self._eligible()
            surface.blit(self._mid_font.render("Choose a target", True, pal.text), (content.x + 12, mid_y))
            y = mid_y + 44
            for idx, option in enumerate(options[:10]):
                selected = idx == self._pick % max(1, len(options))
                color = pal.active_text if selected else pal.text
                row = pygame.Rect(content.x + 12, y, content.w - 24, 26)
                if selected:
                    pygame.draw.rect(surface, pal.active_bg, row)
                surface.blit(self._small_font.render(session.target_label(option), True, color), (row.x + 6, y + 4))
                y += 28
        else:
            target = self._mid_font.render(snap.target_label, True, pal.text)
            surface.blit(target, target.get_rect(midtop=(content.centerx, mid_y)))

        if snap.phase is Phase.AWAITING_GUESS:
            box = pygame.Rect(0, 0, 220, 76)
            box.center = (content.centerx, content.centery + 10)
            pygame.draw.rect(surface, pal.header, box)
            pygame.draw.rect(surface, pal.border, box, 2)
            shown = f"{self._input}%" if self._input and self._input != "NP" else (self._input or "_")
            val = self._big_font.render(shown, True, pal.text)
            surface.blit(val, val.get_rect(center=box.center))
            if self._error:
                err = self._small_font.render(self._error, True, pal.bad)
                surface.blit(err, err.get_rect(midtop=(content.centerx, box.bottom + 10)))
            if self._show_truth and snap.selection is not None:
                hidden = session.hidden
                if hidden is not None:
                    truth = hidden.get(snap.selection.shot_id, snap.selection.side)
                    peek = self._small_font.render(f"truth {format_percent(truth)}", True, pal.muted)
                    surface.blit(peek, (content.right - peek.get_width() - 12, content.y))

        if snap.phase in (Phase.SHOWING_FEEDBACK, Phase.AWAITING_CONTINUE) and snap.last_attempt is not None:
            rec = snap.last_attempt
            colour = getattr(pal, SEVERITY_COLOURS[rec.severity.value])
            verdict = self._big_font.render(snap.prompt.split("  ")[0], True, colour)
            surface.blit(verdict, verdict.get_rect(center=(content.centerx, content.centery)))
            detail = f"You: {format_percent(rec.guess)}   Truth: {format_percent(rec.truth)}   +{rec.points}"
            if rec.adjustment_quality is not None:
                detail += f"   adjustment: {rec.adjustment_quality.value.replace('_', ' ')}"
            det = self._small_font.render(detail, True, pal.text)
            surface.blit(det, det.get_rect(midtop=(content.centerx, content.centery + 44)))
            if snap.feedback_remaining_s is not None:
                bar = pygame.Rect(content.x + 40, content.centery + 80, content.w - 80, 6)
                pygame.draw.rect(surface, pal.header, bar)
                frac = min(1.0, snap.feedback_remaining_s / 1.8)
                pygame.draw.rect(surface, colour, pygame.Rect(bar.x, bar.y, int(bar.w * frac), bar.h))

        if snap.phase is Phase.SELECTING:
            hint = "Up/Down: pick  Enter: choose  F: final recall  Esc: quit"
        elif snap.phase is Phase.AWAITING_GUESS:
            hint = "Digits: guess  N: not possible  Enter: submit  F: final recall  Esc: quit"
        else:
            hint = "Any key/click: continue  F: final recall  Esc: quit"
        _draw_footer(surface, pal, content, hint)


class SettingsScreen:
    """Session settings and display preferences, saved on every change."""

    DRIFT_MAG_STEP = 0.5
    DRIFT_MAG_MAX = 10.0
    ROWS = ("mode", "drift_every", "drift_magnitude_steps", "initial_offset_steps", "seeded", "show_truth", "dark_mode")
    LABELS = {
        "mode": "Target selection",
        "drift_every": "Drift every N attempts (0 = off)",
        "drift_magnitude_steps": "Drift magnitude (5% steps)",
        "initial_offset_steps": "Initial offset (5% steps)",
        "seeded": "Seeded random",
        "show_truth": "Show truth while guessing",
        "dark_mode": "Dark mode",
    }

    def __init__(self, app: App) -> None:
        self._app = app
        self._row = 0
        self._title_font = pygame.font.Font(None, 42)
        self._row_font = pygame.font.Font(None, 30)
        self._config = app.storage.load_config()
        self._prefs = {name: app.storage.get_preference(name, False) for name in ("show_truth", "dark_mode")}

    def _value_text(self, name: str, config: SessionConfig) -> str:
        if name == "mode":
            return config.mode.value.capitalize()
        if name in ("show_truth", "dark_mode"):
            return "On" if self._prefs[name] else "Off"
        value = getattr(config, name)
        if isinstance(value, bool):
            return "On" if value else "Off"
        if isinstance(value, float):
            return f"{value:g}"
        return str(value)

    def _change(self, delta: int) -> None:
        storage = self._app.storage
        name = self.ROWS[self._row]
        if name in ("show_truth", "dark_mode"):
            self._prefs[name] = not self._prefs[name]
            storage.set_preference(name, self._prefs[name])
            self._app.refresh_preferences()
            return
        config = self._config
        if name == "mode":
            mode = SelectionMode.MANUAL if config.mode is SelectionMode.RANDOM else SelectionMode.RANDOM
            config = replace(config, mode=mode)
        elif name == "seeded":
            config = replace(config, seeded=not config.seeded)
        elif name == "drift_every":
            config = replace(config, drift_every=max(0, min(50, config.drift_every + delta)))
        elif name == "drift_magnitude_steps":
            magnitude = config.drift_magnitude_steps + delta * self.DRIFT_MAG_STEP
            config = replace(config, drift_magnitude_steps=max(0.0, min(self.DRIFT_MAG_MAX, magnitude)))
        elif name == "initial_offset_steps":
            config = replace(config, initial_offset_steps=max(0, min(4, config.initial_offset_steps + delta)))
        self._config = config
        storage.save_config(config)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        if key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
        elif key in (pygame.K_UP, pygame.K_DOWN):
            delta = -1 if key == pygame.K_UP else 1
            self._row = (self._row + delta) % len(self.ROWS)
        elif key in (pygame.K_LEFT, pygame.K_MINUS, pygame.K_KP_MINUS):
            self._change(-1)
        elif key in (pygame.K_RIGHT, pygame.K_PLUS, pygame.K_EQUALS, pygame.K_KP_PLUS, pygame.K_RETURN):
            self._change(1)

    def render(self, surface: pygame.Surface) -> None:
        pal = self._app.palette
        content = _draw_frame(surface, pal, "Settings", "SETTINGS", self._title_font)
        config = self._config
        y = content.y + 8
        for idx, name in enumerate(self.ROWS):
            selected = idx == self._row
            row = pygame.Rect(content.x + 12, y, content.w - 24, 34)
            pygame.draw.rect(surface, pal.active_bg if selected else pal.header, row)
            color = pal.active_text if selected else pal.text
            surface.blit(self._row_font.render(self.LABELS[name], True, color), (row.x + 10, row.y + 6))
            val = self._row_font.render(self._value_text(name, config), True, color)
            surface.blit(val, (row.right - val.get_width() - 10, row.y + 6))
            y += 42
        _draw_footer(surface, pal, content, "Up/Down: pick  Left/Right: change  Esc: back")


def _init_joysticks() -> None:
    # Safe on platforms with no joystick support.
    try:
        count = pygame.joystick.get_count()
    except pygame.error:
        return
    for idx in range(count):
        try:
            pygame.joystick.Joystick(idx).init()
        except pygame.error:
            continue


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()
    _init_joysticks()

    pygame.display.set_caption("Pinball Accuracy Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    db_path = default_db_path()
    storage = TrainerStorage(SqliteKeyValueStore(db_path))
    app = App(surface=surface, font=font, storage=storage, db_path=db_path)

    sequence = storage.load_shots()
    real_clock = RealClock()

    def open_practice() -> None:
        config = storage.load_config()
        # Unseeded sessions still get an explicit seed so the results table can replay them.
        seed = None if config.seeded else new_seed()
        try:
            screen = PracticeScreen(
                app,
                session_factory=lambda: build_practice_session(clock=real_clock, config=config, seed=seed),
                sequence=sequence,
            )
        except ValueError as exc:
            logger.info("practice not started: {}", exc)
            return
        app.push(screen)

    def open_setup() -> None:
        app.push(SetupScreen(app, sequence=sequence, on_start=open_practice))

    main_items = [
        MenuItem("Shot Setup", open_setup),
        MenuItem("Practice", open_practice),
        MenuItem("Settings", lambda: app.push(SettingsScreen(app))),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Pinball Accuracy Trainer", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
