from __future__ import annotations

import json
import math
import os
import sqlite3
import time
from dataclasses import fields
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from .errors import StorageUnavailable
from .evaluation import AdjustmentQuality, Severity
from .percent import PercentValue, Side, parse_percent, to_json_value
from .results import SessionSummary
from .session import HISTORY_LIMIT, AttemptRecord, SelectionMode, SessionConfig
from .shot_config import export_shots, import_shots
from .shots import ShotSequence

SCHEMA_VERSION = 1
DB_PATH_ENV = "PINBALL_TRAINER_DB_PATH"

KEY_ROWS = "pinball_rows_v1"
KEY_DRIFT_EVERY = "pinball_driftEvery_v1"
KEY_DRIFT_MAG = "pinball_driftMag_v1"
KEY_INIT_RAND_STEPS = "pinball_initRandSteps_v1"
KEY_MODE = "pinball_mode_v1"
KEY_SEEDED = "pinball_useSeededRandom_v1"
KEY_ATTEMPTS = "pinball_attempts_v1"
KEY_SHOW_TRUTH = "pinball_showTruth_v1"
KEY_DARK_MODE = "pinball_darkMode_v1"

PREFERENCE_KEYS = {"show_truth": KEY_SHOW_TRUTH, "dark_mode": KEY_DARK_MODE}


class KeyValueStore(Protocol):
    """One string value per key. Both methods may raise."""

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...


class InMemoryStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".pinball_trainer.sqlite3"


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS practice_session (
                id INTEGER PRIMARY KEY,
                app_version TEXT NOT NULL,
                mode TEXT NOT NULL,
                rng_seed INTEGER,
                drift_every INTEGER NOT NULL,
                drift_magnitude_steps REAL NOT NULL,
                initial_offset_steps INTEGER NOT NULL,
                completed_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metric (
                session_id INTEGER NOT NULL REFERENCES practice_session(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (session_id, key)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS recall_attempt (
                id INTEGER PRIMARY KEY,
                session_id INTEGER NOT NULL REFERENCES practice_session(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                shot_id INTEGER NOT NULL,
                side TEXT NOT NULL,
                guess TEXT NOT NULL,
                truth TEXT NOT NULL,
                abs_error INTEGER NOT NULL,
                severity TEXT NOT NULL,
                adjustment TEXT,
                points INTEGER NOT NULL,
                submitted_at_ms INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_recall_attempt_session_seq ON recall_attempt(session_id, seq);"
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteKeyValueStore:
    """KeyValueStore backed by the ``kv`` table. Failures raise StorageUnavailable."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        try:
            conn = open_db(self._path)
            try:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable(f"read {key}: {exc}") from exc
        return None if row is None else str(row[0])

    def set(self, key: str, value: str) -> None:
        try:
            conn = open_db(self._path)
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO kv(key, value, updated_at_utc) VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                       updated_at_utc = excluded.updated_at_utc
                        """,
                        (key, value, _utc_now_iso()),
                    )
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable(f"write {key}: {exc}") from exc


def record_to_dict(record: AttemptRecord) -> dict[str, Any]:
    return {
        "index": record.index,
        "shot_id": record.shot_id,
        "side": record.side.value,
        "guess": to_json_value(record.guess),
        "truth": to_json_value(record.truth),
        "signed_error": record.signed_error,
        "abs_error": record.abs_error,
        "severity": record.severity.value,
        "label": record.label,
        "previous_guess": None if record.previous_guess is None else to_json_value(record.previous_guess),
        "previous_truth": None if record.previous_truth is None else to_json_value(record.previous_truth),
        "adjustment_quality": None if record.adjustment_quality is None else record.adjustment_quality.value,
        "points": record.points,
        "adjustment_point": record.adjustment_point,
        "submitted_at_s": record.submitted_at_s,
    }


def _optional_percent(raw: object) -> PercentValue | None:
    return None if raw is None else parse_percent(raw)


def record_from_dict(data: dict[str, Any]) -> AttemptRecord:
    """Inverse of record_to_dict. Raises KeyError/ValueError on bad data."""

    quality = data.get("adjustment_quality")
    signed = data.get("signed_error")
    return AttemptRecord(
        index=int(data["index"]),
        shot_id=int(data["shot_id"]),
        side=Side(data["side"]),
        guess=parse_percent(data["guess"]),
        truth=parse_percent(data["truth"]),
        signed_error=None if signed is None else int(signed),
        abs_error=int(data["abs_error"]),
        severity=Severity(data["severity"]),
        label=str(data.get("label", "")),
        previous_guess=_optional_percent(data.get("previous_guess")),
        previous_truth=_optional_percent(data.get("previous_truth")),
        adjustment_quality=None if quality is None else AdjustmentQuality(quality),
        points=int(data["points"]),
        adjustment_point=int(data.get("adjustment_point", 0)),
        submitted_at_s=float(data.get("submitted_at_s", 0.0)),
    )


class TrainerStorage:
    """Typed access to the persisted trainer keys.

    Every read falls back to a default and every write is best-effort: a
    broken or missing store is logged and the trainer keeps working in memory.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def _read(self, key: str) -> Any:
        try:
            raw = self._store.get(key)
        except Exception as exc:
            logger.warning("storage unavailable reading {}: {}", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("ignoring unreadable value for {}", key)
            return None

    def _write(self, key: str, value: Any) -> bool:
        try:
            self._store.set(key, json.dumps(value))
        except Exception as exc:
            logger.warning("storage unavailable writing {}: {}", key, exc)
            return False
        return True

    # --- shots -----------------------------------------------------------

    def load_shots(self) -> ShotSequence:
        payload = self._read(KEY_ROWS)
        if payload is None:
            return ShotSequence()
        return import_shots(json.dumps(payload))

    def save_shots(self, sequence: ShotSequence) -> bool:
        return self._write(KEY_ROWS, json.loads(export_shots(sequence)))

    # --- settings --------------------------------------------------------

    def load_config(self) -> SessionConfig:
        defaults = {f.name: f.default for f in fields(SessionConfig)}

        drift_every = _as_int(self._read(KEY_DRIFT_EVERY), defaults["drift_every"])
        drift_mag = _as_float(self._read(KEY_DRIFT_MAG), defaults["drift_magnitude_steps"])
        init_steps = _as_int(self._read(KEY_INIT_RAND_STEPS), defaults["initial_offset_steps"])
        raw_mode = self._read(KEY_MODE)
        seeded = self._read(KEY_SEEDED)

        try:
            mode = SelectionMode(raw_mode)
        except ValueError:
            mode = defaults["mode"]

        return SessionConfig(
            mode=mode,
            drift_every=max(0, drift_every),
            drift_magnitude_steps=max(0.0, drift_mag),
            initial_offset_steps=max(0, min(4, init_steps)),
            seeded=seeded if isinstance(seeded, bool) else defaults["seeded"],
        )

    def save_config(self, config: SessionConfig) -> bool:
        results = [
            self._write(KEY_DRIFT_EVERY, int(config.drift_every)),
            self._write(KEY_DRIFT_MAG, float(config.drift_magnitude_steps)),
            self._write(KEY_INIT_RAND_STEPS, int(config.initial_offset_steps)),
            self._write(KEY_MODE, config.mode.value),
            self._write(KEY_SEEDED, bool(config.seeded)),
        ]
        return all(results)

    # --- attempt history -------------------------------------------------

    def load_history(self) -> list[AttemptRecord]:
        payload = self._read(KEY_ATTEMPTS)
        if not isinstance(payload, list):
            return []
        try:
            records = [record_from_dict(item) for item in payload]
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            logger.warning("discarding unreadable attempt history: {}", exc)
            return []
        return records[-HISTORY_LIMIT:]

    def save_history(self, records: list[AttemptRecord] | tuple[AttemptRecord, ...]) -> bool:
        return self._write(KEY_ATTEMPTS, [record_to_dict(r) for r in list(records)[-HISTORY_LIMIT:]])

    # --- UI preferences --------------------------------------------------

    def get_preference(self, name: str, default: bool = False) -> bool:
        value = self._read(PREFERENCE_KEYS[name])
        return value if isinstance(value, bool) else default

    def set_preference(self, name: str, value: bool) -> bool:
        return self._write(PREFERENCE_KEYS[name], bool(value))


def _as_int(value: object, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return int(value)


def _as_float(value: object, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return float(value)


def record_practice_session(*, db_path: Path, summary: SessionSummary, app_version: str) -> int:
    """
    Store a finished session:
      practice_session -> metric + recall_attempt
    """
    conn = open_db(db_path)
    try:
        return _insert_session(conn=conn, summary=summary, app_version=app_version)
    finally:
        conn.close()


def _insert_session(*, conn: sqlite3.Connection, summary: SessionSummary, app_version: str) -> int:
    with conn:
        cur = conn.execute(
            """
            INSERT INTO practice_session(
                app_version, mode, rng_seed, drift_every,
                drift_magnitude_steps, initial_offset_steps, completed_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                app_version,
                summary.mode,
                summary.seed,
                int(summary.drift_every),
                float(summary.drift_magnitude_steps),
                int(summary.initial_offset_steps),
                _utc_now_iso(),
            ),
        )
        session_id = int(cur.lastrowid)

        mean_err = "" if summary.mean_abs_error is None else f"{summary.mean_abs_error:.3f}"
        median_err = "" if summary.median_abs_error is None else f"{summary.median_abs_error:.3f}"
        adj = "" if summary.adjustment_accuracy is None else f"{summary.adjustment_accuracy:.6f}"
        metrics = {
            "attempted": str(summary.attempted),
            "perfect": str(summary.perfect),
            "total_points": str(summary.total_points),
            "mean_abs_error": mean_err,
            "median_abs_error": median_err,
            "adjustment_accuracy": adj,
            "drift_count": str(summary.drift_count),
            "final_score": "" if summary.final_score is None else str(summary.final_score),
        }
        for k, v in metrics.items():
            conn.execute("INSERT INTO metric(session_id, key, value) VALUES (?, ?, ?)", (session_id, k, v))

        for r in summary.attempts:
            conn.execute(
                """
                INSERT INTO recall_attempt(
                    session_id, seq, shot_id, side, guess, truth, abs_error,
                    severity, adjustment, points, submitted_at_ms
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    int(r.index),
                    int(r.shot_id),
                    r.side.value,
                    str(to_json_value(r.guess)),
                    str(to_json_value(r.truth)),
                    int(r.abs_error),
                    r.severity.value,
                    None if r.adjustment_quality is None else r.adjustment_quality.value,
                    int(r.points),
                    int(round(r.submitted_at_s * 1000.0)),
                ),
            )

    return session_id
