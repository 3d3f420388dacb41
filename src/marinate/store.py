"""Marination state persistence and note enumeration.

The engine consumes two narrow interfaces: MarinationStore (per-note state
plus raw note text) and NoteDirectory (which notes exist and their status).
Both implementations here serialize writes per call, so a load that follows
a save always observes it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .models.phase import NoteStatus
from .models.state import MAX_HISTORY_ENTRIES, MarinationState

logger = logging.getLogger(__name__)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _capped(state: MarinationState) -> MarinationState:
    capped = state.model_copy(deep=True)
    if len(capped.history) > MAX_HISTORY_ENTRIES:
        capped.history = capped.history[-MAX_HISTORY_ENTRIES:]
    return capped


@dataclass(frozen=True)
class NoteInfo:
    """One note as enumerated by the host for a tick."""

    id: str
    status: NoteStatus
    text_length: int


class MarinationStore(ABC):
    """Per-note persisted marination state and raw note text."""

    @abstractmethod
    def load_state(self, note_id: str) -> Optional[MarinationState]:
        pass

    @abstractmethod
    def save_state(self, state: MarinationState, note_id: str) -> None:
        """Persist ``state``; history is capped on the way in."""
        pass

    @abstractmethod
    def delete_state(self, note_id: str) -> None:
        pass

    @abstractmethod
    def load_note_text(self, note_id: str) -> Optional[str]:
        pass


class NoteDirectory(ABC):
    """Host-side enumeration of notes and their marination status."""

    @abstractmethod
    def list_activatable_notes(self) -> list[NoteInfo]:
        pass

    @abstractmethod
    def set_status(self, note_id: str, status: NoteStatus) -> None:
        pass


class InMemoryMarinationStore(MarinationStore, NoteDirectory):
    """Dict-backed store and note directory."""

    def __init__(self) -> None:
        self.states: dict[str, MarinationState] = {}
        self.note_texts: dict[str, str] = {}
        self.statuses: dict[str, NoteStatus] = {}
        self.deleted_ids: list[str] = []

    def add_note(self, note_id: str, text: str, status: NoteStatus = NoteStatus.IDLE) -> None:
        self.note_texts[note_id] = text
        self.statuses[note_id] = status

    def remove_note(self, note_id: str) -> None:
        self.note_texts.pop(note_id, None)
        self.statuses.pop(note_id, None)

    def load_state(self, note_id: str) -> Optional[MarinationState]:
        state = self.states.get(note_id)
        return state.model_copy(deep=True) if state is not None else None

    def save_state(self, state: MarinationState, note_id: str) -> None:
        self.states[note_id] = _capped(state)

    def delete_state(self, note_id: str) -> None:
        self.states.pop(note_id, None)
        self.deleted_ids.append(note_id)

    def load_note_text(self, note_id: str) -> Optional[str]:
        return self.note_texts.get(note_id)

    def list_activatable_notes(self) -> list[NoteInfo]:
        return [
            NoteInfo(id=note_id, status=self.statuses.get(note_id, NoteStatus.IDLE), text_length=len(text))
            for note_id, text in self.note_texts.items()
        ]

    def set_status(self, note_id: str, status: NoteStatus) -> None:
        if note_id in self.note_texts:
            self.statuses[note_id] = status


class SqliteMarinationStore(MarinationStore, NoteDirectory):
    """SQLite-backed store holding notes, their status, and marination state.

    One connection per call; every write commits before returning.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS notes(
                  note_id TEXT PRIMARY KEY,
                  text TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'idle',
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS marination_state(
                  note_id TEXT PRIMARY KEY,
                  state_json TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );
                """
            )
            conn.commit()
        finally:
            conn.close()

    # Notes (host side)

    def save_note_text(self, note_id: str, text: str) -> None:
        now = _iso_now()
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO notes(note_id, text, status, created_at, updated_at)
                    VALUES(?, ?, 'idle', ?, ?)
                    ON CONFLICT(note_id) DO UPDATE SET
                      text=excluded.text,
                      updated_at=excluded.updated_at
                    """,
                    (note_id, text, now, now),
                )
        finally:
            conn.close()

    def delete_note(self, note_id: str) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM notes WHERE note_id = ?", (note_id,))
        finally:
            conn.close()

    def get_status(self, note_id: str) -> Optional[NoteStatus]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT status FROM notes WHERE note_id = ?", (note_id,)).fetchone()
            return NoteStatus(str(row["status"])) if row is not None else None
        finally:
            conn.close()

    def list_activatable_notes(self) -> list[NoteInfo]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT note_id, status, length(text) AS text_length FROM notes ORDER BY created_at ASC, note_id ASC"
            ).fetchall()
            return [
                NoteInfo(id=str(r["note_id"]), status=NoteStatus(str(r["status"])), text_length=int(r["text_length"]))
                for r in rows
            ]
        finally:
            conn.close()

    def set_status(self, note_id: str, status: NoteStatus) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "UPDATE notes SET status = ?, updated_at = ? WHERE note_id = ?",
                    (status.value, _iso_now(), note_id),
                )
        finally:
            conn.close()

    def load_note_text(self, note_id: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT text FROM notes WHERE note_id = ?", (note_id,)).fetchone()
            return str(row["text"]) if row is not None else None
        finally:
            conn.close()

    # Marination state

    def load_state(self, note_id: str) -> Optional[MarinationState]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT state_json FROM marination_state WHERE note_id = ?", (note_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return MarinationState.model_validate_json(str(row["state_json"]))
        except ValidationError as e:
            logger.warning("Ignoring unreadable marination state for note %s: %s", note_id, e)
            return None

    def save_state(self, state: MarinationState, note_id: str) -> None:
        payload = _json_dumps(_capped(state).to_wire())
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO marination_state(note_id, state_json, updated_at)
                    VALUES(?, ?, ?)
                    ON CONFLICT(note_id) DO UPDATE SET
                      state_json=excluded.state_json,
                      updated_at=excluded.updated_at
                    """,
                    (note_id, payload, _iso_now()),
                )
        finally:
            conn.close()

    def delete_state(self, note_id: str) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM marination_state WHERE note_id = ?", (note_id,))
        finally:
            conn.close()

    def list_state_ids(self) -> list[str]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT note_id FROM marination_state ORDER BY note_id ASC").fetchall()
            return [str(r["note_id"]) for r in rows]
        finally:
            conn.close()
