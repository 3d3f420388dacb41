"""Tests for marination state stores."""

import sqlite3
from pathlib import Path

from marinate.models import (
    MAX_HISTORY_ENTRIES,
    AppendContent,
    HistoryEntry,
    MarinationState,
    NotePhase,
    NoteStatus,
    Suggestion,
    SuggestionOutcome,
)
from marinate.store import InMemoryMarinationStore, NoteInfo, SqliteMarinationStore


def _state_with_history(note_id: str, n: int) -> MarinationState:
    state = MarinationState(note_id=note_id, phase=NotePhase.SHAPE, marination_count=2)
    for i in range(n):
        suggestion = Suggestion.new(AppendContent(text=f"t{i}"), reasoning="r")
        # Bypass add_history_entry to hand the store an over-long history.
        state.history.append(HistoryEntry(suggestion=suggestion, outcome=SuggestionOutcome.REJECTED))
    return state


def test_sqlite_state_round_trip(tmp_path: Path) -> None:
    store = SqliteMarinationStore(tmp_path / "db" / "marination.sqlite")
    state = _state_with_history("n1", 2)
    state.merge_suggestions([Suggestion.new(AppendContent(text="more"), reasoning="r")])

    store.save_state(state, "n1")
    loaded = store.load_state("n1")

    assert loaded == state
    assert store.list_state_ids() == ["n1"]


def test_sqlite_save_caps_history(tmp_path: Path) -> None:
    store = SqliteMarinationStore(tmp_path / "marination.sqlite")
    state = _state_with_history("n1", MAX_HISTORY_ENTRIES + 4)

    store.save_state(state, "n1")
    loaded = store.load_state("n1")

    assert len(loaded.history) == MAX_HISTORY_ENTRIES
    assert loaded.history[-1].id == state.history[-1].id


def test_sqlite_notes_and_status(tmp_path: Path) -> None:
    store = SqliteMarinationStore(tmp_path / "marination.sqlite")
    store.save_note_text("a", "first note")
    store.save_note_text("b", "second")
    store.save_note_text("a", "first note, edited")

    store.set_status("b", NoteStatus.ACTIVE)

    assert store.list_activatable_notes() == [
        NoteInfo(id="a", status=NoteStatus.IDLE, text_length=len("first note, edited")),
        NoteInfo(id="b", status=NoteStatus.ACTIVE, text_length=len("second")),
    ]
    assert store.get_status("b") == NoteStatus.ACTIVE
    assert store.load_note_text("a") == "first note, edited"

    store.delete_note("a")
    assert store.load_note_text("a") is None
    assert [n.id for n in store.list_activatable_notes()] == ["b"]


def test_sqlite_delete_state(tmp_path: Path) -> None:
    store = SqliteMarinationStore(tmp_path / "marination.sqlite")
    store.save_state(MarinationState(note_id="n1"), "n1")

    store.delete_state("n1")

    assert store.load_state("n1") is None


def test_sqlite_unreadable_state_is_ignored(tmp_path: Path) -> None:
    db = tmp_path / "marination.sqlite"
    store = SqliteMarinationStore(db)
    with sqlite3.connect(str(db)) as conn:
        conn.execute(
            "INSERT INTO marination_state(note_id, state_json, updated_at) VALUES(?, ?, ?)",
            ("n1", '{"noteId": "n1", "phase": "launch"}', "2026-01-01T00:00:00+00:00"),
        )

    assert store.load_state("n1") is None


def test_in_memory_store_returns_copies() -> None:
    store = InMemoryMarinationStore()
    store.save_state(MarinationState(note_id="n1"), "n1")

    loaded = store.load_state("n1")
    loaded.marination_count = 9

    assert store.load_state("n1").marination_count == 0


def test_in_memory_set_status_ignores_unknown_notes() -> None:
    store = InMemoryMarinationStore()
    store.add_note("a", "text")

    store.set_status("a", NoteStatus.WAITING)
    store.set_status("ghost", NoteStatus.ACTIVE)

    assert store.statuses == {"a": NoteStatus.WAITING}
