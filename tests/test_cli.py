"""Smoke tests for the marinate CLI."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from marinate.cli import app
from marinate.journal import read_journal_tail
from marinate.models import NoteStatus, SuggestionType
from marinate.store import SqliteMarinationStore

NOTE = (
    "A tool that watches rough notes and nudges them toward a sharper idea. "
    "It should ask hard questions instead of polishing prose"
)


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setenv("MARINATE_GENERATOR", "fake")
    monkeypatch.setenv("MARINATE_PROMPT_GRACE", "0")
    monkeypatch.delenv("MARINATE_DATA_DIR", raising=False)
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path: Path, runner) -> Path:
    data_dir = tmp_path / "data"
    result = runner.invoke(app, ["--data-dir", str(data_dir), "init"])
    assert result.exit_code == 0, result.output
    return data_dir


def _invoke(runner, data_dir: Path, *args: str):
    return runner.invoke(app, ["--data-dir", str(data_dir), *args])


def test_init_creates_database_and_config(data_dir: Path):
    assert (data_dir / "marination.sqlite").exists()
    assert (data_dir / "config.toml").exists()


def test_commands_require_init(runner, tmp_path: Path):
    result = _invoke(runner, tmp_path / "nowhere", "status")
    assert result.exit_code == 1
    assert "marinate init" in result.output


def test_marinate_accept_and_apply(runner, data_dir: Path):
    assert _invoke(runner, data_dir, "add-note", NOTE, "--id", "n1").exit_code == 0
    assert _invoke(runner, data_dir, "activate", "n1").exit_code == 0

    result = _invoke(runner, data_dir, "tick")
    assert result.exit_code == 0, result.output

    store = SqliteMarinationStore(data_dir / "marination.sqlite")
    state = store.load_state("n1")
    assert state.marination_count == 1
    append = next(s for s in state.suggestions if s.type == SuggestionType.APPEND)

    listing = _invoke(runner, data_dir, "suggestions", "n1", "--json")
    assert listing.exit_code == 0
    assert append.id in listing.output

    result = _invoke(runner, data_dir, "accept", "n1", append.id[:8])
    assert result.exit_code == 0, result.output
    assert store.load_note_text("n1").endswith("\n" + append.content.text)
    assert store.load_state("n1").has_accepted_history

    assert _invoke(runner, data_dir, "journal", "tail").exit_code == 0
    event_types = [e.event_type for e in read_journal_tail(data_dir / "journal.jsonl")]
    assert "CYCLE_COMPLETED" in event_types
    assert "SUGGESTION_ACCEPTED" in event_types


def test_reject_and_locate(runner, data_dir: Path):
    _invoke(runner, data_dir, "add-note", NOTE, "--id", "n1")
    _invoke(runner, data_dir, "activate", "n1")
    _invoke(runner, data_dir, "tick")

    store = SqliteMarinationStore(data_dir / "marination.sqlite")
    state = store.load_state("n1")
    critique = next(s for s in state.suggestions if s.type == SuggestionType.CRITIQUE)

    located = _invoke(runner, data_dir, "locate", "n1", critique.id)
    assert located.exit_code == 0, located.output
    assert "Offset" in located.output

    rejected = _invoke(runner, data_dir, "reject", "n1", critique.id)
    assert rejected.exit_code == 0
    again = _invoke(runner, data_dir, "reject", "n1", critique.id)
    assert again.exit_code == 1


def test_status_lists_notes(runner, data_dir: Path):
    _invoke(runner, data_dir, "add-note", NOTE, "--id", "n1")

    result = _invoke(runner, data_dir, "status")

    assert result.exit_code == 0
    assert "n1" in result.output
    assert "idle" in result.output


def test_edit_and_delete_note(runner, data_dir: Path):
    _invoke(runner, data_dir, "add-note", NOTE, "--id", "n1")
    store = SqliteMarinationStore(data_dir / "marination.sqlite")
    store.set_status("n1", NoteStatus.WAITING)

    assert _invoke(runner, data_dir, "edit-note", "n1", NOTE + " Edited.").exit_code == 0
    assert store.get_status("n1") == NoteStatus.IDLE

    assert _invoke(runner, data_dir, "delete-note", "n1").exit_code == 0
    assert store.load_note_text("n1") is None
    assert store.load_state("n1") is None


def test_tick_with_nothing_to_do(runner, data_dir: Path):
    result = _invoke(runner, data_dir, "tick")
    assert result.exit_code == 0
    assert "Nothing to marinate" in result.output
