"""Append-only journal of marination engine events."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console

from .engine import EngineListener
from .generation.request import ErrorResult
from .models.journal import JournalEvent, JournalEventType
from .models.phase import NotePhase, NoteStatus
from .models.state import SuggestionOutcome
from .models.suggestion import Suggestion

console = Console()


class JournalWriter:
    """Append-only journal writer.

    Writes events to <data_dir>/journal.jsonl.
    Never truncates or rewrites; only appends.
    """

    def __init__(self, journal_path: Path, run_id: str | None = None):
        """Initialize journal writer.

        Args:
            journal_path: Path to journal.jsonl file
            run_id: Optional run ID; if None, generates a new uuid4
        """
        self.journal_path = journal_path
        self.run_id = run_id or str(uuid.uuid4())

    def append_event(
        self,
        event_type: JournalEventType,
        payload: dict,
        note_id: str | None = None,
    ) -> JournalEvent:
        """Append an event to the journal.

        Args:
            event_type: Type of event
            payload: Event-specific data
            note_id: Optional note ID reference

        Returns:
            The created JournalEvent
        """
        self.journal_path.parent.mkdir(parents=True, exist_ok=True)

        event = JournalEvent(
            event_id=str(uuid.uuid4()),
            run_id=self.run_id,
            ts=datetime.now(timezone.utc),
            event_type=event_type,
            note_id=note_id,
            payload=payload,
        )

        # JSONL: one JSON object per line
        with open(self.journal_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.model_dump(mode="json", by_alias=True)) + "\n")

        return event


def read_journal_tail(journal_path: Path, n: int = 20) -> list[JournalEvent]:
    """Read the last N events from the journal.

    Malformed lines are skipped with a warning.
    """
    if not journal_path.exists():
        return []

    events: list[JournalEvent] = []
    malformed_count = 0

    with open(journal_path, "r", encoding="utf-8") as f:
        lines = f.readlines()

    for line in lines[-n:]:
        line = line.strip()
        if not line:
            continue

        try:
            events.append(JournalEvent.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValueError) as e:
            malformed_count += 1
            console.print(f"[yellow]Warning: Skipping malformed line: {e}[/yellow]")

    if malformed_count > 0:
        console.print(f"[yellow]Skipped {malformed_count} malformed line(s)[/yellow]")

    return events


class JournalListener(EngineListener):
    """Records engine notifications as journal events."""

    def __init__(self, writer: JournalWriter):
        self.writer = writer

    def on_cycle_started(self, note_id: str, phase: NotePhase) -> None:
        self.writer.append_event("CYCLE_STARTED", {"phase": phase.value}, note_id=note_id)

    def on_cycle_completed(self, note_id: str, added: int, expired: int) -> None:
        self.writer.append_event("CYCLE_COMPLETED", {"added": added, "expired": expired}, note_id=note_id)

    def on_status_changed(self, note_id: str, status: NoteStatus) -> None:
        self.writer.append_event("STATUS_CHANGED", {"status": status.value}, note_id=note_id)

    def on_phase_changed(self, note_id: str, phase: NotePhase) -> None:
        self.writer.append_event("PHASE_CHANGED", {"phase": phase.value}, note_id=note_id)

    def on_suggestion_resolved(self, note_id: str, suggestion: Suggestion, outcome: SuggestionOutcome) -> None:
        event_type: JournalEventType = (
            "SUGGESTION_ACCEPTED" if outcome == SuggestionOutcome.ACCEPTED else "SUGGESTION_REJECTED"
        )
        self.writer.append_event(
            event_type,
            {"suggestion_id": suggestion.id, "type": suggestion.type.value},
            note_id=note_id,
        )

    def on_error(self, note_id: str, error: ErrorResult) -> None:
        self.writer.append_event(
            "CYCLE_FAILED",
            {"kind": error.kind.value, "message": error.message},
            note_id=note_id,
        )

    def on_engine_disabled(self, message: str) -> None:
        self.writer.append_event("ENGINE_DISABLED", {"message": message})
