"""Pydantic models for per-note marination state and history."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .phase import NotePhase
from .suggestion import Suggestion, SuggestionState

# Maximum number of history entries kept per note.
MAX_HISTORY_ENTRIES = 10
# Number of recent history entries sent to the generator for context.
HISTORY_CONTEXT_COUNT = 5
# Maximum number of suggestions kept per note.
MAX_SUGGESTIONS = 8


class SuggestionOutcome(str, Enum):
    """Outcome of a suggestion after user interaction."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class HistoryEntry(BaseModel):
    """A historical record of a suggestion and its outcome."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    suggestion: Suggestion = Field(description="Snapshot of the suggestion when it was resolved")
    outcome: SuggestionOutcome
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class MarinationState(BaseModel):
    """Per-note marination state, persisted by the store.

    Owned by exactly one note. Created lazily when the note is first
    activated, mutated after every generation cycle and every
    accept/reject, deleted with the note.
    """

    note_id: str = Field(alias="noteId")
    suggestions: list[Suggestion] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    last_marinated_at: datetime | None = Field(default=None, alias="lastMarinatedAt")
    marination_count: int = Field(default=0, ge=0, alias="marinationCount")
    last_user_edit_at: datetime | None = Field(default=None, alias="lastUserEditAt")
    # Older records predate phases; they load as ingest / round 0.
    phase: NotePhase = Field(default=NotePhase.INGEST)
    phase_round_count: int = Field(default=0, ge=0, alias="phaseRoundCount")

    model_config = ConfigDict(populate_by_name=True)

    def add_history_entry(self, entry: HistoryEntry) -> None:
        """Append a history entry, dropping the oldest beyond the cap."""
        self.history.append(entry)
        if len(self.history) > MAX_HISTORY_ENTRIES:
            self.history = self.history[-MAX_HISTORY_ENTRIES:]

    @property
    def recent_history(self) -> list[HistoryEntry]:
        """The most recent history entries, oldest first."""
        return self.history[-HISTORY_CONTEXT_COUNT:]

    @property
    def pending_suggestions(self) -> list[Suggestion]:
        return [s for s in self.suggestions if s.is_pending]

    @property
    def has_accepted_history(self) -> bool:
        return any(e.outcome == SuggestionOutcome.ACCEPTED for e in self.history)

    def find_suggestion(self, suggestion_id: str) -> Suggestion | None:
        for s in self.suggestions:
            if s.id == suggestion_id:
                return s
        return None

    def replace_suggestion(self, updated: Suggestion) -> None:
        self.suggestions = [updated if s.id == updated.id else s for s in self.suggestions]

    def merge_suggestions(self, new: list[Suggestion]) -> list[Suggestion]:
        """Merge freshly generated suggestions into this state.

        Existing pending suggestions are kept, non-pending ones are dropped,
        and new ones are appended. Overflow beyond the cap is expired from
        the oldest end.

        Returns:
            The suggestions expired by the cap (already in the expired state)
        """
        merged = self.pending_suggestions + list(new)
        expired: list[Suggestion] = []
        if len(merged) > MAX_SUGGESTIONS:
            overflow = len(merged) - MAX_SUGGESTIONS
            expired = [s.transition(SuggestionState.EXPIRED) for s in merged[:overflow]]
            merged = merged[overflow:]
        self.suggestions = merged
        return expired

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
