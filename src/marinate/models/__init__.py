"""Pydantic models for marinate."""

from .journal import JournalEvent, JournalEventType
from .phase import NotePhase, NoteStatus
from .state import (
    HISTORY_CONTEXT_COUNT,
    MAX_HISTORY_ENTRIES,
    MAX_SUGGESTIONS,
    HistoryEntry,
    MarinationState,
    SuggestionOutcome,
)
from .suggestion import (
    TEXT_EDIT_TYPES,
    AdvancePhaseContent,
    AppendContent,
    CompressionContent,
    CritiqueContent,
    CritiqueSeverity,
    InsertContent,
    InvalidTransitionError,
    PromoteContent,
    QuestionContent,
    RewriteContent,
    Suggestion,
    SuggestionContent,
    SuggestionState,
    SuggestionType,
)

__all__ = [
    # Phases and status
    "NotePhase",
    "NoteStatus",
    # Suggestions
    "SuggestionType",
    "SuggestionState",
    "CritiqueSeverity",
    "SuggestionContent",
    "RewriteContent",
    "AppendContent",
    "InsertContent",
    "CompressionContent",
    "QuestionContent",
    "CritiqueContent",
    "PromoteContent",
    "AdvancePhaseContent",
    "Suggestion",
    "InvalidTransitionError",
    "TEXT_EDIT_TYPES",
    # State
    "SuggestionOutcome",
    "HistoryEntry",
    "MarinationState",
    "MAX_HISTORY_ENTRIES",
    "HISTORY_CONTEXT_COUNT",
    "MAX_SUGGESTIONS",
    # Journal
    "JournalEvent",
    "JournalEventType",
]
