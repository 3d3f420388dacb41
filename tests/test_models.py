"""Tests for suggestion and marination state models."""

import pytest
from pydantic import ValidationError

from marinate.errors import MarinateError
from marinate.models import (
    MAX_HISTORY_ENTRIES,
    AdvancePhaseContent,
    AppendContent,
    CompressionContent,
    CritiqueContent,
    CritiqueSeverity,
    HistoryEntry,
    InsertContent,
    InvalidTransitionError,
    MarinationState,
    NotePhase,
    PromoteContent,
    QuestionContent,
    RewriteContent,
    Suggestion,
    SuggestionOutcome,
    SuggestionState,
    SuggestionType,
)

ALL_CONTENTS = [
    RewriteContent(original="old", replacement="new", context_before="a ", context_after=" b"),
    AppendContent(text="more"),
    InsertContent(text="inserted", after_context="anchor"),
    CompressionContent(original="long text", replacement="short"),
    QuestionContent(text="Who?", choices=["me", "you"]),
    CritiqueContent(severity=CritiqueSeverity.CUT, target_text="fluff", critique_text="Drop it"),
    PromoteContent(title="Project", description="Ship it"),
    AdvancePhaseContent(next_phase=NotePhase.SCOPE, reasoning="ready"),
]


def _entry(i: int, outcome=SuggestionOutcome.REJECTED) -> HistoryEntry:
    suggestion = Suggestion.new(AppendContent(text=f"t{i}"), reasoning=f"r{i}")
    return HistoryEntry(suggestion=suggestion, outcome=outcome)


@pytest.mark.parametrize("content", ALL_CONTENTS, ids=lambda c: c.type)
def test_suggestion_round_trips_through_wire_format(content):
    suggestion = Suggestion.new(content, reasoning="because")

    wire = suggestion.to_wire()
    restored = Suggestion.model_validate(wire)

    assert restored == suggestion
    assert wire["type"] == content.type
    assert wire["content"]["type"] == content.type
    assert "createdAt" in wire


def test_wire_uses_camel_case_keys():
    wire = Suggestion.new(ALL_CONTENTS[0], reasoning="r").to_wire()
    assert wire["content"]["contextBefore"] == "a "
    assert wire["content"]["contextAfter"] == " b"

    advance = Suggestion.new(ALL_CONTENTS[-1], reasoning="r").to_wire()
    assert advance["type"] == "advancePhase"
    assert advance["content"]["nextPhase"] == "scope"


def test_content_type_must_match_suggestion_type():
    with pytest.raises(ValidationError):
        Suggestion(type=SuggestionType.REWRITE, content=AppendContent(text="x"), reasoning="r")


def test_transition_only_from_pending():
    pending = Suggestion.new(AppendContent(text="x"), reasoning="r")

    accepted = pending.transition(SuggestionState.ACCEPTED)

    assert accepted.state == SuggestionState.ACCEPTED
    assert accepted.id == pending.id
    assert pending.state == SuggestionState.PENDING
    with pytest.raises(InvalidTransitionError):
        accepted.transition(SuggestionState.REJECTED)
    with pytest.raises(InvalidTransitionError):
        pending.transition(SuggestionState.PENDING)


def test_invalid_transition_error_hierarchy():
    assert issubclass(InvalidTransitionError, MarinateError)
    assert issubclass(InvalidTransitionError, ValueError)


def test_history_is_capped_fifo():
    state = MarinationState(note_id="n")
    entries = [_entry(i) for i in range(MAX_HISTORY_ENTRIES + 3)]

    for entry in entries:
        state.add_history_entry(entry)

    assert len(state.history) == MAX_HISTORY_ENTRIES
    assert state.history[0].id == entries[3].id
    assert state.history[-1].id == entries[-1].id


def test_recent_history_is_last_five_in_order():
    state = MarinationState(note_id="n")
    entries = [_entry(i) for i in range(7)]
    for entry in entries:
        state.add_history_entry(entry)

    assert [e.id for e in state.recent_history] == [e.id for e in entries[2:]]

    short = MarinationState(note_id="n", history=entries[:3])
    assert len(short.recent_history) == 3


def test_merge_keeps_pending_and_expires_overflow():
    pending = [Suggestion.new(AppendContent(text=f"p{i}"), reasoning="r") for i in range(5)]
    resolved = Suggestion.new(AppendContent(text="done"), reasoning="r").transition(SuggestionState.REJECTED)
    state = MarinationState(note_id="n", suggestions=[*pending, resolved])
    new = [Suggestion.new(AppendContent(text=f"n{i}"), reasoning="r") for i in range(4)]

    expired = state.merge_suggestions(new)

    assert len(state.suggestions) == 8
    assert resolved.id not in {s.id for s in state.suggestions}
    assert [s.id for s in expired] == [pending[0].id]
    assert expired[0].state == SuggestionState.EXPIRED
    assert state.suggestions[-1].id == new[-1].id


def test_has_accepted_history():
    state = MarinationState(note_id="n", history=[_entry(0)])
    assert not state.has_accepted_history
    state.add_history_entry(_entry(1, SuggestionOutcome.ACCEPTED))
    assert state.has_accepted_history


def test_state_without_phase_fields_decodes_with_defaults():
    state = MarinationState.model_validate({"noteId": "n", "marinationCount": 2})

    assert state.phase == NotePhase.INGEST
    assert state.phase_round_count == 0
    assert state.marination_count == 2


def test_state_round_trips():
    state = MarinationState(note_id="n", phase=NotePhase.COMMIT, phase_round_count=4)
    state.merge_suggestions([Suggestion.new(c, reasoning="r") for c in ALL_CONTENTS[:3]])
    state.add_history_entry(_entry(0, SuggestionOutcome.ACCEPTED))

    assert MarinationState.model_validate(state.to_wire()) == state


def test_phase_order_and_next():
    assert list(NotePhase) == [
        NotePhase.INGEST,
        NotePhase.EXPAND,
        NotePhase.SHAPE,
        NotePhase.SCOPE,
        NotePhase.COMMIT,
    ]
    assert NotePhase.INGEST.next == NotePhase.EXPAND
    assert NotePhase.COMMIT.next is None
    assert NotePhase.SHAPE > NotePhase.EXPAND
    assert NotePhase.INGEST < NotePhase.COMMIT
