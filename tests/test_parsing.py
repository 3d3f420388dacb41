"""Tests for parsing generator output into suggestions."""

from datetime import datetime, timezone

from marinate.generation import HeuristicGenerator
from marinate.models import NotePhase, SuggestionState, SuggestionType
from marinate.parsing import parse_suggestion, parse_suggestions
from marinate.phases import build_prompt_spec, render_prompt


def test_parses_every_variant():
    payload = {
        "suggestions": [
            {"type": "rewrite", "original": "a", "replacement": "b", "reasoning": "r"},
            {"type": "append", "text": "t", "reasoning": "r"},
            {"type": "insert", "text": "t", "afterContext": "a", "reasoning": "r"},
            {"type": "compression", "original": "a", "replacement": "b", "reasoning": "r"},
            {"type": "question", "text": "?", "choices": ["x"], "reasoning": "r"},
            {
                "type": "critique",
                "severity": "strong",
                "targetText": "a",
                "critiqueText": "good",
                "reasoning": "r",
            },
            {"type": "promote", "title": "T", "description": "D", "reasoning": "r"},
            {"type": "advancePhase", "nextPhase": "expand", "reasoning": "r"},
        ]
    }
    created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)

    parsed = parse_suggestions(payload, created_at=created_at)

    assert [s.type for s in parsed] == list(SuggestionType)
    assert all(s.state == SuggestionState.PENDING for s in parsed)
    assert all(s.created_at == created_at for s in parsed)
    assert parsed[-1].content.next_phase == NotePhase.EXPAND


def test_optional_fields_default():
    rewrite = parse_suggestion({"type": "rewrite", "original": "a", "replacement": "b", "reasoning": "r"})
    question = parse_suggestion({"type": "question", "text": "?", "reasoning": "r"})

    assert rewrite.content.context_before == ""
    assert rewrite.content.context_after == ""
    assert question.content.choices == []


def test_invalid_choices_are_dropped_not_the_entry():
    question = parse_suggestion({"type": "question", "text": "?", "choices": "a, b", "reasoning": "r"})
    assert question is not None
    assert question.content.choices == []


def test_incomplete_entries_are_dropped():
    payload = {
        "suggestions": [
            {"type": "append", "text": "kept", "reasoning": "r"},
            {"type": "append", "text": "no reasoning"},
            {"type": "append", "text": "bad reasoning", "reasoning": 3},
            {"type": "rewrite", "original": "a", "reasoning": "missing replacement"},
            {"type": "critique", "severity": "meh", "targetText": "a", "critiqueText": "b", "reasoning": "r"},
            {"type": "advancePhase", "nextPhase": "launch", "reasoning": "r"},
            {"type": "brainstorm", "text": "unknown", "reasoning": "r"},
            {"text": "no type", "reasoning": "r"},
            "not an object",
        ]
    }

    parsed = parse_suggestions(payload)

    assert len(parsed) == 1
    assert parsed[0].content.text == "kept"


def test_malformed_payloads_yield_nothing():
    assert parse_suggestions(None) == []
    assert parse_suggestions([]) == []
    assert parse_suggestions({"suggestions": "nope"}) == []
    assert parse_suggestions({}) == []


def test_heuristic_generator_output_parses():
    note = (
        "A journaling tool for founders. It turns daily notes into weekly decisions. "
        "It should stay local and private."
    )
    prompt = render_prompt(build_prompt_spec(NotePhase.INGEST, []), note, round_number=1)

    raw = HeuristicGenerator().suggest(prompt)
    parsed = parse_suggestions({"suggestions": raw})

    assert len(parsed) == len(raw) >= 2
    assert parsed[-1].type == SuggestionType.ADVANCE_PHASE
    assert parsed[-1].content.next_phase == NotePhase.EXPAND
