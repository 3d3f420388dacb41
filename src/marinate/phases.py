"""Phase policy: per-phase prompt construction for marination cycles.

Pure functions from (phase, bounded history) to a prompt spec and response
schema. Nothing here reads or writes persisted state.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Sequence

from .models.phase import NotePhase
from .models.state import HistoryEntry
from .models.suggestion import SuggestionType

# Version constant - bump when prompt wording or response contract changes
PROMPT_VERSION = "v1"

MIN_SUGGESTIONS = 2
MAX_SUGGESTIONS_PER_CYCLE = 4

_CONTEXT_FIELD = {"type": "string", "description": "~50 characters of note text on this side of the span"}

# Type-specific required fields for each suggestion type, plus optional ones.
TYPE_FIELDS: dict[SuggestionType, dict[str, Any]] = {
    SuggestionType.REWRITE: {
        "required": ["original", "replacement"],
        "properties": {
            "original": {"type": "string", "description": "Exact text from the note"},
            "replacement": {"type": "string"},
            "contextBefore": _CONTEXT_FIELD,
            "contextAfter": _CONTEXT_FIELD,
        },
    },
    SuggestionType.COMPRESSION: {
        "required": ["original", "replacement"],
        "properties": {
            "original": {"type": "string", "description": "Exact text from the note"},
            "replacement": {"type": "string"},
            "contextBefore": _CONTEXT_FIELD,
            "contextAfter": _CONTEXT_FIELD,
        },
    },
    SuggestionType.APPEND: {
        "required": ["text"],
        "properties": {"text": {"type": "string", "description": "Text to add at the end"}},
    },
    SuggestionType.INSERT: {
        "required": ["text"],
        "properties": {
            "text": {"type": "string"},
            "afterContext": {"type": "string", "description": "~50 characters of note text the insertion follows"},
        },
    },
    SuggestionType.QUESTION: {
        "required": ["text"],
        "properties": {
            "text": {"type": "string", "description": "A pointed question that forces a decision"},
            "choices": {"type": "array", "items": {"type": "string"}, "maxItems": 4},
        },
    },
    SuggestionType.CRITIQUE: {
        "required": ["severity", "targetText", "critiqueText"],
        "properties": {
            "severity": {"type": "string", "enum": ["strong", "weak", "cut", "rethink"]},
            "targetText": {"type": "string", "description": "Exact text from the note"},
            "critiqueText": {"type": "string"},
            "contextBefore": _CONTEXT_FIELD,
            "contextAfter": _CONTEXT_FIELD,
        },
    },
    SuggestionType.PROMOTE: {
        "required": ["title", "description"],
        "properties": {"title": {"type": "string"}, "description": {"type": "string"}},
    },
    SuggestionType.ADVANCE_PHASE: {
        "required": ["nextPhase"],
        "properties": {"nextPhase": {"type": "string", "enum": [p.value for p in NotePhase]}},
    },
}


@dataclass(frozen=True)
class PhaseGuide:
    """Phase-specific goal, tactics and the condition for moving on."""

    title: str
    goal: str
    tactics: tuple[str, ...]
    advance_when: str | None


PHASE_GUIDES: dict[NotePhase, PhaseGuide] = {
    NotePhase.INGEST: PhaseGuide(
        title="INGEST - Extract the core vector",
        goal="Extract who benefits, what changes, why now, and which assumption is embedded. "
        "Reframe the idea in sharper, more strategic terms.",
        tactics=(
            'Use "rewrite" to reframe the idea as a cost cutter, a leverage multiplier, a compounding engine.',
            'Use "question" to force clarity on who benefits and what changes for them tomorrow.',
            'Use "critique" with severity "weak" on vague language that hides assumptions.',
            'Use "compression" when the idea is scattered.',
            "Do not expand yet. Sharpen first.",
        ),
        advance_when="the core intent is clear and the idea has been reframed at least once",
    ),
    NotePhase.EXPAND: PhaseGuide(
        title="EXPAND - Generate structured contrast",
        goal="Expand the idea across strategic axes, then force elimination.",
        tactics=(
            "Explore narrow vs broad audience, manual-first vs automated, workflow vs outcome, fast to ship vs hard to copy.",
            'Use "insert" or "append" for contrasting directions the note has not considered.',
            'Use "question" to force a cut between two directions.',
            'Use "critique" with severity "cut" on directions that should go.',
            "Expansion without elimination is drift.",
        ),
        advance_when="alternatives have been explored and at least one direction eliminated",
    ),
    NotePhase.SHAPE: PhaseGuide(
        title="SHAPE - Define product character",
        goal="Extract the identity of the idea: core loop, signature move, non-goals.",
        tactics=(
            'Use "question" to surface the one thing this does that nothing else does.',
            'Use "question" to name two things it will not optimize.',
            'Use "insert" to add a missing core loop or dependency surface.',
            'Use "critique" with severity "rethink" on shaky identity assumptions.',
            "Character, not feature lists.",
        ),
        advance_when="core loop, signature move and non-goals are all defined",
    ),
    NotePhase.SCOPE: PhaseGuide(
        title="SCOPE - Apply constraint pressure",
        goal="Scope the idea through three filters: what one person can build in 14 days, "
        "which single feature proves it works, what would be regretted if excluded.",
        tactics=(
            'Use "question" to apply each filter directly.',
            'Use "rewrite" to restate the idea as a one-feature product.',
            'Use "critique" with severity "cut" on features that fail the filters.',
            'Use "insert" to add a concrete MVP definition.',
            "A feature must survive at least two filters.",
        ),
        advance_when="scope is tight and an MVP is defined",
    ),
    NotePhase.COMMIT: PhaseGuide(
        title="COMMIT - Define forward motion",
        goal="Turn the scoped idea into testable action: three testable claims, one risky bet, "
        "one fast validation path, one thing to fake manually, one thing to ignore for 30 days.",
        tactics=(
            'Use "insert" or "append" for testable claims and validation paths.',
            'Use "question" to surface the bet that could kill the idea.',
            'Use "critique" with severity "strong" to affirm solid commitments.',
            'Use "promote" once the idea is sharp, scoped and has a forward path.',
            'This is the final phase. Never suggest "advancePhase".',
        ),
        advance_when=None,
    ),
}


@dataclass(frozen=True)
class PromptSpec:
    """Everything needed to assemble one marination prompt."""

    phase: NotePhase
    instructions: str
    advance_when: str | None
    history_lines: tuple[str, ...]
    response_schema: dict[str, Any] = field(default_factory=dict)
    version: str = PROMPT_VERSION


def history_line(entry: HistoryEntry) -> str:
    suggestion = entry.suggestion
    return f"- {suggestion.type.value} ({entry.outcome.value}): {suggestion.reasoning}"


def response_schema() -> dict[str, Any]:
    """JSON schema for the generator's response, shared by every phase.

    Every suggestion carries ``type`` and ``reasoning``; the remaining fields
    depend on the type. Phases steer which types to use through their
    instructions only.
    """
    variants = []
    for t in SuggestionType:
        fields = TYPE_FIELDS[t]
        variants.append(
            {
                "type": "object",
                "required": ["type", "reasoning", *fields["required"]],
                "properties": {
                    "type": {"const": t.value},
                    "reasoning": {"type": "string"},
                    **fields["properties"],
                },
            }
        )
    return {
        "type": "object",
        "required": ["suggestions"],
        "properties": {
            "suggestions": {
                "type": "array",
                "minItems": MIN_SUGGESTIONS,
                "maxItems": MAX_SUGGESTIONS_PER_CYCLE,
                "items": {"oneOf": variants},
            }
        },
    }


def build_prompt_spec(phase: NotePhase, recent_history: Sequence[HistoryEntry]) -> PromptSpec:
    """Build the prompt spec for a note in ``phase``."""
    guide = PHASE_GUIDES[phase]
    lines = [f"PHASE: {guide.title}", "", f"Your goal: {guide.goal}", "", "Tactics:"]
    lines.extend(f"- {t}" for t in guide.tactics)
    if guide.advance_when and phase.next is not None:
        lines.append("")
        lines.append(
            f'When {guide.advance_when}, include an "advancePhase" suggestion with nextPhase "{phase.next.value}".'
        )
        lines.append('Save "promote" for the commit phase.')

    return PromptSpec(
        phase=phase,
        instructions="\n".join(lines),
        advance_when=guide.advance_when,
        history_lines=tuple(history_line(e) for e in recent_history),
        response_schema=response_schema(),
    )


def _type_field_summary(schema: dict[str, Any]) -> list[str]:
    out = []
    for variant in schema["properties"]["suggestions"]["items"]["oneOf"]:
        name = variant["properties"]["type"]["const"]
        extra = [k for k in variant["properties"] if k not in ("type", "reasoning")]
        out.append(f'- "{name}": {", ".join(extra)}')
    return out


def render_prompt(spec: PromptSpec, note_text: str, round_number: int) -> str:
    """Assemble the prompt sent to the generator.

    Args:
        spec: Prompt spec from build_prompt_spec()
        note_text: Current note content
        round_number: 1-based round within the current phase
    """
    parts = [
        "You are a sharp thinking partner reading a rough note. "
        "Apply pressure that pushes the thinking forward. Do not polish prose, do not be generic, "
        "and prefer a concrete direction over an open-ended question.",
        "",
        f"Current phase: {spec.phase.value.upper()} (round {round_number})",
        "",
        spec.instructions,
        "",
        'Return ONLY a JSON object with a "suggestions" array of '
        f"{MIN_SUGGESTIONS}-{MAX_SUGGESTIONS_PER_CYCLE} objects. "
        'Every suggestion MUST have "type" and "reasoning"; suggestions without them are dropped.',
        "Additional fields per type:",
        *_type_field_summary(spec.response_schema),
        "",
        "JSON schema:",
        json.dumps(spec.response_schema, separators=(",", ":")),
        "",
        "--- NOTE ---",
        note_text,
        "--- END NOTE ---",
    ]
    if spec.history_lines:
        parts.extend(["", "--- HISTORY ---", *spec.history_lines, "--- END HISTORY ---"])
        parts.append(
            "The user has seen the above. Do not repeat rejected suggestions. "
            "Build on accepted ones, or try a different angle."
        )
    return "\n".join(parts)
