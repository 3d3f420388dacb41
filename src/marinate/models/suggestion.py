"""Pydantic models for marination suggestions.

A suggestion is one proposed edit, question, critique, or phase/artifact
action produced by a generation cycle. Its payload is a discriminated union
keyed on ``type``; each variant is its own model.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import InvalidTransitionError
from .phase import NotePhase


class SuggestionType(str, Enum):
    """Category of a suggestion."""

    REWRITE = "rewrite"
    APPEND = "append"
    INSERT = "insert"
    COMPRESSION = "compression"
    QUESTION = "question"
    CRITIQUE = "critique"
    PROMOTE = "promote"
    ADVANCE_PHASE = "advancePhase"


class CritiqueSeverity(str, Enum):
    """Severity level for critique suggestions."""

    STRONG = "strong"
    WEAK = "weak"
    CUT = "cut"
    RETHINK = "rethink"


class SuggestionState(str, Enum):
    """Lifecycle state of a suggestion."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


_WIRE = ConfigDict(populate_by_name=True, frozen=True)


class RewriteContent(BaseModel):
    """Replace an anchored span with sharper text."""

    type: Literal["rewrite"] = "rewrite"
    original: str = Field(description="Exact text from the note")
    replacement: str = Field(description="Proposed replacement text")
    context_before: str = Field(default="", alias="contextBefore")
    context_after: str = Field(default="", alias="contextAfter")

    model_config = _WIRE


class CompressionContent(BaseModel):
    """Replace an anchored span with a tighter version of itself."""

    type: Literal["compression"] = "compression"
    original: str = Field(description="Exact text from the note")
    replacement: str = Field(description="Compressed replacement text")
    context_before: str = Field(default="", alias="contextBefore")
    context_after: str = Field(default="", alias="contextAfter")

    model_config = _WIRE


class AppendContent(BaseModel):
    """Text appended at the end of the note."""

    type: Literal["append"] = "append"
    text: str

    model_config = _WIRE


class InsertContent(BaseModel):
    """Text inserted after a located anchor."""

    type: Literal["insert"] = "insert"
    text: str
    after_context: str = Field(default="", alias="afterContext")

    model_config = _WIRE


class QuestionContent(BaseModel):
    """A pointed question, optionally with concrete choices."""

    type: Literal["question"] = "question"
    text: str
    choices: list[str] = Field(default_factory=list)

    model_config = _WIRE


class CritiqueContent(BaseModel):
    """A judgement on an anchored span of the note."""

    type: Literal["critique"] = "critique"
    severity: CritiqueSeverity
    target_text: str = Field(alias="targetText")
    critique_text: str = Field(alias="critiqueText")
    context_before: str = Field(default="", alias="contextBefore")
    context_after: str = Field(default="", alias="contextAfter")

    model_config = _WIRE


class PromoteContent(BaseModel):
    """Extract the idea as an external artifact (not a text edit)."""

    type: Literal["promote"] = "promote"
    title: str
    description: str

    model_config = _WIRE


class AdvancePhaseContent(BaseModel):
    """Move the note to its next phase (not a text edit)."""

    type: Literal["advancePhase"] = "advancePhase"
    next_phase: NotePhase = Field(alias="nextPhase")
    reasoning: str = ""

    model_config = _WIRE


SuggestionContent = Annotated[
    Union[
        RewriteContent,
        AppendContent,
        InsertContent,
        CompressionContent,
        QuestionContent,
        CritiqueContent,
        PromoteContent,
        AdvancePhaseContent,
    ],
    Field(discriminator="type"),
]

# Content variants whose acceptance edits the note text.
TEXT_EDIT_TYPES = frozenset(
    {
        SuggestionType.REWRITE,
        SuggestionType.COMPRESSION,
        SuggestionType.APPEND,
        SuggestionType.INSERT,
    }
)

_ALLOWED_TRANSITIONS = {
    SuggestionState.PENDING: {
        SuggestionState.ACCEPTED,
        SuggestionState.REJECTED,
        SuggestionState.EXPIRED,
    },
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Suggestion(BaseModel):
    """A single suggestion produced by the marination engine.

    The content discriminant always equals ``type``; state moves only from
    ``pending`` to one of the terminal states.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique suggestion id (uuid4)")
    type: SuggestionType
    content: SuggestionContent
    reasoning: str = Field(description="Why this suggestion helps")
    created_at: datetime = Field(default_factory=_utc_now, alias="createdAt")
    state: SuggestionState = Field(default=SuggestionState.PENDING)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _content_matches_type(self) -> "Suggestion":
        if self.content.type != self.type.value:
            raise ValueError(
                f"Suggestion content type {self.content.type!r} does not match type {self.type.value!r}"
            )
        return self

    @classmethod
    def new(
        cls,
        content: BaseModel,
        reasoning: str,
        created_at: datetime | None = None,
    ) -> "Suggestion":
        """Create a pending suggestion whose type is derived from its content."""
        return cls(
            type=SuggestionType(content.type),
            content=content,
            reasoning=reasoning,
            created_at=created_at or _utc_now(),
        )

    @property
    def is_pending(self) -> bool:
        return self.state == SuggestionState.PENDING

    def transition(self, new_state: SuggestionState) -> "Suggestion":
        """Return a copy of this suggestion in ``new_state``.

        Raises:
            InvalidTransitionError: If the lifecycle does not allow the move
        """
        if new_state not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise InvalidTransitionError(
                f"Cannot move suggestion {self.id} from {self.state.value} to {new_state.value}"
            )
        return self.model_copy(update={"state": new_state})

    def to_wire(self) -> dict:
        """Serialize with camelCase keys for hosts and persistence."""
        return self.model_dump(mode="json", by_alias=True)
