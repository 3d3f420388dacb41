"""Pydantic model for journal events."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

JournalEventType = Literal[
    "CYCLE_STARTED",
    "CYCLE_COMPLETED",
    "CYCLE_FAILED",
    "STATUS_CHANGED",
    "PHASE_CHANGED",
    "SUGGESTION_ACCEPTED",
    "SUGGESTION_REJECTED",
    "ENGINE_DISABLED",
]


class JournalEvent(BaseModel):
    """Append-only journal record.

    Written as JSONL to <data_dir>/journal.jsonl.
    Never mutate or delete; only append.
    """

    event_id: str = Field(description="Unique event identifier (uuid4)", alias="eventId")
    run_id: str = Field(description="Engine run identifier (uuid4)", alias="runId")
    ts: datetime = Field(description="Event timestamp (ISO8601 UTC)")
    event_type: JournalEventType = Field(description="Event type", alias="eventType")
    note_id: str | None = Field(default=None, description="Related note ID if applicable", alias="noteId")
    payload: dict = Field(default_factory=dict, description="Event-specific data")

    model_config = ConfigDict(frozen=True, populate_by_name=True)
