"""Parse structured generator output into typed suggestions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from .models.suggestion import Suggestion, SuggestionContent, SuggestionType

logger = logging.getLogger(__name__)

_content_adapter: TypeAdapter = TypeAdapter(SuggestionContent)
_KNOWN_TYPES = {t.value for t in SuggestionType}


def parse_suggestion(entry: Any, created_at: datetime | None = None) -> Suggestion | None:
    """Parse a single candidate entry.

    An entry is accepted whole or not at all: it needs a recognized ``type``,
    a string ``reasoning``, and every field its type requires.

    Returns:
        Suggestion, or None if the entry is unusable
    """
    if not isinstance(entry, dict):
        return None

    type_str = entry.get("type")
    if type_str not in _KNOWN_TYPES:
        # Unknown types are expected from newer prompts; skip quietly.
        logger.debug("Dropping suggestion with unrecognized type: %r", type_str)
        return None

    reasoning = entry.get("reasoning")
    if not isinstance(reasoning, str):
        logger.debug("Dropping %s suggestion without reasoning", type_str)
        return None

    data = dict(entry)
    choices = data.get("choices")
    if choices is not None and not (isinstance(choices, list) and all(isinstance(c, str) for c in choices)):
        data.pop("choices")

    try:
        content = _content_adapter.validate_python(data)
    except ValidationError as e:
        logger.debug("Dropping invalid %s suggestion: %s", type_str, e.errors(include_url=False))
        return None

    return Suggestion.new(content, reasoning=reasoning, created_at=created_at)


def parse_suggestions(payload: Any, created_at: datetime | None = None) -> list[Suggestion]:
    """Parse the generator's ``{"suggestions": [...]}`` object.

    Never raises on malformed input; unusable entries are dropped.
    """
    if not isinstance(payload, dict):
        return []
    entries = payload.get("suggestions")
    if not isinstance(entries, list):
        return []

    parsed: list[Suggestion] = []
    for entry in entries:
        suggestion = parse_suggestion(entry, created_at=created_at)
        if suggestion is not None:
            parsed.append(suggestion)

    dropped = len(entries) - len(parsed)
    if dropped:
        logger.info("Dropped %d of %d suggestion entries", dropped, len(entries))
    return parsed
