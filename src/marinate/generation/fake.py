"""Deterministic generators for tests and offline use."""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from typing import Any

from .base import TextGenerator
from .events import GeneratorError, TextDelta, TurnComplete

_NOTE_BLOCK = re.compile(r"--- NOTE ---\n(.*?)\n--- END NOTE ---", re.DOTALL)
_PHASE_LINE = re.compile(r"^Current phase: ([A-Z]+)", re.MULTILINE)
_NEXT_PHASE = re.compile(r'nextPhase "([a-z]+)"')


class ScriptedGenerator(TextGenerator):
    """Generator that replays a scripted response.

    Exactly one of ``response``, ``text`` or ``error`` is delivered after a
    prompt is sent; with none of them the generator stays silent, which is
    how tests exercise timeouts. ``start_error`` is emitted as soon as the
    session starts, before any prompt.
    """

    def __init__(
        self,
        response: dict[str, Any] | None = None,
        *,
        text: str | None = None,
        error: str | None = None,
        start_error: str | None = None,
        chunk_size: int = 0,
    ):
        super().__init__()
        self.response = response
        self.text = text
        self.error = error
        self.start_error = start_error
        self.chunk_size = chunk_size
        self.start_called = False
        self.cancel_called = False
        self.terminate_called = False
        self.sent_prompts: list[str] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def engine_name(self) -> str:
        return "scripted"

    def start(self) -> None:
        self.start_called = True
        self._loop = asyncio.get_running_loop()
        self.channel.bind(self._loop)
        if self.start_error is not None:
            self._loop.call_soon(self.channel.publish, GeneratorError(self.start_error))

    def send_prompt(self, text: str) -> None:
        self.sent_prompts.append(text)
        if self._loop is None:
            raise RuntimeError("start() must be called before send_prompt()")

        if self.error is not None:
            self._loop.call_soon(self.channel.publish, GeneratorError(self.error))
            return

        body = self.text
        if body is None and self.response is not None:
            body = json.dumps(self.response)
        if body is None:
            return

        step = self.chunk_size if self.chunk_size > 0 else max(len(body), 1)
        for i in range(0, len(body), step):
            self._loop.call_soon(self.channel.publish, TextDelta(body[i:i + step]))
        self._loop.call_soon(self.channel.publish, TurnComplete())

    def cancel(self) -> None:
        self.cancel_called = True

    def terminate(self) -> None:
        self.terminate_called = True
        self.channel.close()


class HeuristicGenerator(TextGenerator):
    """Deterministic fake generator for offline use.

    Produces predictable suggestions from the note text embedded in the
    prompt using simple heuristics. Same prompt always produces the same
    output.
    """

    def __init__(self) -> None:
        super().__init__()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def engine_name(self) -> str:
        return "heuristic"

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.channel.bind(self._loop)

    def send_prompt(self, text: str) -> None:
        if self._loop is None:
            raise RuntimeError("start() must be called before send_prompt()")
        payload = {"suggestions": self.suggest(text)}
        self._loop.call_soon(self.channel.publish, TextDelta("```json\n" + json.dumps(payload) + "\n```"))
        self._loop.call_soon(self.channel.publish, TurnComplete())

    def cancel(self) -> None:
        pass

    def terminate(self) -> None:
        self.channel.close()

    def suggest(self, prompt: str) -> list[dict[str, Any]]:
        """Build 2-4 suggestion dicts from the prompt's note text."""
        match = _NOTE_BLOCK.search(prompt)
        note = match.group(1) if match else ""
        phase_match = _PHASE_LINE.search(prompt)
        phase = phase_match.group(1).lower() if phase_match else "ingest"

        sentences = self._sentences(note)
        suggestions: list[dict[str, Any]] = []

        if sentences:
            longest = max(sentences, key=len)
            idx = note.find(longest)
            suggestions.append({
                "type": "critique",
                "severity": "weak" if len(longest) > 80 else "rethink",
                "targetText": longest,
                "critiqueText": "This sentence carries several ideas at once. Which one matters?",
                "contextBefore": note[max(0, idx - 50):idx],
                "contextAfter": note[idx + len(longest):idx + len(longest) + 50],
                "reasoning": f"Heuristic: longest sentence ({len(longest)} chars) is the least focused.",
            })

        first_line = next((line.strip() for line in note.splitlines() if line.strip()), "")
        suggestions.append({
            "type": "question",
            "text": f"Who specifically benefits from \"{first_line[:60]}\"?",
            "choices": ["Me, right now", "A small team", "Anyone with this problem"],
            "reasoning": "Heuristic: the opening line does not name a beneficiary.",
        })

        if phase == "commit":
            digest = hashlib.md5(note.encode()).hexdigest()[:6]
            suggestions.append({
                "type": "promote",
                "title": (first_line[:60] or f"Idea {digest}"),
                "description": " ".join(sentences[:2])[:300],
                "reasoning": "Heuristic: the note has reached the final phase.",
            })
        else:
            next_match = _NEXT_PHASE.search(prompt)
            if next_match and len(sentences) >= 3:
                suggestions.append({
                    "type": "advancePhase",
                    "nextPhase": next_match.group(1),
                    "reasoning": f"Heuristic: {len(sentences)} sentences suggest the {phase} phase is covered.",
                })
            else:
                suggestions.append({
                    "type": "append",
                    "text": "Riskiest assumption: ",
                    "reasoning": "Heuristic: no assumption is named yet.",
                })

        return suggestions[:4]

    @staticmethod
    def _sentences(note: str) -> list[str]:
        parts = re.split(r"(?<=[.!?])\s+|\n+", note)
        return [p.strip() for p in parts if len(p.strip()) > 10]
