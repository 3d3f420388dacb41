"""One request/response cycle against a text generator.

Sends a prompt, accumulates the streamed response, and delivers exactly one
result on turn completion, generator error, or timeout. Handles markdown
fence stripping for structured (JSON) responses.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from .base import TextGenerator
from .events import GeneratorError, TextDelta, TurnComplete

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_GRACE_DELAY_SECONDS = 0.5
PREVIEW_CHARS = 300

TIMEOUT_MESSAGE = "Request timed out"
# Substrings that mean the generator backend cannot be used at all.
BACKEND_UNAVAILABLE_MARKERS = ("Failed to start", "not found")

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")


class RequestState(str, Enum):
    """Lifecycle of a single-use generation request."""

    IDLE = "idle"
    STARTED = "started"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RequestState.IDLE, RequestState.STARTED)


class ErrorKind(str, Enum):
    """Error taxonomy for generation failures."""

    TRANSIENT = "transient"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    TIMEOUT = "timeout"


def classify_error(message: str) -> ErrorKind:
    if message.startswith(TIMEOUT_MESSAGE):
        return ErrorKind.TIMEOUT
    if any(marker in message for marker in BACKEND_UNAVAILABLE_MARKERS):
        return ErrorKind.BACKEND_UNAVAILABLE
    return ErrorKind.TRANSIENT


@dataclass(frozen=True)
class TextResult:
    text: str


@dataclass(frozen=True)
class StructuredResult:
    data: dict[str, Any]


@dataclass(frozen=True)
class ErrorResult:
    message: str
    kind: ErrorKind = ErrorKind.TRANSIENT

    @classmethod
    def from_message(cls, message: str) -> "ErrorResult":
        return cls(message=message, kind=classify_error(message))


GenerationResult = Union[TextResult, StructuredResult, ErrorResult]


def strip_code_fence(text: str) -> str:
    """Trim whitespace and strip an optional ``` fence (with or without language tag)."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned.rstrip(), count=1)
    return cleaned.strip()


def extract_structured(text: str) -> dict[str, Any] | None:
    """Parse a JSON object out of a generator response, or None."""
    cleaned = strip_code_fence(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class GenerationRequest:
    """A single-use request: idle -> started -> completed | timed_out | errored | canceled.

    ``on_result`` is invoked exactly once per send(), unless the request is
    canceled first, in which case it is never invoked.
    """

    def __init__(
        self,
        generator: TextGenerator,
        *,
        grace_delay: float = DEFAULT_GRACE_DELAY_SECONDS,
    ):
        self.generator = generator
        self.grace_delay = grace_delay
        self.state = RequestState.IDLE
        self.result: GenerationResult | None = None
        self._accumulated: list[str] = []
        self._expect_structured = False
        self._on_result: Callable[[GenerationResult], None] | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._prompt_handle: asyncio.TimerHandle | None = None
        self._reader: asyncio.Task | None = None

    @property
    def accumulated_text(self) -> str:
        return "".join(self._accumulated)

    def send(
        self,
        prompt: str,
        *,
        expect_structured: bool = False,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        on_result: Callable[[GenerationResult], None],
    ) -> None:
        """Start the generator and transmit ``prompt`` after the grace delay.

        Must be called from a running event loop. Returns immediately.

        Raises:
            RuntimeError: If this request was already sent or canceled
        """
        if self.state != RequestState.IDLE:
            raise RuntimeError(f"GenerationRequest is single-use (state={self.state.value})")
        loop = asyncio.get_running_loop()

        self._on_result = on_result
        self._expect_structured = expect_structured
        self.state = RequestState.STARTED

        self._reader = loop.create_task(self._consume())
        self._timeout_handle = loop.call_later(timeout, self._on_timeout, timeout)

        try:
            self.generator.start()
        except Exception as e:
            logger.exception("Generator failed to start")
            self._finish(ErrorResult.from_message(f"Failed to start generator: {e}"), RequestState.ERRORED)
            return

        self._prompt_handle = loop.call_later(self.grace_delay, self._transmit, prompt)

    def cancel(self) -> None:
        """Cancel the request; the result callback will never fire afterwards."""
        if self.state.is_terminal:
            return
        was_started = self.state == RequestState.STARTED
        self.state = RequestState.CANCELED
        self._on_result = None
        self._teardown()
        if was_started:
            self.generator.cancel()
            self.generator.terminate()

    # Event handling

    def _transmit(self, prompt: str) -> None:
        self._prompt_handle = None
        if self.state != RequestState.STARTED:
            return
        self.generator.send_prompt(prompt)

    async def _consume(self) -> None:
        async for event in self.generator.events():
            if self.state != RequestState.STARTED:
                return
            if isinstance(event, TextDelta):
                self._accumulated.append(event.text)
            elif isinstance(event, TurnComplete):
                self._complete_turn()
                return
            elif isinstance(event, GeneratorError):
                logger.warning("Generator error: %s", event.message)
                self._finish(ErrorResult.from_message(event.message), RequestState.ERRORED)
                return
            else:
                raise TypeError(f"Unhandled generator event: {event!r}")

        if self.state == RequestState.STARTED:
            self._finish(
                ErrorResult.from_message("Generator stream ended before the turn completed"),
                RequestState.ERRORED,
            )

    def _complete_turn(self) -> None:
        text = self.accumulated_text.strip()
        logger.debug("Turn complete, %d chars: %s", len(text), text[:PREVIEW_CHARS])
        if not self._expect_structured:
            self._finish(TextResult(text), RequestState.COMPLETED)
            return

        data = extract_structured(text)
        if data is None:
            # The preview is model output, so it must not drive classification.
            self._finish(
                ErrorResult(f"Failed to parse JSON from response: {text[:PREVIEW_CHARS]}", ErrorKind.TRANSIENT),
                RequestState.ERRORED,
            )
            return
        self._finish(StructuredResult(data), RequestState.COMPLETED)

    def _on_timeout(self, timeout: float) -> None:
        self._timeout_handle = None
        if self.state != RequestState.STARTED:
            return
        logger.warning("Generation request timed out after %ss", timeout)
        self._finish(ErrorResult(f"{TIMEOUT_MESSAGE} after {timeout:g}s", ErrorKind.TIMEOUT), RequestState.TIMED_OUT)

    def _teardown(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._prompt_handle is not None:
            self._prompt_handle.cancel()
            self._prompt_handle = None
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
        self._reader = None

    def _finish(self, result: GenerationResult, state: RequestState) -> None:
        if self.state.is_terminal:
            return
        self.state = state
        self.result = result
        self._teardown()
        self.generator.terminate()
        callback = self._on_result
        self._on_result = None
        if callback is not None:
            callback(result)
