"""Streaming generator backed by the Anthropic Messages API.

The HTTP stream is read on a worker thread; every event is marshalled back
onto the event loop through the channel, so nothing outside this module
ever runs off the loop thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from typing import Any, Iterator

import requests

from .base import TextGenerator
from .events import GeneratorError, TextDelta, TurnComplete

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"


def iter_sse_data(lines: Iterator[str]) -> Iterator[dict[str, Any]]:
    """Yield the JSON payload of each ``data:`` line of a server-sent event stream."""
    for line in lines:
        if not line or not line.startswith("data:"):
            continue
        raw = line[len("data:"):].strip()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed SSE data line: %s", raw[:200])
            continue
        if isinstance(data, dict):
            yield data


class AnthropicGenerator(TextGenerator):
    """Real generator using the Anthropic streaming Messages API.

    Requires ANTHROPIC_API_KEY (or an explicit api_key).
    """

    API_URL = "https://api.anthropic.com/v1/messages"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        max_tokens: int = 2048,
        connect_timeout: float = 10.0,
        read_timeout: float = 120.0,
    ):
        super().__init__()
        self.model = model or DEFAULT_MODEL
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._session: requests.Session | None = None
        self._thread: threading.Thread | None = None
        self._response: requests.Response | None = None
        self._stop = threading.Event()

    @property
    def engine_name(self) -> str:
        return "anthropic"

    @property
    def provider_model(self) -> str:
        return f"anthropic/{self.model}"

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.channel.bind(loop)
        self.api_key = self.api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            loop.call_soon(
                self.channel.publish,
                GeneratorError("Failed to start generator: ANTHROPIC_API_KEY not found"),
            )
            return
        self._session = requests.Session()

    def send_prompt(self, text: str) -> None:
        if self._session is None:
            return
        self._thread = threading.Thread(
            target=self._stream,
            args=(text,),
            name="marinate-anthropic-stream",
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        self._close_response()

    def terminate(self) -> None:
        self._stop.set()
        self._close_response()
        if self._session is not None:
            self._session.close()
            self._session = None
        self.channel.close()

    def _close_response(self) -> None:
        # Unblocks a worker waiting in iter_lines and releases its socket.
        response = self._response
        if response is not None:
            response.close()

    def _publish(self, event) -> None:
        if not self._stop.is_set():
            self.channel.publish_threadsafe(event)

    def _stream(self, prompt: str) -> None:
        session = self._session
        if session is None:
            return
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }
        data = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "stream": True,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            with session.post(
                self.API_URL,
                headers=headers,
                json=data,
                stream=True,
                timeout=(self.connect_timeout, self.read_timeout),
            ) as response:
                self._response = response
                if self._stop.is_set():
                    return
                if response.status_code >= 400:
                    body = response.text[:300] if response.text else "No error body"
                    self._publish(GeneratorError(f"API error {response.status_code}: {body}"))
                    return
                for event in iter_sse_data(response.iter_lines(decode_unicode=True)):
                    if self._stop.is_set():
                        return
                    self._handle_event(event)
                    if event.get("type") in ("message_stop", "error"):
                        return
            self._publish(GeneratorError("Stream closed before message_stop"))
        except requests.RequestException as e:
            self._publish(GeneratorError(f"Network error: {e}"))
        except (OSError, ValueError, AttributeError):
            if not self._stop.is_set():
                raise
            logger.debug("Stream read interrupted by cancellation")
        finally:
            self._response = None

    def _handle_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and isinstance(delta.get("text"), str):
                self._publish(TextDelta(delta["text"]))
        elif event_type == "message_stop":
            self._publish(TurnComplete())
        elif event_type == "error":
            error = event.get("error") or {}
            self._publish(GeneratorError(str(error.get("message", "Unknown error"))))


def has_generator_api_key() -> bool:
    return bool(os.environ.get("ANTHROPIC_API_KEY"))
