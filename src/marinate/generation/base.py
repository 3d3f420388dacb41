"""Text generator interface and the event channel it publishes on."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

from .events import GeneratorEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


class EventChannel:
    """Single-consumer asyncio channel of generator events.

    Events published from worker threads are marshalled onto the owning
    loop with publish_threadsafe(); everything else runs on the loop.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: GeneratorEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def publish_threadsafe(self, event: GeneratorEvent) -> None:
        if self._loop is None:
            raise RuntimeError("EventChannel is not bound to a loop")
        try:
            self._loop.call_soon_threadsafe(self.publish, event)
        except RuntimeError:
            # Loop already closed; nobody is listening any more.
            logger.debug("Dropping generator event after loop shutdown: %r", event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def stream(self) -> AsyncIterator[GeneratorEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class TextGenerator(ABC):
    """Opaque streaming text generator.

    Implementations must publish their events on ``self.channel``; the core
    depends only on the event vocabulary in ``events.py``.
    """

    def __init__(self) -> None:
        self.channel = EventChannel()

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Return engine identifier (e.g., 'scripted', 'heuristic', 'anthropic')."""
        pass

    @property
    def provider_model(self) -> str | None:
        """Return provider/model string for real generators, None for fakes."""
        return None

    @abstractmethod
    def start(self) -> None:
        """Start a session. Must be called from the running event loop."""
        pass

    @abstractmethod
    def send_prompt(self, text: str) -> None:
        """Transmit a prompt; the response arrives as events."""
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Abort the current turn without tearing the session down."""
        pass

    @abstractmethod
    def terminate(self) -> None:
        """Tear the session down and close the event channel."""
        pass

    def events(self) -> AsyncIterator[GeneratorEvent]:
        return self.channel.stream()
