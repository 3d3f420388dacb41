"""Pytest fixtures for marinate tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marinate.config import EngineSettings
from marinate.engine import EngineListener, MarinationEngine
from marinate.generation import ScriptedGenerator
from marinate.store import InMemoryMarinationStore

LONG_TEXT = (
    "A tool that watches rough notes and nudges them toward a sharper idea. "
    "It should ask hard questions instead of polishing prose."
)

VALID_RESPONSE = {
    "suggestions": [
        {
            "type": "question",
            "text": "Who is this for?",
            "choices": ["Me", "My team"],
            "reasoning": "The audience is unstated.",
        },
        {
            "type": "append",
            "text": "Riskiest assumption: people want nudges.",
            "reasoning": "No assumption is named yet.",
        },
    ]
}


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedFactory:
    """Generator factory handing out a fresh ScriptedGenerator per request."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created: list[ScriptedGenerator] = []

    def __call__(self) -> ScriptedGenerator:
        generator = ScriptedGenerator(**self.kwargs)
        self.created.append(generator)
        return generator


class RecordingListener(EngineListener):
    """Collects every engine notification as (name, note_id, value) tuples."""

    def __init__(self):
        self.events: list[tuple] = []

    def on_cycle_started(self, note_id, phase):
        self.events.append(("cycle_started", note_id, phase))

    def on_cycle_completed(self, note_id, added, expired):
        self.events.append(("cycle_completed", note_id, (added, expired)))

    def on_status_changed(self, note_id, status):
        self.events.append(("status", note_id, status))

    def on_phase_changed(self, note_id, phase):
        self.events.append(("phase", note_id, phase))

    def on_suggestions_updated(self, note_id, suggestions):
        self.events.append(("suggestions", note_id, list(suggestions)))

    def on_suggestion_resolved(self, note_id, suggestion, outcome):
        self.events.append(("resolved", note_id, outcome))

    def on_error(self, note_id, error):
        self.events.append(("error", note_id, error))

    def on_engine_disabled(self, message):
        self.events.append(("disabled", None, message))

    def named(self, name: str) -> list[tuple]:
        return [e for e in self.events if e[0] == name]


async def settle(engine: MarinationEngine, timeout: float = 2.0) -> None:
    """Wait until the engine has no request in flight."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while engine.processing_note_id is not None:
        if loop.time() > deadline:
            raise AssertionError("request did not finish in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return InMemoryMarinationStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Engine settings with no grace delay and a short timeout."""
    return EngineSettings(prompt_grace_seconds=0, request_timeout_seconds=2)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def make_engine(store, clock, settings, listener):
    """Build an engine over the in-memory store with a scripted factory."""

    def _make(factory=None, **overrides):
        config = settings.model_copy(update=overrides) if overrides else settings
        return MarinationEngine(
            store=store,
            notes=store,
            generator_factory=factory or ScriptedFactory(response=VALID_RESPONSE),
            config=config,
            clock=clock,
            listener=listener,
        )

    return _make
