"""Marination engine: picks one active note per tick and runs a generation cycle on it.

The engine runs on a single asyncio event loop. ``tick()`` is synchronous and
never blocks: it selects a note, claims the in-flight slot and returns; the
request resolves later on the same loop and its completion handler updates
the note's persisted state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from .config import EngineSettings
from .errors import EngineStateError
from .generation import GeneratorFactory
from .generation.request import (
    ErrorKind,
    ErrorResult,
    GenerationRequest,
    GenerationResult,
    StructuredResult,
    TextResult,
)
from .models.phase import NotePhase, NoteStatus
from .models.state import HistoryEntry, MarinationState, SuggestionOutcome
from .models.suggestion import AdvancePhaseContent, Suggestion, SuggestionState
from .parsing import parse_suggestions
from .phases import build_prompt_spec, render_prompt
from .store import MarinationStore, NoteDirectory, NoteInfo

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EngineListener:
    """Receives engine notifications. All methods default to no-ops.

    Callbacks run on the event loop, in the order the engine makes changes.
    """

    def on_cycle_started(self, note_id: str, phase: NotePhase) -> None:
        pass

    def on_cycle_completed(self, note_id: str, added: int, expired: int) -> None:
        pass

    def on_status_changed(self, note_id: str, status: NoteStatus) -> None:
        pass

    def on_phase_changed(self, note_id: str, phase: NotePhase) -> None:
        pass

    def on_suggestions_updated(self, note_id: str, suggestions: Sequence[Suggestion]) -> None:
        pass

    def on_suggestion_resolved(self, note_id: str, suggestion: Suggestion, outcome: SuggestionOutcome) -> None:
        pass

    def on_error(self, note_id: str, error: ErrorResult) -> None:
        pass

    def on_engine_disabled(self, message: str) -> None:
        pass


class CompositeListener(EngineListener):
    """Fans every notification out to several listeners, in order."""

    def __init__(self, *listeners: EngineListener):
        self.listeners = list(listeners)

    def on_cycle_started(self, note_id, phase):
        for listener in self.listeners:
            listener.on_cycle_started(note_id, phase)

    def on_cycle_completed(self, note_id, added, expired):
        for listener in self.listeners:
            listener.on_cycle_completed(note_id, added, expired)

    def on_status_changed(self, note_id, status):
        for listener in self.listeners:
            listener.on_status_changed(note_id, status)

    def on_phase_changed(self, note_id, phase):
        for listener in self.listeners:
            listener.on_phase_changed(note_id, phase)

    def on_suggestions_updated(self, note_id, suggestions):
        for listener in self.listeners:
            listener.on_suggestions_updated(note_id, suggestions)

    def on_suggestion_resolved(self, note_id, suggestion, outcome):
        for listener in self.listeners:
            listener.on_suggestion_resolved(note_id, suggestion, outcome)

    def on_error(self, note_id, error):
        for listener in self.listeners:
            listener.on_error(note_id, error)

    def on_engine_disabled(self, message):
        for listener in self.listeners:
            listener.on_engine_disabled(message)


class InFlightSlot:
    """Holds the one generation request the engine may have outstanding."""

    def __init__(self) -> None:
        self._note_id: Optional[str] = None
        self._request: Optional[GenerationRequest] = None

    @property
    def occupied(self) -> bool:
        return self._request is not None

    @property
    def note_id(self) -> Optional[str]:
        return self._note_id

    def claim(self, note_id: str, request: GenerationRequest) -> None:
        if self._request is not None:
            raise EngineStateError(f"Request for note {self._note_id} is still in flight")
        self._note_id = note_id
        self._request = request

    def release(self, request: GenerationRequest) -> bool:
        """Free the slot if ``request`` is the one holding it."""
        if self._request is not request:
            return False
        self._note_id = None
        self._request = None
        return True

    def clear(self) -> Optional[GenerationRequest]:
        request = self._request
        self._note_id = None
        self._request = None
        return request


class MarinationEngine:
    """Background scheduler that marinates one note at a time.

    Args:
        store: Persisted per-note state and note text
        notes: Host enumeration of notes and their status
        generator_factory: Creates a fresh generator for every request
        config: Scheduling thresholds (defaults when omitted)
        clock: Returns the current UTC time
        listener: Receives status, phase, suggestion and error notifications
    """

    def __init__(
        self,
        store: MarinationStore,
        notes: NoteDirectory,
        generator_factory: GeneratorFactory,
        config: Optional[EngineSettings] = None,
        clock: Optional[Clock] = None,
        listener: Optional[EngineListener] = None,
    ):
        self.store = store
        self.notes = notes
        self.generator_factory = generator_factory
        self.config = config or EngineSettings()
        self.clock = clock or _utc_now
        self.listener = listener or EngineListener()

        self._slot = InFlightSlot()
        self._timer: Optional[asyncio.Task] = None
        self._pending_tick: Optional[asyncio.Handle] = None
        self._paused = False
        self._disabled = False

    # Read-only status

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_disabled(self) -> bool:
        return self._disabled

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    @property
    def processing_note_id(self) -> Optional[str]:
        return self._slot.note_id

    # Lifecycle

    def start(self) -> None:
        """Arm the periodic tick on the running event loop. Idempotent."""
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.create_task(self._run_timer(), name="marinate-timer")
        logger.info("Marination engine started (poll every %ss)", self.config.poll_interval_seconds)

    def stop(self) -> None:
        """Cancel the timer and any in-flight request. Idempotent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending_tick is not None:
            self._pending_tick.cancel()
            self._pending_tick = None
        request = self._slot.clear()
        if request is not None:
            request.cancel()
            logger.info("Canceled in-flight marination request")

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval_seconds)
            try:
                self.tick()
            except Exception:
                logger.exception("Marination tick failed")

    def _schedule_tick(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; immediate tick deferred to the next poll")
            return
        if self._pending_tick is not None:
            self._pending_tick.cancel()
        self._pending_tick = loop.call_soon(self._run_pending_tick)

    def _run_pending_tick(self) -> None:
        self._pending_tick = None
        self.tick()

    # Scheduling

    def tick(self) -> Optional[str]:
        """Select one active note and dispatch a generation request for it.

        Must be called on the running event loop when a dispatch can happen.

        Returns:
            The note ID a request was dispatched for, or None
        """
        if self._paused or self._disabled or self._slot.occupied:
            return None

        snapshot = self.notes.list_activatable_notes()
        self._auto_activate(snapshot)

        # Selection reads the snapshot taken above, so notes activated by the
        # sweep wait for the next tick.
        active = [n for n in snapshot if n.status == NoteStatus.ACTIVE]
        if not active:
            return None

        states = {n.id: self.store.load_state(n.id) for n in active}

        def staleness(note: NoteInfo) -> datetime:
            state = states[note.id]
            if state is None or state.last_marinated_at is None:
                return _EPOCH
            return state.last_marinated_at

        selected = min(active, key=staleness)
        text = self.store.load_note_text(selected.id)
        if text is None or len(text) < self.config.min_content_length:
            logger.debug("Note %s is too short to marinate", selected.id)
            return None

        self._dispatch(selected.id, text, states[selected.id] or MarinationState(note_id=selected.id))
        return selected.id

    def _auto_activate(self, snapshot: list[NoteInfo]) -> None:
        now = self.clock()
        threshold = timedelta(seconds=self.config.idle_threshold_seconds)
        for note in snapshot:
            if note.status != NoteStatus.IDLE or note.text_length < self.config.min_content_length:
                continue
            state = self.store.load_state(note.id)
            if state is None or state.last_user_edit_at is None:
                continue
            if now - state.last_user_edit_at >= threshold:
                logger.info("Auto-activating idle note %s", note.id)
                self._set_status(note.id, NoteStatus.ACTIVE)

    def _dispatch(self, note_id: str, text: str, state: MarinationState) -> None:
        # Fail before claiming the slot when called off the event loop.
        asyncio.get_running_loop()
        spec = build_prompt_spec(state.phase, state.recent_history)
        prompt = render_prompt(spec, text, state.phase_round_count + 1)

        request = GenerationRequest(self.generator_factory(), grace_delay=self.config.prompt_grace_seconds)
        self._slot.claim(note_id, request)
        logger.info("Marinating note %s (phase=%s, round=%d)", note_id, state.phase.value, state.phase_round_count + 1)
        self.listener.on_cycle_started(note_id, state.phase)

        request.send(
            prompt,
            expect_structured=True,
            timeout=self.config.request_timeout_seconds,
            on_result=lambda result: self._on_request_finished(note_id, request, result),
        )

    # Completion

    def _on_request_finished(self, note_id: str, request: GenerationRequest, result: GenerationResult) -> None:
        self._slot.release(request)

        if not any(n.id == note_id for n in self.notes.list_activatable_notes()):
            logger.info("Note %s disappeared during marination; discarding result", note_id)
            self.store.delete_state(note_id)
            return

        if isinstance(result, StructuredResult):
            self._apply_result(note_id, result.data)
        elif isinstance(result, ErrorResult):
            self._handle_error(note_id, result)
        elif isinstance(result, TextResult):
            logger.warning("Ignoring unstructured response for note %s", note_id)
        else:
            raise TypeError(f"Unhandled generation result: {result!r}")

    def _apply_result(self, note_id: str, data: dict) -> None:
        now = self.clock()
        state = self.store.load_state(note_id) or MarinationState(note_id=note_id)

        new = parse_suggestions(data, created_at=now)
        expired = state.merge_suggestions(new)
        state.last_marinated_at = now
        state.marination_count += 1
        state.phase_round_count += 1
        self.store.save_state(state, note_id)

        logger.info(
            "Note %s marinated: %d new, %d expired (count=%d)",
            note_id,
            len(new),
            len(expired),
            state.marination_count,
        )
        self.listener.on_cycle_completed(note_id, len(new), len(expired))
        self.listener.on_suggestions_updated(note_id, list(state.suggestions))

        if state.marination_count >= self.config.max_consecutive_marinations and not state.has_accepted_history:
            logger.info("Note %s reached %d rounds without an accept; waiting", note_id, state.marination_count)
            self._set_status(note_id, NoteStatus.WAITING)

    def _handle_error(self, note_id: str, error: ErrorResult) -> None:
        if error.kind == ErrorKind.BACKEND_UNAVAILABLE:
            self._disabled = True
            logger.error("Generator backend unavailable, disabling marination: %s", error.message)
            self.listener.on_error(note_id, error)
            self.listener.on_engine_disabled(error.message)
            return
        logger.warning("Marination of note %s failed (%s): %s", note_id, error.kind.value, error.message)
        self.listener.on_error(note_id, error)

    # Host notifications

    def activate_note(self, note_id: str) -> None:
        """Mark a note active and schedule an immediate tick."""
        self._set_status(note_id, NoteStatus.ACTIVE)
        self._schedule_tick()

    def deactivate_note(self, note_id: str) -> None:
        self._set_status(note_id, NoteStatus.IDLE)

    def note_did_edit(self, note_id: str) -> None:
        """Record a user edit; an edit releases a note from waiting."""
        state = self.store.load_state(note_id) or MarinationState(note_id=note_id)
        state.last_user_edit_at = self.clock()

        status = next((n.status for n in self.notes.list_activatable_notes() if n.id == note_id), None)
        if status == NoteStatus.WAITING:
            state.marination_count = 0
            self.store.save_state(state, note_id)
            self._set_status(note_id, NoteStatus.IDLE)
            return
        self.store.save_state(state, note_id)

    def note_deleted(self, note_id: str) -> None:
        self.store.delete_state(note_id)

    def accept_suggestion(self, suggestion_id: str, note_id: str) -> Optional[Suggestion]:
        return self._resolve(suggestion_id, note_id, SuggestionState.ACCEPTED)

    def reject_suggestion(self, suggestion_id: str, note_id: str) -> Optional[Suggestion]:
        return self._resolve(suggestion_id, note_id, SuggestionState.REJECTED)

    def _resolve(self, suggestion_id: str, note_id: str, new_state: SuggestionState) -> Optional[Suggestion]:
        state = self.store.load_state(note_id)
        if state is None:
            return None
        suggestion = state.find_suggestion(suggestion_id)
        if suggestion is None or not suggestion.is_pending:
            logger.debug("No pending suggestion %s on note %s", suggestion_id, note_id)
            return None

        resolved = suggestion.transition(new_state)
        outcome = SuggestionOutcome(new_state.value)
        state.replace_suggestion(resolved)
        state.add_history_entry(HistoryEntry(suggestion=resolved, outcome=outcome, timestamp=self.clock()))

        new_phase: Optional[NotePhase] = None
        if new_state == SuggestionState.ACCEPTED and isinstance(resolved.content, AdvancePhaseContent):
            new_phase = resolved.content.next_phase
            state.phase = new_phase
            state.phase_round_count = 0

        self.store.save_state(state, note_id)

        self.listener.on_suggestion_resolved(note_id, resolved, outcome)
        if new_phase is not None:
            logger.info("Note %s advanced to phase %s", note_id, new_phase.value)
            self.listener.on_phase_changed(note_id, new_phase)
        self.listener.on_suggestions_updated(note_id, list(state.suggestions))
        return resolved

    def _set_status(self, note_id: str, status: NoteStatus) -> None:
        self.notes.set_status(note_id, status)
        if status == NoteStatus.ACTIVE and self.store.load_state(note_id) is None:
            self.store.save_state(MarinationState(note_id=note_id), note_id)
        self.listener.on_status_changed(note_id, status)
