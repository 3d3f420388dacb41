"""Note phase and status enums."""

from enum import Enum


class NotePhase(str, Enum):
    """The five ordered stages a note's marination progresses through."""

    INGEST = "ingest"  # extract core intent, reframe the idea
    EXPAND = "expand"  # generate contrast, force elimination
    SHAPE = "shape"  # define product character, non-goals
    SCOPE = "scope"  # apply constraint pressure
    COMMIT = "commit"  # testable claims, risky bet, forward path

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)

    @property
    def next(self) -> "NotePhase | None":
        """The successor phase, or None at commit."""
        idx = self.order + 1
        return _PHASE_ORDER[idx] if idx < len(_PHASE_ORDER) else None

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, NotePhase):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other: object) -> bool:
        if not isinstance(other, NotePhase):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, NotePhase):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, NotePhase):
            return NotImplemented
        return self.order >= other.order


_PHASE_ORDER = list(NotePhase)


class NoteStatus(str, Enum):
    """Marination status of a note as shown to the host."""

    IDLE = "idle"
    ACTIVE = "active"
    WAITING = "waiting"
