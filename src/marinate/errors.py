"""Exception hierarchy for marinate."""


class MarinateError(Exception):
    """Base class for marinate errors."""


class InvalidTransitionError(MarinateError, ValueError):
    """Raised when a suggestion lifecycle transition is not allowed."""


class EngineStateError(MarinateError, RuntimeError):
    """Raised when the engine is driven outside of its lifecycle."""
