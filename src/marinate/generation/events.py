"""Events emitted by a text generator during one turn.

The set is closed: a turn produces zero or more TextDelta events followed by
exactly one TurnComplete or GeneratorError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class GeneratorError:
    message: str


GeneratorEvent = Union[TextDelta, TurnComplete, GeneratorError]
