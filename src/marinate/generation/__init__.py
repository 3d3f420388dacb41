"""Text generators and the generation request lifecycle."""

from typing import Callable

from .anthropic import AnthropicGenerator, has_generator_api_key
from .base import EventChannel, TextGenerator
from .events import GeneratorError, GeneratorEvent, TextDelta, TurnComplete
from .fake import HeuristicGenerator, ScriptedGenerator
from .request import (
    ErrorKind,
    ErrorResult,
    GenerationRequest,
    GenerationResult,
    RequestState,
    StructuredResult,
    TextResult,
    classify_error,
    extract_structured,
    strip_code_fence,
)

GeneratorFactory = Callable[[], TextGenerator]


def get_text_generator_factory(engine: str = "auto", model: str | None = None) -> GeneratorFactory:
    """Get a factory for fresh generator sessions.

    Args:
        engine: 'fake', 'anthropic', or 'auto'
                'auto' uses the Anthropic API if a key is available, else fake

    Returns:
        Zero-argument callable creating one generator per request
    """
    if engine == "fake":
        return HeuristicGenerator

    if engine == "anthropic":
        return lambda: AnthropicGenerator(model=model)

    if engine == "auto":
        if has_generator_api_key():
            return lambda: AnthropicGenerator(model=model)
        return HeuristicGenerator

    raise ValueError(f"Unsupported generator engine: {engine}")


__all__ = [
    # Interface
    "TextGenerator",
    "EventChannel",
    "GeneratorFactory",
    "get_text_generator_factory",
    # Events
    "GeneratorEvent",
    "TextDelta",
    "TurnComplete",
    "GeneratorError",
    # Implementations
    "ScriptedGenerator",
    "HeuristicGenerator",
    "AnthropicGenerator",
    "has_generator_api_key",
    # Requests
    "GenerationRequest",
    "GenerationResult",
    "RequestState",
    "TextResult",
    "StructuredResult",
    "ErrorResult",
    "ErrorKind",
    "classify_error",
    "extract_structured",
    "strip_code_fence",
]
