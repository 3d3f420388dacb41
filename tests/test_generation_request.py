"""Tests for the generation request lifecycle."""

import asyncio

import pytest

from marinate.generation import HeuristicGenerator, ScriptedGenerator
from marinate.generation.events import GeneratorError, TurnComplete
from marinate.generation.request import (
    ErrorKind,
    ErrorResult,
    GenerationRequest,
    RequestState,
    StructuredResult,
    TextResult,
    classify_error,
    extract_structured,
    strip_code_fence,
)


async def _run(generator, *, expect_structured=True, timeout=2.0, wait=0.05):
    results = []
    request = GenerationRequest(generator, grace_delay=0)
    request.send("prompt", expect_structured=expect_structured, timeout=timeout, on_result=results.append)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout + 1
    while not results and loop.time() < deadline:
        await asyncio.sleep(0.005)
    # Give any stray late events a chance to fire a second callback.
    await asyncio.sleep(wait)
    return request, results


@pytest.mark.parametrize(
    "raw",
    [
        '{"suggestions": []}',
        '  {"suggestions": []}\n',
        '```json\n{"suggestions": []}\n```',
        '```\n{"suggestions": []}\n```',
    ],
)
def test_extract_structured_strips_fences(raw):
    assert extract_structured(raw) == {"suggestions": []}


def test_extract_structured_rejects_non_objects():
    assert extract_structured("[1, 2]") is None
    assert extract_structured("not json") is None


def test_strip_code_fence_leaves_plain_text():
    assert strip_code_fence("  hello  ") == "hello"


def test_classify_error():
    assert classify_error("Failed to start generator: boom") == ErrorKind.BACKEND_UNAVAILABLE
    assert classify_error("claude: not found") == ErrorKind.BACKEND_UNAVAILABLE
    assert classify_error("Request timed out after 120s") == ErrorKind.TIMEOUT
    assert classify_error("API error 529: overloaded") == ErrorKind.TRANSIENT


def test_structured_response_in_chunks():
    generator = ScriptedGenerator(text='```json\n{"suggestions": [1]}\n```', chunk_size=4)

    request, results = asyncio.run(_run(generator))

    assert results == [StructuredResult({"suggestions": [1]})]
    assert request.state == RequestState.COMPLETED
    assert generator.sent_prompts == ["prompt"]
    assert generator.terminate_called


def test_text_response_is_trimmed():
    generator = ScriptedGenerator(text="  plain answer \n")

    _, results = asyncio.run(_run(generator, expect_structured=False))

    assert results == [TextResult("plain answer")]


def test_unparseable_structured_response_errors_with_preview():
    body = "not found " + "x" * 400
    generator = ScriptedGenerator(text=body)

    request, results = asyncio.run(_run(generator))

    assert len(results) == 1
    error = results[0]
    assert isinstance(error, ErrorResult)
    assert error.kind == ErrorKind.TRANSIENT
    assert "x" * 290 in error.message
    assert "x" * 400 not in error.message
    assert request.state == RequestState.ERRORED


def test_generator_error_is_classified():
    generator = ScriptedGenerator(start_error="Failed to start generator: missing binary")

    _, results = asyncio.run(_run(generator))

    assert results == [ErrorResult("Failed to start generator: missing binary", ErrorKind.BACKEND_UNAVAILABLE)]


def test_timeout_resolves_once():
    generator = ScriptedGenerator()

    request, results = asyncio.run(_run(generator, timeout=0.05, wait=0.1))

    assert len(results) == 1
    assert results[0].kind == ErrorKind.TIMEOUT
    assert results[0].message.startswith("Request timed out")
    assert request.state == RequestState.TIMED_OUT
    assert generator.terminate_called


def test_late_events_do_not_resolve_twice():
    generator = ScriptedGenerator(response={"suggestions": []})

    async def scenario():
        request, results = await _run(generator, timeout=0.05)
        generator.channel.publish(TurnComplete())
        generator.channel.publish(GeneratorError("late"))
        await asyncio.sleep(0.1)
        return request, results

    request, results = asyncio.run(scenario())

    assert results == [StructuredResult({"suggestions": []})]
    assert request.state == RequestState.COMPLETED


def test_cancel_suppresses_callback():
    generator = ScriptedGenerator(response={"suggestions": []})

    async def scenario():
        results = []
        request = GenerationRequest(generator, grace_delay=0.01)
        request.send("prompt", expect_structured=True, timeout=0.05, on_result=results.append)
        request.cancel()
        request.cancel()
        await asyncio.sleep(0.1)
        return request, results

    request, results = asyncio.run(scenario())

    assert results == []
    assert request.state == RequestState.CANCELED
    assert generator.cancel_called
    assert generator.terminate_called
    assert generator.sent_prompts == []


def test_cancel_after_completion_is_noop():
    generator = ScriptedGenerator(response={"suggestions": []})

    async def scenario():
        request, results = await _run(generator)
        request.cancel()
        return request, results

    request, results = asyncio.run(scenario())

    assert request.state == RequestState.COMPLETED
    assert len(results) == 1
    assert not generator.cancel_called


def test_send_twice_raises():
    generator = ScriptedGenerator(response={"suggestions": []})

    async def scenario():
        request = GenerationRequest(generator, grace_delay=0)
        request.send("prompt", on_result=lambda result: None)
        with pytest.raises(RuntimeError):
            request.send("again", on_result=lambda result: None)
        request.cancel()

    asyncio.run(scenario())


class _ExplodingGenerator(ScriptedGenerator):
    def start(self) -> None:
        raise OSError("no such executable")


def test_start_exception_resolves_immediately():
    results = []

    async def scenario():
        request = GenerationRequest(_ExplodingGenerator(), grace_delay=0)
        request.send("prompt", on_result=results.append)
        return request

    request = asyncio.run(scenario())

    assert len(results) == 1
    assert results[0].message == "Failed to start generator: no such executable"
    assert results[0].kind == ErrorKind.BACKEND_UNAVAILABLE
    assert request.state == RequestState.ERRORED


@pytest.mark.parametrize("generator_cls", [ScriptedGenerator, HeuristicGenerator])
def test_send_prompt_before_start_raises(generator_cls):
    with pytest.raises(RuntimeError, match="start\\(\\) must be called"):
        generator_cls().send_prompt("prompt")
