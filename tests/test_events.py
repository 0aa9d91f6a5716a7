"""EventHook delivery order, async handlers and failure isolation."""

from __future__ import annotations

import pytest

from botmate.ai.events import CompletionSummary, EventHook, StreamEvent


@pytest.mark.asyncio
async def test_handlers_run_in_registration_order() -> None:
    hook: EventHook[StreamEvent] = EventHook("on_stream")
    calls: list[str] = []

    async def second(event: StreamEvent) -> None:
        calls.append(f"second:{event.content}")

    hook += lambda event: calls.append(f"first:{event.content}")
    hook.subscribe(second)

    await hook.emit(StreamEvent("x"))

    assert calls == ["first:x", "second:x"]
    assert len(hook) == 2


@pytest.mark.asyncio
async def test_failing_handler_is_skipped() -> None:
    hook: EventHook[StreamEvent] = EventHook("on_stream")
    calls: list[str] = []

    def broken(event: StreamEvent) -> None:
        raise ValueError("nope")

    hook += broken
    hook += lambda event: calls.append(event.content)

    await hook.emit(StreamEvent("y"))

    assert calls == ["y"]


@pytest.mark.asyncio
async def test_unsubscribe() -> None:
    hook: EventHook[StreamEvent] = EventHook("on_stream")
    calls: list[str] = []
    handler = hook.subscribe(lambda event: calls.append(event.content))

    hook -= handler
    hook.unsubscribe(handler)
    await hook.emit(StreamEvent("z"))

    assert calls == []
    assert len(hook) == 0


def test_completion_summary_total() -> None:
    assert CompletionSummary("hi", input_tokens=2, output_tokens=5).total_tokens == 7
