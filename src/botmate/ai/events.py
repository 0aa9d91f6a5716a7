"""Stream / completion notifications and a simple handler list to deliver them."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from botmate.log import get_logger

logger = get_logger(__name__)

E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One increment of streamed agent text."""

    content: str


@dataclass(frozen=True, slots=True)
class CompletionSummary:
    """The aggregated result of a finished stream."""

    content: str
    model_id: str = ""
    finish_reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


Handler = Callable[[E], Union[None, Awaitable[None]]]


class EventHook(Generic[E]):
    """Append-only list of handlers invoked in registration order.

    Handlers run inline in the emitting coroutine, so they should return
    quickly. A handler that raises is logged and skipped.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: list[Handler[E]] = []

    def subscribe(self, handler: Handler[E]) -> Handler[E]:
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler[E]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def __iadd__(self, handler: Handler[E]) -> EventHook[E]:
        self.subscribe(handler)
        return self

    def __isub__(self, handler: Handler[E]) -> EventHook[E]:
        self.unsubscribe(handler)
        return self

    def __len__(self) -> int:
        return len(self._handlers)

    async def emit(self, event: E) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    hook=self.name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )
