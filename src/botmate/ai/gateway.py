"""Completion gateway abstraction with an Anthropic API backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional

import anthropic

from botmate.ai.context import ConversationContext
from botmate.ai.usage import TokenUsage
from botmate.config import AnthropicConfig
from botmate.errors import GatewayError
from botmate.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionSettings:
    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass(slots=True)
class StreamChunk:
    """One streamed increment.

    ``metadata`` may carry ``model``, ``finish_reason`` and ``usage``; usage is
    either a structured object or a JSON string.
    """

    text: str = ""
    metadata: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class CompletionResult:
    """Unified one-shot response."""

    items: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(self.items)


class CompletionGateway(ABC):
    """Abstract base class for LLM completion backends."""

    @abstractmethod
    def stream_completion(
        self, context: ConversationContext, settings: CompletionSettings
    ) -> AsyncIterator[StreamChunk]:
        """Yield text increments in order; the last chunk carries finish metadata.

        Not restartable: each call performs one upstream request.
        """
        ...

    @abstractmethod
    async def complete(self, context: ConversationContext, settings: CompletionSettings) -> CompletionResult:
        """Run a one-shot (non-streaming) completion."""
        ...


class AnthropicGateway(CompletionGateway):
    """Anthropic messages API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, client: Any = None):
        if client is None:
            client = anthropic.AsyncAnthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client

    def _request_kwargs(self, context: ConversationContext, settings: CompletionSettings) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": settings.model,
            "max_tokens": settings.max_tokens,
            "messages": context.to_anthropic_messages(),
            "temperature": settings.temperature,
        }
        if context.system_prompt:
            kwargs["system"] = context.system_prompt
        return kwargs

    async def stream_completion(
        self, context: ConversationContext, settings: CompletionSettings
    ) -> AsyncIterator[StreamChunk]:
        kwargs = self._request_kwargs(context, settings)
        logger.debug("api_stream_request", model=settings.model, message_count=len(kwargs["messages"]))

        model = settings.model
        input_tokens = 0
        try:
            # Leaving the block closes the HTTP response, also when the consumer stops early.
            async with await self._client.messages.create(stream=True, **kwargs) as stream:
                async for event in stream:
                    match event.type:
                        case "message_start":
                            model = event.message.model or model
                            input_tokens = event.message.usage.input_tokens
                        case "content_block_delta" if event.delta.type == "text_delta":
                            yield StreamChunk(text=event.delta.text)
                        case "message_delta":
                            usage = TokenUsage(
                                input_tokens=input_tokens,
                                output_tokens=event.usage.output_tokens,
                            )
                            yield StreamChunk(
                                text="",
                                metadata={
                                    "model": model,
                                    "finish_reason": event.delta.stop_reason or "",
                                    "usage": usage,
                                },
                            )
        except anthropic.APIError as e:
            logger.error("api_stream_error", model=settings.model, error=str(e))
            raise GatewayError(f"Streaming completion failed: {e}", {"model": settings.model}) from e

    async def complete(self, context: ConversationContext, settings: CompletionSettings) -> CompletionResult:
        kwargs = self._request_kwargs(context, settings)
        logger.debug("api_request", model=settings.model, message_count=len(kwargs["messages"]))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("api_error", model=settings.model, error=str(e))
            raise GatewayError(f"Completion failed: {e}", {"model": settings.model}) from e

        logger.debug(
            "api_response",
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return CompletionResult(
            items=[block.text for block in response.content if block.type == "text"],
            metadata={
                "model": response.model,
                "finish_reason": response.stop_reason or "",
                "usage": response.usage,
            },
        )
