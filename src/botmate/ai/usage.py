"""Normalize token-usage metadata arriving in different shapes."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from botmate.log import get_logger

logger = get_logger(__name__)

_INPUT_KEYS = ("input_tokens", "InputTokenCount", "prompt_tokens", "inputTokenCount")
_OUTPUT_KEYS = ("output_tokens", "OutputTokenCount", "completion_tokens", "outputTokenCount")


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def _as_int(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _first(source: Mapping[str, Any], keys: tuple[str, ...]) -> int:
    for key in keys:
        if source.get(key) is not None:
            return _as_int(source[key])
    return 0


def _from_mapping(data: Mapping[str, Any]) -> TokenUsage:
    return TokenUsage(input_tokens=_first(data, _INPUT_KEYS), output_tokens=_first(data, _OUTPUT_KEYS))


def _from_object(obj: Any) -> TokenUsage:
    values = {key: getattr(obj, key) for key in (*_INPUT_KEYS, *_OUTPUT_KEYS) if hasattr(obj, key)}
    return _from_mapping(values)


def parse_usage(value: Any) -> TokenUsage:
    """Turn a structured usage object, a dict, or its JSON encoding into TokenUsage.

    Missing or malformed usage yields zero counts rather than an error.
    """
    match value:
        case None:
            return TokenUsage()
        case TokenUsage():
            return value
        case Mapping():
            return _from_mapping(value)
        case str() | bytes():
            try:
                decoded = json.loads(value)
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.warning("usage_unparseable", raw=str(value)[:200])
                return TokenUsage()
            if isinstance(decoded, Mapping):
                return _from_mapping(decoded)
            logger.warning("usage_unexpected_shape", kind=type(decoded).__name__)
            return TokenUsage()
        case _:
            return _from_object(value)
