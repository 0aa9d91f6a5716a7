"""Exception hierarchy shared by the chat turn pipeline.

Three families are distinguished so callers can pick a retry policy:

- ``ValidationError``: the input was rejected before any I/O happened.
- ``NotFoundError``: the input referenced a bot or session that does not exist.
- ``UpstreamError``: the completion gateway, the media uploader or the store failed.
"""

from __future__ import annotations

from typing import Any


class BotMateError(Exception):
    """Base class for every error raised by botmate."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": self.context,
            "cause": repr(self.__cause__) if self.__cause__ else None,
        }


# Validation


class ValidationError(BotMateError):
    """Bad input, rejected before any I/O."""


class EmptyMessageError(ValidationError):
    def __init__(self, field: str = "message"):
        super().__init__(f"{field} cannot be null, empty or whitespace", {"field": field})


class ArgumentNullError(ValidationError):
    def __init__(self, argument: str):
        super().__init__(f"{argument} cannot be None", {"argument": argument})


class InvalidBotIdError(ValidationError):
    def __init__(self, bot_id: Any):
        super().__init__(f"Bot id must be greater than zero, got {bot_id!r}", {"bot_id": bot_id})


class InvalidSessionIdError(ValidationError):
    def __init__(self, session_id: Any):
        super().__init__(
            f"Session id must be greater than zero, got {session_id!r}", {"session_id": session_id}
        )


class MissingBotReferenceError(ValidationError):
    def __init__(self, session_id: Any = None):
        super().__init__(
            "Session must have its bot loaded to build a conversation context",
            {"session_id": session_id},
        )


# Not found


class NotFoundError(BotMateError):
    """A referenced entity does not exist (stale reference)."""


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: Any):
        super().__init__(f"Session {session_id} not found", {"session_id": session_id})


class BotNotFoundError(NotFoundError):
    def __init__(self, bot: Any):
        super().__init__(f"Bot {bot!r} does not exist", {"bot": bot})


# Upstream


class UpstreamError(BotMateError):
    """A collaborator (gateway, uploader, store) failed."""


class GatewayError(UpstreamError):
    pass


class MediaUploadError(UpstreamError):
    pass


class StorageError(UpstreamError):
    pass


class ConcurrencyConflictError(StorageError):
    """A write targeted a stale version of a row, or a parent row that is gone."""


class TurnCancelledError(BotMateError):
    def __init__(self, session_id: Any = None):
        super().__init__("Turn was cancelled before it could be persisted", {"session_id": session_id})
