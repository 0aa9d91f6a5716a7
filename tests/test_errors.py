"""Error hierarchy families and serialization."""

from __future__ import annotations

from botmate.errors import (
    BotMateError,
    ConcurrencyConflictError,
    EmptyMessageError,
    GatewayError,
    InvalidBotIdError,
    NotFoundError,
    SessionNotFoundError,
    StorageError,
    UpstreamError,
    ValidationError,
)


def test_families() -> None:
    assert issubclass(EmptyMessageError, ValidationError)
    assert issubclass(InvalidBotIdError, ValidationError)
    assert issubclass(SessionNotFoundError, NotFoundError)
    assert issubclass(ConcurrencyConflictError, StorageError)
    assert issubclass(StorageError, UpstreamError)
    assert issubclass(GatewayError, UpstreamError)
    assert issubclass(UpstreamError, BotMateError)


def test_to_dict_includes_context_and_cause() -> None:
    original = OSError("disk gone")
    try:
        try:
            raise original
        except OSError as exc:
            raise StorageError("write failed", {"session_id": 4}) from exc
    except StorageError as error:
        result = error.to_dict()

    assert result["error"] == "StorageError"
    assert result["message"] == "write failed"
    assert result["context"] == {"session_id": 4}
    assert "disk gone" in result["cause"]


def test_specific_errors_carry_their_argument() -> None:
    assert InvalidBotIdError(-2).context == {"bot_id": -2}
    assert SessionNotFoundError(9).context == {"session_id": 9}
    assert EmptyMessageError("title").context == {"field": "title"}
    assert str(EmptyMessageError()) == "message cannot be null, empty or whitespace"
