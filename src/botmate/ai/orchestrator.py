"""Turn orchestrator: context -> streaming completion -> notifications -> persistence."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Union

from botmate.ai.context import ContextBuilder, ConversationContext
from botmate.ai.events import CompletionSummary, EventHook, StreamEvent
from botmate.ai.gateway import CompletionGateway, CompletionResult, CompletionSettings, StreamChunk
from botmate.ai.title import TitleDeriver
from botmate.ai.usage import parse_usage
from botmate.core.types import TurnState
from botmate.errors import (
    ArgumentNullError,
    BotNotFoundError,
    EmptyMessageError,
    InvalidBotIdError,
    InvalidSessionIdError,
    SessionNotFoundError,
    TurnCancelledError,
)
from botmate.log import bind_turn_context, clear_turn_context, get_logger
from botmate.media.models import MediaFileInfo, UploadFile
from botmate.storage.models import Media, Message, Session
from botmate.storage.persistence import TurnPersister
from botmate.storage.session_store import SessionStore

logger = get_logger(__name__)

DEFAULT_SESSION_TITLE = "New Session"


@dataclass(frozen=True, slots=True)
class TurnTransition:
    session_id: int | None
    state: TurnState


class _FinishTracker:
    """Remembers the latest non-empty model / finish reason / usage seen on the stream."""

    def __init__(self) -> None:
        self.model_id = ""
        self.finish_reason = ""
        self.usage: Any = None

    def observe(self, metadata: dict[str, Any] | None) -> None:
        if not metadata:
            return
        model = metadata.get("model")
        if model:
            self.model_id = str(model)
        reason = metadata.get("finish_reason")
        if reason:
            self.finish_reason = str(reason)
        if metadata.get("usage") is not None:
            self.usage = metadata["usage"]

    def summary(self, content: str) -> CompletionSummary:
        usage = parse_usage(self.usage)
        return CompletionSummary(
            content=content,
            model_id=self.model_id,
            finish_reason=self.finish_reason,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )


def _raise_if_cancelled(cancel_event: asyncio.Event | None, session_id: int | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TurnCancelledError(session_id)


class TurnOrchestrator:
    """Runs one conversational turn end-to-end, exactly once, with observable progress.

    Subscribe to ``on_stream`` for every text increment, ``on_completed`` for
    the aggregated result and ``on_state`` for state transitions. Turns for
    different sessions may run concurrently; callers must serialize turns for
    the same session.

    ``state`` is the last transition seen by this orchestrator, whichever
    session it belonged to. Use :meth:`state_of` for a particular session.
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        store: SessionStore,
        persister: TurnPersister,
        context_builder: ContextBuilder,
        title_deriver: TitleDeriver | None = None,
        default_settings: CompletionSettings | None = None,
        provider_name: str = "Anthropic",
    ):
        self._gateway = gateway
        self._store = store
        self._persister = persister
        self._context_builder = context_builder
        self._title_deriver = title_deriver
        self._default_settings = default_settings or CompletionSettings()
        self._provider_name = provider_name
        self._states: dict[int | None, TurnState] = {}
        self.state = TurnState.IDLE

        self.on_stream: EventHook[StreamEvent] = EventHook("on_stream")
        self.on_completed: EventHook[CompletionSummary] = EventHook("on_completed")
        self.on_state: EventHook[TurnTransition] = EventHook("on_state")

    def state_of(self, session_id: int) -> TurnState:
        """State of the turn currently running for a session (IDLE when none)."""
        return self._states.get(session_id, TurnState.IDLE)

    async def submit_new_turn(
        self,
        bot_id: int,
        user_text: str,
        session_title: str = DEFAULT_SESSION_TITLE,
        attachments: Sequence[UploadFile] | None = None,
        settings: CompletionSettings | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Message:
        """Create a new session for the bot and run the first turn in it."""
        if bot_id is None or bot_id <= 0:
            logger.error("invalid_bot_id", bot_id=bot_id)
            raise InvalidBotIdError(bot_id)
        if user_text is None or not user_text.strip():
            logger.error("empty_message", bot_id=bot_id)
            raise EmptyMessageError("user_text")

        try:
            bot = await self._store.get_bot(bot_id)
            if bot is None:
                raise BotNotFoundError(bot_id)

            session = await self._store.create_session(
                Session(bot_id=bot_id, title=session_title or DEFAULT_SESSION_TITLE)
            )
            session.bot = bot
            session.messages = []

            result = await self._run_turn(session, user_text, attachments, settings, cancel_event)
            logger.info("new_session_turn_submitted", session_id=session.id, bot_id=bot_id)
            return result
        except Exception as e:
            logger.error("submit_new_turn_failed", bot_id=bot_id, error=str(e))
            raise

    async def append_turn(
        self,
        user_text: str,
        session: Union[Session, int],
        attachments: Sequence[UploadFile] | None = None,
        settings: CompletionSettings | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Message:
        """Run a turn against an existing session, given loaded or by ID.

        A ``Session`` without its bot attached (a :meth:`SessionStore.list_sessions`
        row, say) carries no history either, so it is reloaded by ID first.
        """
        if user_text is None or not user_text.strip():
            raise EmptyMessageError("user_text")
        if session is None:
            raise ArgumentNullError("session")

        if isinstance(session, Session) and session.bot is None:
            session = session.id
        if not isinstance(session, Session):
            session_id = session
            if session_id is None or session_id <= 0:
                raise InvalidSessionIdError(session_id)
            loaded = await self._store.get_session(session_id)
            if loaded is None:
                logger.error("session_not_found", session_id=session_id)
                raise SessionNotFoundError(session_id)
            session = loaded

        return await self._run_turn(session, user_text, attachments, settings, cancel_event)

    async def complete_text(self, prompt: str, settings: CompletionSettings | None = None) -> CompletionResult:
        """One-shot completion of a single user message, no history or system prompt."""
        if prompt is None or not prompt.strip():
            raise EmptyMessageError("prompt")
        return await self._gateway.complete(
            ConversationContext.single_prompt(prompt), settings or self._default_settings
        )

    def stream_text(self, prompt: str, settings: CompletionSettings | None = None) -> AsyncIterator[StreamChunk]:
        """Streaming completion of a single user message, no history or system prompt."""
        if prompt is None or not prompt.strip():
            raise EmptyMessageError("prompt")
        return self._gateway.stream_completion(
            ConversationContext.single_prompt(prompt), settings or self._default_settings
        )

    async def _transition(self, session: Session, state: TurnState) -> None:
        self.state = state
        if state in (TurnState.COMPLETED, TurnState.FAILED):
            self._states.pop(session.id, None)
        else:
            self._states[session.id] = state
        logger.debug("turn_state", state=str(state))
        await self.on_state.emit(TurnTransition(session.id, state))

    async def _run_turn(
        self,
        session: Session,
        user_text: str,
        attachments: Sequence[UploadFile] | None,
        settings: CompletionSettings | None,
        cancel_event: asyncio.Event | None,
    ) -> Message:
        settings = settings or self._default_settings
        is_first_turn = not session.messages
        bind_turn_context(session_id=session.id, bot_id=session.bot_id)
        outcome = TurnState.FAILED
        try:
            try:
                message = await self._execute(session, user_text, attachments, settings, cancel_event)
            except (TurnCancelledError, asyncio.CancelledError):
                logger.info("turn_cancelled")
                raise
            except Exception as e:
                logger.exception("turn_failed", error=str(e))
                raise

            # Committed: a cancel during title derivation still ends the turn as completed.
            outcome = TurnState.COMPLETED
            if is_first_turn:
                await self._derive_title(session)
            return message
        finally:
            try:
                await self._transition(session, outcome)
            finally:
                clear_turn_context("session_id", "bot_id")

    async def _execute(
        self,
        session: Session,
        user_text: str,
        attachments: Sequence[UploadFile] | None,
        settings: CompletionSettings,
        cancel_event: asyncio.Event | None,
    ) -> Message:
        await self._transition(session, TurnState.BUILDING_CONTEXT)
        prepared = await self._context_builder.build(session, user_text, attachments)
        _raise_if_cancelled(cancel_event, session.id)

        await self._transition(session, TurnState.STREAMING)
        buffer: list[str] = []
        tracker = _FinishTracker()
        stream = self._gateway.stream_completion(prepared.context, settings)
        try:
            async for chunk in stream:
                _raise_if_cancelled(cancel_event, session.id)
                tracker.observe(chunk.metadata)
                if chunk.text:
                    buffer.append(chunk.text)
                    await self.on_stream.emit(StreamEvent(chunk.text))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        _raise_if_cancelled(cancel_event, session.id)

        await self._transition(session, TurnState.AGGREGATING)
        summary = tracker.summary("".join(buffer))
        await self.on_completed.emit(summary)
        _raise_if_cancelled(cancel_event, session.id)

        await self._transition(session, TurnState.PERSISTING)
        message = Message(
            user_message=user_text,
            agent_response=summary.content,
            model=summary.model_id or settings.model,
            provider_name=self._provider_name,
            input_tokens=summary.input_tokens,
            output_tokens=summary.output_tokens,
        )
        media = [self._to_media(info) for info in prepared.uploads]
        await self._persister.persist_turn_for(session, message, media)

        logger.info(
            "turn_persisted",
            message_id=message.id,
            finish_reason=summary.finish_reason,
            input_tokens=summary.input_tokens,
            output_tokens=summary.output_tokens,
            media_count=len(media),
        )
        return message

    async def _derive_title(self, session: Session) -> None:
        """Best effort: a failure here never unwinds the committed turn."""
        if self._title_deriver is None:
            return
        try:
            title = await self._title_deriver.derive(session)
            if title:
                await self._persister.update_session_title(session, title)
        except Exception as e:
            logger.warning("title_derivation_failed", session_id=session.id, error=str(e))

    def _to_media(self, info: MediaFileInfo) -> Media:
        return Media(
            file_name=info.file_name,
            provider_file_name=info.provider_file_name,
            provider_name=info.provider_name,
            content_type=info.content_type,
            content_hash=info.content_hash,
            media_url=info.public_url or info.uri,
        )
