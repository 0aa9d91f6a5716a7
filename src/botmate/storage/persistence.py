"""Commits a completed chat turn (message + media) as one unit."""

from __future__ import annotations

from collections.abc import Sequence

from botmate.errors import ArgumentNullError, EmptyMessageError, InvalidSessionIdError
from botmate.log import get_logger
from botmate.storage.models import Media, Message, Session, stamp_created
from botmate.storage.session_store import SessionStore

logger = get_logger(__name__)


class TurnPersister:
    """Thin facade over the session store that stamps audit fields and writes atomically."""

    def __init__(self, store: SessionStore, actor: str = "system"):
        self._store = store
        self._actor = actor

    async def persist_turn(
        self,
        session_id: int,
        message: Message,
        media: Sequence[Media] | None = None,
        expected_version: int | None = None,
    ) -> Message:
        """Write the message, then its media, then flip the session's has-media flag.

        Everything happens in a single store transaction: on failure nothing is
        written. Returns the message with its new ID and media attached.
        """
        await self._write(session_id, message, media, expected_version)
        return message

    async def persist_turn_for(
        self, session: Session, message: Message, media: Sequence[Media] | None = None
    ) -> Message:
        """Persist against a loaded session, checking and then advancing its version."""
        if session is None:
            raise ArgumentNullError("session")
        new_version = await self._write(session.id, message, media, session.version)

        session.version = new_version
        session.updated_by = message.updated_by
        session.updated_at = message.updated_at
        if message.media:
            session.has_media = True
        session.messages.append(message)
        message.session = session
        return message

    async def _write(
        self,
        session_id: int | None,
        message: Message,
        media: Sequence[Media] | None,
        expected_version: int | None,
    ) -> int:
        if message is None:
            raise ArgumentNullError("message")
        if session_id is None or session_id <= 0:
            raise InvalidSessionIdError(session_id)

        items = list(media or [])
        stamp_created(message, self._actor)
        for item in items:
            stamp_created(item, self._actor)

        return await self._store.insert_turn(session_id, message, items, expected_version=expected_version)

    async def update_session_title(self, session: Session, title: str) -> Session:
        """Overwrite the session title; store errors propagate."""
        if session is None:
            raise ArgumentNullError("session")
        if title is None or not title.strip():
            raise EmptyMessageError("title")
        previous = session.title
        session.title = title
        try:
            await self._store.update_session(session)
        except Exception:
            session.title = previous
            raise
        logger.info("session_title_updated", session_id=session.id, title=title)
        return session
