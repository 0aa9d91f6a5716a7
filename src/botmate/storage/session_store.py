"""Session store: CRUD over bots, sessions, messages and message media."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from botmate.errors import (
    ArgumentNullError,
    BotNotFoundError,
    ConcurrencyConflictError,
    InvalidBotIdError,
    InvalidSessionIdError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)
from botmate.log import get_logger
from botmate.storage.database import Database
from botmate.storage.models import Bot, Media, Message, Session, stamp_created, stamp_updated

logger = get_logger(__name__)

SESSION_ORDER_COLUMNS = frozenset({"id", "title", "created_at", "updated_at"})

SessionPredicate = Callable[[Session], bool]


@contextmanager
def _storage_errors(action: str, **context: Any) -> Iterator[None]:
    """Wrap raw sqlite failures in StorageError, keeping our own errors intact."""
    try:
        yield
    except aiosqlite.Error as exc:
        logger.error("storage_error", action=action, error=str(exc), **context)
        raise StorageError(f"An error occurred while trying to {action}", context) from exc


def _ts(value: datetime) -> str:
    return value.isoformat()


def _is_foreign_key_failure(exc: aiosqlite.IntegrityError) -> bool:
    return "FOREIGN KEY" in str(exc).upper()


class SessionStore:
    """Typed CRUD for bots, sessions, messages and media backed by SQLite."""

    def __init__(self, db: Database, actor: str = "system"):
        self._db = db
        self._actor = actor

    # Bots

    async def create_bot(self, bot: Bot) -> Bot:
        """Insert a bot and return it with its new ID."""
        if bot is None:
            raise ArgumentNullError("bot")
        stamp_created(bot, self._actor)
        with _storage_errors("create the bot", name=bot.name):
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """INSERT INTO bots
                       (account_id, name, system_prompt, created_by, created_at,
                        updated_by, updated_at, version)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        bot.account_id,
                        bot.name,
                        bot.system_prompt,
                        bot.created_by,
                        _ts(bot.created_at),
                        bot.updated_by,
                        _ts(bot.updated_at),
                        bot.version,
                    ),
                )
                bot.id = cursor.lastrowid
        logger.info("bot_created", bot_id=bot.id, name=bot.name)
        return bot

    async def get_bot(self, bot_id: int) -> Optional[Bot]:
        with _storage_errors("load the bot", bot_id=bot_id):
            async with self._db.read() as conn:
                cursor = await conn.execute("SELECT * FROM bots WHERE id = ?", (bot_id,))
                row = await cursor.fetchone()
        return self._row_to_bot(row) if row else None

    async def get_bot_by_name(self, name: str, account_id: str) -> Optional[Bot]:
        with _storage_errors("load the bot", name=name, account_id=account_id):
            async with self._db.read() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM bots WHERE name = ? AND account_id = ?", (name, account_id)
                )
                row = await cursor.fetchone()
        return self._row_to_bot(row) if row else None

    async def update_bot(self, bot: Bot) -> Bot:
        """Save name/prompt changes, guarded by the bot's version."""
        if bot is None:
            raise ArgumentNullError("bot")
        stamp_updated(bot, self._actor)
        with _storage_errors("update the bot", bot_id=bot.id):
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """UPDATE bots
                       SET name = ?, system_prompt = ?, updated_by = ?, updated_at = ?,
                           version = version + 1
                       WHERE id = ? AND version = ?""",
                    (bot.name, bot.system_prompt, bot.updated_by, _ts(bot.updated_at), bot.id, bot.version),
                )
                if cursor.rowcount == 0:
                    raise ConcurrencyConflictError(
                        f"Bot {bot.id} was modified or removed by another writer",
                        {"bot_id": bot.id, "version": bot.version},
                    )
        bot.version += 1
        logger.info("bot_updated", bot_id=bot.id, version=bot.version)
        return bot

    async def delete_bot(self, bot_id: int) -> None:
        """Delete a bot and, through cascading keys, its sessions, messages and media."""
        with _storage_errors("delete the bot", bot_id=bot_id):
            async with self._db.transaction() as conn:
                cursor = await conn.execute("DELETE FROM bots WHERE id = ?", (bot_id,))
                if cursor.rowcount == 0:
                    raise BotNotFoundError(bot_id)
        logger.info("bot_deleted", bot_id=bot_id)

    # Sessions

    async def create_session(self, session: Session) -> Session:
        if session is None:
            raise ArgumentNullError("session")
        if not session.bot_id or session.bot_id <= 0:
            raise InvalidBotIdError(session.bot_id)
        stamp_created(session, self._actor)
        try:
            with _storage_errors("create the chat session", bot_id=session.bot_id):
                async with self._db.transaction() as conn:
                    cursor = await conn.execute(
                        """INSERT INTO sessions
                           (bot_id, title, has_media, created_by, created_at,
                            updated_by, updated_at, version)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            session.bot_id,
                            session.title,
                            int(session.has_media),
                            session.created_by,
                            _ts(session.created_at),
                            session.updated_by,
                            _ts(session.updated_at),
                            session.version,
                        ),
                    )
                    session.id = cursor.lastrowid
        except StorageError as exc:
            cause = exc.__cause__
            if isinstance(cause, aiosqlite.IntegrityError) and _is_foreign_key_failure(cause):
                raise BotNotFoundError(session.bot_id) from cause
            raise
        logger.info("session_created", session_id=session.id, bot_id=session.bot_id)
        return session

    async def get_session(self, session_id: int) -> Optional[Session]:
        """Load a session with its bot, its messages in creation order, and their media."""
        with _storage_errors("load the chat session", session_id=session_id):
            async with self._db.read() as conn:
                cursor = await conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
                row = await cursor.fetchone()
            if row is None:
                return None
            session = self._row_to_session(row)
            session.bot = await self.get_bot(session.bot_id)
            session.messages = await self.get_messages(session_id)
        for message in session.messages:
            message.session = session
        return session

    async def update_session(self, session: Session) -> Session:
        """Save title / has-media changes, guarded by the session's version."""
        if session is None:
            raise ArgumentNullError("session")
        stamp_updated(session, self._actor)
        with _storage_errors("update the chat session", session_id=session.id):
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """UPDATE sessions
                       SET title = ?, has_media = ?, updated_by = ?, updated_at = ?,
                           version = version + 1
                       WHERE id = ? AND version = ?""",
                    (
                        session.title,
                        int(session.has_media),
                        session.updated_by,
                        _ts(session.updated_at),
                        session.id,
                        session.version,
                    ),
                )
                if cursor.rowcount == 0:
                    raise ConcurrencyConflictError(
                        f"Session {session.id} was modified or removed by another writer",
                        {"session_id": session.id, "version": session.version},
                    )
        session.version += 1
        logger.info("session_updated", session_id=session.id, version=session.version)
        return session

    async def delete_session(self, session_id: int) -> None:
        """Delete a session; its messages and their media go with it."""
        logger.info("session_deleting", session_id=session_id)
        with _storage_errors("delete the chat session", session_id=session_id):
            async with self._db.transaction() as conn:
                cursor = await conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
                if cursor.rowcount == 0:
                    raise SessionNotFoundError(session_id)
        logger.info("session_deleted", session_id=session_id)

    async def list_sessions(
        self,
        bot_id: int,
        where: SessionPredicate | None = None,
        order_by: str | None = None,
        ascending: bool = False,
        limit: int | None = None,
    ) -> list[Session]:
        """List a bot's sessions (without messages).

        ``where`` filters in Python before ``limit`` is applied; ``order_by``
        names a session column and sorts descending unless ``ascending``.
        """
        if order_by is not None and order_by not in SESSION_ORDER_COLUMNS:
            raise ValidationError(
                f"Cannot order sessions by {order_by!r}", {"allowed": sorted(SESSION_ORDER_COLUMNS)}
            )
        if limit is not None and limit < 0:
            raise ValidationError(f"limit must not be negative, got {limit}", {"limit": limit})

        sql = "SELECT * FROM sessions WHERE bot_id = ?"
        params: list[Any] = [bot_id]
        if order_by is not None:
            direction = "ASC" if ascending else "DESC"
            sql += f" ORDER BY {order_by} {direction}, id {direction}"
        if limit is not None and where is None:
            sql += " LIMIT ?"
            params.append(limit)

        with _storage_errors("list chat sessions", bot_id=bot_id):
            async with self._db.read() as conn:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()

        sessions = [self._row_to_session(row) for row in rows]
        if where is not None:
            sessions = [s for s in sessions if where(s)]
            if limit is not None:
                sessions = sessions[:limit]
        return sessions

    # Messages

    async def get_messages(self, session_id: int) -> list[Message]:
        """Messages of a session in creation order, each with its media attached."""
        with _storage_errors("load chat messages", session_id=session_id):
            async with self._db.read() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM messages WHERE session_id = ? ORDER BY id ASC",
                    (session_id,),
                )
                message_rows = await cursor.fetchall()
                cursor = await conn.execute(
                    """SELECT mm.* FROM message_media mm
                       JOIN messages m ON m.id = mm.message_id
                       WHERE m.session_id = ?
                       ORDER BY mm.id ASC""",
                    (session_id,),
                )
                media_rows = await cursor.fetchall()

        media_by_message: dict[int, list[Media]] = {}
        for row in media_rows:
            media = self._row_to_media(row)
            media_by_message.setdefault(media.message_id, []).append(media)

        messages = [self._row_to_message(row) for row in message_rows]
        for message in messages:
            message.media = media_by_message.get(message.id, [])
        return messages

    async def insert_turn(
        self,
        session_id: int,
        message: Message,
        media: Sequence[Media] = (),
        expected_version: int | None = None,
    ) -> int:
        """Write a message, its media and the session touch in one transaction.

        The owning session's version is bumped (and its has-media flag set when
        media rows are written). Returns the session's new version.
        """
        if session_id is None or session_id <= 0:
            raise InvalidSessionIdError(session_id)
        try:
            with _storage_errors("create the chat message", session_id=session_id):
                async with self._db.transaction() as conn:
                    cursor = await conn.execute(
                        """INSERT INTO messages
                           (session_id, user_message, agent_response, model, provider_name,
                            input_tokens, output_tokens, created_by, created_at,
                            updated_by, updated_at, version)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            session_id,
                            message.user_message,
                            message.agent_response,
                            message.model,
                            message.provider_name,
                            message.input_tokens,
                            message.output_tokens,
                            message.created_by,
                            _ts(message.created_at),
                            message.updated_by,
                            _ts(message.updated_at),
                            message.version,
                        ),
                    )
                    message_id = cursor.lastrowid

                    media_ids: list[int] = []
                    for item in media:
                        cursor = await conn.execute(
                            """INSERT INTO message_media
                               (message_id, file_name, provider_file_name, provider_name,
                                content_type, content_hash, media_url, created_by, created_at,
                                updated_by, updated_at, version)
                               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                            (
                                message_id,
                                item.file_name,
                                item.provider_file_name,
                                item.provider_name,
                                item.content_type,
                                item.content_hash,
                                item.media_url,
                                item.created_by,
                                _ts(item.created_at),
                                item.updated_by,
                                _ts(item.updated_at),
                                item.version,
                            ),
                        )
                        media_ids.append(cursor.lastrowid)

                    sql = """UPDATE sessions
                             SET has_media = CASE WHEN ? THEN 1 ELSE has_media END,
                                 updated_by = ?, updated_at = ?, version = version + 1
                             WHERE id = ?"""
                    params: list[Any] = [
                        int(bool(media)),
                        message.updated_by,
                        _ts(message.updated_at),
                        session_id,
                    ]
                    if expected_version is not None:
                        sql += " AND version = ?"
                        params.append(expected_version)
                    cursor = await conn.execute(sql, params)
                    if cursor.rowcount == 0:
                        raise ConcurrencyConflictError(
                            f"Session {session_id} was modified or removed while the turn was running",
                            {"session_id": session_id, "expected_version": expected_version},
                        )

                    cursor = await conn.execute("SELECT version FROM sessions WHERE id = ?", (session_id,))
                    row = await cursor.fetchone()
                    new_version = row["version"]
        except StorageError as exc:
            cause = exc.__cause__
            if isinstance(cause, aiosqlite.IntegrityError) and _is_foreign_key_failure(cause):
                raise ConcurrencyConflictError(
                    f"Session {session_id} no longer exists", {"session_id": session_id}
                ) from cause
            raise

        # Only publish IDs once the transaction has committed.
        message.id = message_id
        message.session_id = session_id
        for item, media_id in zip(media, media_ids):
            item.id = media_id
            item.message_id = message_id
        message.media = list(media)
        logger.info(
            "chat_message_created",
            message_id=message_id,
            session_id=session_id,
            media_count=len(media_ids),
        )
        return new_version

    # Row mapping

    @staticmethod
    def _row_to_bot(row: aiosqlite.Row) -> Bot:
        return Bot(
            id=row["id"],
            account_id=row["account_id"],
            name=row["name"],
            system_prompt=row["system_prompt"],
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_by=row["updated_by"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        return Session(
            id=row["id"],
            bot_id=row["bot_id"],
            title=row["title"],
            has_media=bool(row["has_media"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_by=row["updated_by"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            user_message=row["user_message"],
            agent_response=row["agent_response"],
            model=row["model"],
            provider_name=row["provider_name"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_by=row["updated_by"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )

    @staticmethod
    def _row_to_media(row: aiosqlite.Row) -> Media:
        return Media(
            id=row["id"],
            message_id=row["message_id"],
            file_name=row["file_name"],
            provider_file_name=row["provider_file_name"],
            provider_name=row["provider_name"],
            content_type=row["content_type"],
            content_hash=row["content_hash"],
            media_url=row["media_url"],
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_by=row["updated_by"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )
