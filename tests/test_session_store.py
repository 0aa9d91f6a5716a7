"""SessionStore against a real temporary SQLite database."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from botmate.errors import (
    BotNotFoundError,
    ConcurrencyConflictError,
    InvalidBotIdError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)
from botmate.storage.models import Bot, Media, Message, Session, stamp_created


def _message(text: str = "Hi") -> Message:
    message = Message(user_message=text, agent_response=f"re: {text}", model="m", provider_name="p")
    stamp_created(message, "tester")
    return message


def _media(name: str) -> Media:
    media = Media(
        file_name=name,
        provider_file_name=name.upper(),
        provider_name="stub",
        content_type="image/png",
        content_hash="aGFzaA==",
        media_url=f"https://media.test/{name}",
    )
    stamp_created(media, "tester")
    return media


@pytest.mark.asyncio
async def test_create_and_get_bot(store) -> None:
    bot = await store.create_bot(Bot(name="helper", account_id="acct", system_prompt="hi"))

    loaded = await store.get_bot(bot.id)
    by_name = await store.get_bot_by_name("helper", "acct")

    assert loaded == by_name
    assert loaded.created_by == "tester"
    assert loaded.version == 1
    assert await store.get_bot_by_name("helper", "other-acct") is None


@pytest.mark.asyncio
async def test_duplicate_bot_name_per_account_is_a_storage_error(store) -> None:
    await store.create_bot(Bot(name="helper", account_id="acct"))
    with pytest.raises(StorageError):
        await store.create_bot(Bot(name="helper", account_id="acct"))


@pytest.mark.asyncio
async def test_update_bot_bumps_version_and_detects_stale_copy(store, bot) -> None:
    stale = await store.get_bot(bot.id)

    bot.system_prompt = "New prompt"
    await store.update_bot(bot)

    assert bot.version == 2
    assert (await store.get_bot(bot.id)).system_prompt == "New prompt"
    stale.system_prompt = "Other"
    with pytest.raises(ConcurrencyConflictError):
        await store.update_bot(stale)


@pytest.mark.asyncio
async def test_create_session_validates_bot(store) -> None:
    with pytest.raises(InvalidBotIdError):
        await store.create_session(Session(bot_id=0))
    with pytest.raises(BotNotFoundError):
        await store.create_session(Session(bot_id=12345))


@pytest.mark.asyncio
async def test_get_session_loads_bot_messages_and_media(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id, title="T"))
    first = _message("one")
    second = _message("two")
    await store.insert_turn(session.id, first, [_media("a.png")])
    await store.insert_turn(session.id, second)

    loaded = await store.get_session(session.id)

    assert loaded.bot.name == "helper"
    assert [m.user_message for m in loaded.messages] == ["one", "two"]
    assert [m.file_name for m in loaded.messages[0].media] == ["a.png"]
    assert loaded.messages[1].media == []
    assert all(m.session is loaded for m in loaded.messages)
    assert loaded.has_media is True
    assert await store.get_session(999) is None


@pytest.mark.asyncio
async def test_messages_keep_insertion_order_when_clock_steps_back(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))
    first = _message("first")
    second = _message("second")
    second.created_at = first.created_at - timedelta(hours=1)
    await store.insert_turn(session.id, first)
    await store.insert_turn(session.id, second)

    assert [m.user_message for m in await store.get_messages(session.id)] == ["first", "second"]


@pytest.mark.asyncio
async def test_insert_turn_bumps_version_and_sets_ids_after_commit(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))
    message = _message()
    media = [_media("a.png"), _media("b.png")]

    new_version = await store.insert_turn(session.id, message, media, expected_version=1)

    assert new_version == 2
    assert message.id is not None
    assert message.session_id == session.id
    assert [m.message_id for m in media] == [message.id, message.id]
    assert media[0].id < media[1].id


@pytest.mark.asyncio
async def test_insert_turn_stale_version_writes_nothing(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))
    await store.insert_turn(session.id, _message("first"), expected_version=1)

    late = _message("late")
    with pytest.raises(ConcurrencyConflictError):
        await store.insert_turn(session.id, late, [_media("x.png")], expected_version=1)

    assert late.id is None
    loaded = await store.get_session(session.id)
    assert [m.user_message for m in loaded.messages] == ["first"]
    assert loaded.has_media is False


@pytest.mark.asyncio
async def test_insert_turn_into_deleted_session_conflicts(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))
    await store.delete_session(session.id)

    with pytest.raises(ConcurrencyConflictError):
        await store.insert_turn(session.id, _message())


@pytest.mark.asyncio
async def test_delete_session_cascades(store, db, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))
    await store.insert_turn(session.id, _message(), [_media("a.png")])

    await store.delete_session(session.id)

    for table in ("messages", "message_media"):
        cursor = await db.conn.execute(f"SELECT COUNT(*) FROM {table}")
        assert (await cursor.fetchone())[0] == 0
    with pytest.raises(SessionNotFoundError):
        await store.delete_session(session.id)


@pytest.mark.asyncio
async def test_delete_bot_cascades_to_sessions(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))

    await store.delete_bot(bot.id)

    assert await store.get_session(session.id) is None
    with pytest.raises(BotNotFoundError):
        await store.delete_bot(bot.id)


@pytest.mark.asyncio
async def test_update_session_is_version_checked(store, bot) -> None:
    session = await store.create_session(Session(bot_id=bot.id))
    stale = await store.get_session(session.id)

    session.title = "Renamed"
    await store.update_session(session)

    stale.title = "Lost update"
    with pytest.raises(ConcurrencyConflictError):
        await store.update_session(stale)
    assert (await store.get_session(session.id)).title == "Renamed"


@pytest.mark.asyncio
async def test_list_sessions_filters_before_limit(store, bot) -> None:
    """The predicate runs before the cap, so matches further down are still found."""

    for title in ("alpha", "beta", "alpha two", "gamma", "alpha three"):
        await store.create_session(Session(bot_id=bot.id, title=title))

    newest_first = await store.list_sessions(bot.id, order_by="id")
    alphas = await store.list_sessions(
        bot.id, where=lambda s: s.title.startswith("alpha"), order_by="id", ascending=True, limit=2
    )
    capped = await store.list_sessions(bot.id, order_by="id", limit=2)

    assert [s.title for s in newest_first] == ["alpha three", "gamma", "alpha two", "beta", "alpha"]
    assert [s.title for s in alphas] == ["alpha", "alpha two"]
    assert [s.title for s in capped] == ["alpha three", "gamma"]
    assert all(s.messages == [] for s in newest_first)


@pytest.mark.asyncio
async def test_list_sessions_rejects_unknown_column_and_negative_limit(store, bot) -> None:
    with pytest.raises(ValidationError):
        await store.list_sessions(bot.id, order_by="title; DROP TABLE sessions")
    with pytest.raises(ValidationError):
        await store.list_sessions(bot.id, limit=-1)


@pytest.mark.asyncio
async def test_reads_never_see_a_turn_that_rolls_back(store, db, bot, monkeypatch) -> None:
    """A listing that lands mid-transaction waits and sees only committed rows."""

    session = await store.create_session(Session(bot_id=bot.id))
    conn = db.conn
    real_execute = conn.execute
    message_written = asyncio.Event()
    release_writer = asyncio.Event()

    async def _pausing_execute(sql, *args, **kwargs):
        result = await real_execute(sql, *args, **kwargs)
        if sql.lstrip().startswith("INSERT INTO messages"):
            message_written.set()
            await release_writer.wait()
        return result

    monkeypatch.setattr(conn, "execute", _pausing_execute)

    writer = asyncio.create_task(store.insert_turn(session.id, _message(), expected_version=99))
    await message_written.wait()
    reader = asyncio.create_task(store.get_messages(session.id))
    await asyncio.sleep(0.05)
    assert not reader.done()

    release_writer.set()
    with pytest.raises(ConcurrencyConflictError):
        await writer

    assert await reader == []
