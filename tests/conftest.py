"""Shared fixtures: a real temporary SQLite store plus scripted gateway and uploader stubs."""

from __future__ import annotations

import asyncio
from typing import BinaryIO, Union

import pytest
import pytest_asyncio

from botmate.ai.context import ContextBuilder, ConversationContext
from botmate.ai.gateway import CompletionGateway, CompletionResult, CompletionSettings, StreamChunk
from botmate.ai.orchestrator import TurnOrchestrator
from botmate.ai.title import TitleDeriver
from botmate.ai.usage import TokenUsage
from botmate.media.models import MediaFileInfo
from botmate.media.uploader import MediaUploader
from botmate.storage.database import Database
from botmate.storage.models import Bot
from botmate.storage.persistence import TurnPersister
from botmate.storage.session_store import SessionStore

TITLE_SETTINGS = CompletionSettings(model="title-model", temperature=0.2, max_tokens=32)
CHAT_SETTINGS = CompletionSettings(model="chat-model", temperature=0.7, max_tokens=256)


def hello_chunks() -> list[StreamChunk]:
    return [
        StreamChunk(text="Hel"),
        StreamChunk(text="lo"),
        StreamChunk(
            text="",
            metadata={"model": "claude-test", "finish_reason": "end_turn", "usage": TokenUsage(12, 3)},
        ),
    ]


class ScriptedGateway(CompletionGateway):
    """Replays canned chunks for streams and canned items for one-shot completions."""

    def __init__(self, chunks: list[StreamChunk] | None = None, completion: list[str] | None = None):
        self.chunks = list(chunks if chunks is not None else hello_chunks())
        self.completion = list(completion if completion is not None else ["Greeting Chat"])
        self.stream_error: Exception | None = None
        self.complete_error: Exception | None = None
        self.block_after_first = False
        self.block_complete = False
        self.stream_calls: list[tuple[ConversationContext, CompletionSettings]] = []
        self.complete_calls: list[tuple[ConversationContext, CompletionSettings]] = []

    async def stream_completion(self, context, settings):
        self.stream_calls.append((context, settings))
        for index, chunk in enumerate(self.chunks):
            yield chunk
            if self.block_after_first and index == 0:
                await asyncio.Event().wait()
        if self.stream_error is not None:
            raise self.stream_error

    async def complete(self, context, settings) -> CompletionResult:
        self.complete_calls.append((context, settings))
        if self.block_complete:
            await asyncio.Event().wait()
        if self.complete_error is not None:
            raise self.complete_error
        return CompletionResult(items=list(self.completion), metadata={"model": settings.model})


class StubUploader(MediaUploader):
    """Keeps uploads in memory and hands out predictable URLs."""

    def __init__(self) -> None:
        self.uploaded: dict[str, bytes] = {}
        self.error: Exception | None = None

    @property
    def provider_name(self) -> str:
        return "stub"

    async def upload(
        self, content: Union[bytes, BinaryIO], file_name: str, content_type: str | None = None
    ) -> MediaFileInfo:
        if self.error is not None:
            raise self.error
        provider_file_name = f"P{len(self.uploaded) + 1}"
        self.uploaded[provider_file_name] = content if isinstance(content, bytes) else content.read()
        return MediaFileInfo(
            file_name=file_name,
            provider_file_name=provider_file_name,
            provider_name=self.provider_name,
            content_type=content_type or "image/png",
            content_hash="aGFzaA==",
            uri=f"https://media.test/{provider_file_name}",
        )

    async def get_public_url(self, provider_file_name: str) -> str:
        return f"https://media.test/{provider_file_name}?sig=ok"


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "botmate.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def store(db) -> SessionStore:
    return SessionStore(db, actor="tester")


@pytest_asyncio.fixture
async def bot(store) -> Bot:
    return await store.create_bot(Bot(name="helper", account_id="acct-1", system_prompt="Be brief."))


@pytest.fixture
def persister(store) -> TurnPersister:
    return TurnPersister(store, actor="tester")


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def uploader() -> StubUploader:
    return StubUploader()


@pytest.fixture
def orchestrator(gateway, store, persister, uploader) -> TurnOrchestrator:
    return TurnOrchestrator(
        gateway=gateway,
        store=store,
        persister=persister,
        context_builder=ContextBuilder(uploader),
        title_deriver=TitleDeriver(gateway, TITLE_SETTINGS),
        default_settings=CHAT_SETTINGS,
    )
