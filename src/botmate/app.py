"""Application wiring - builds all components from config and manages lifecycle."""

from __future__ import annotations

from botmate.ai.context import ContextBuilder
from botmate.ai.gateway import AnthropicGateway, CompletionGateway, CompletionSettings
from botmate.ai.orchestrator import TurnOrchestrator
from botmate.ai.title import TitleDeriver
from botmate.config import AppConfig
from botmate.core.bot_resolver import BotResolver
from botmate.core.cache import BotCache
from botmate.log import get_logger
from botmate.media.uploader import LocalMediaUploader, MediaUploader
from botmate.storage.database import Database
from botmate.storage.persistence import TurnPersister
from botmate.storage.session_store import SessionStore

logger = get_logger(__name__)


class BotMateApp:
    """Top-level application object.

    The gateway and uploader can be injected, otherwise they are built from
    the ``anthropic`` and ``media`` config sections.
    """

    def __init__(
        self,
        config: AppConfig,
        gateway: CompletionGateway | None = None,
        uploader: MediaUploader | None = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.store = SessionStore(self.db, actor=config.actor)
        self.persister = TurnPersister(self.store, actor=config.actor)
        self.uploader = uploader or LocalMediaUploader(config.media)
        self.gateway = gateway or self._create_gateway()
        self.context_builder = ContextBuilder(self.uploader, config.chat.system_prompt)

        title_deriver = None
        if config.title.enabled:
            title_deriver = TitleDeriver(
                self.gateway,
                CompletionSettings(
                    model=config.title.model,
                    temperature=config.title.temperature,
                    max_tokens=config.title.max_tokens,
                ),
                max_length=config.title.max_length,
            )

        self.orchestrator = TurnOrchestrator(
            gateway=self.gateway,
            store=self.store,
            persister=self.persister,
            context_builder=self.context_builder,
            title_deriver=title_deriver,
            default_settings=CompletionSettings(
                model=config.chat.model,
                temperature=config.chat.temperature,
                max_tokens=config.chat.max_tokens,
            ),
            provider_name=config.chat.provider_name,
        )
        self.bot_cache = BotCache(config.bot_cache.ttl_seconds)
        self.bot_resolver = BotResolver(
            self.store,
            self.bot_cache,
            account_id=config.account,
            bot_prompts=config.bot_prompts(),
        )

    async def start(self) -> None:
        await self.db.initialize()
        logger.info(
            "botmate_started",
            db_path=self.config.storage.db_path,
            model=self.config.chat.model,
            media_provider=self.uploader.provider_name,
        )

    async def stop(self) -> None:
        self.bot_cache.clear()
        await self.db.close()
        logger.info("botmate_stopped")

    async def __aenter__(self) -> BotMateApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _create_gateway(self) -> CompletionGateway:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config")
        return AnthropicGateway(self.config.anthropic)
