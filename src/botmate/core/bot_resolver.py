"""Resolve bots by name for an account, creating or refreshing them from config."""

from __future__ import annotations

from collections.abc import Mapping

from botmate.core.cache import BotCache
from botmate.errors import ArgumentNullError, BotNotFoundError
from botmate.log import get_logger
from botmate.storage.models import Bot
from botmate.storage.session_store import SessionStore

logger = get_logger(__name__)


class BotResolver:
    """Looks bots up through an injected cache, falling back to the store."""

    def __init__(
        self,
        store: SessionStore,
        cache: BotCache,
        account_id: str,
        bot_prompts: Mapping[str, str] | None = None,
    ):
        self._store = store
        self._cache = cache
        self._account_id = account_id
        self._bot_prompts = dict(bot_prompts or {})

    async def get_bot(self, name: str, create_if_missing: bool = False) -> Bot:
        """Return the named bot for the configured account.

        A configured system prompt that differs from the stored one is written
        back. Unknown bots raise BotNotFoundError unless ``create_if_missing``.
        """
        if not name or not name.strip():
            raise ArgumentNullError("name")

        cached = self._cache.get(name, self._account_id)
        if cached is not None:
            return cached

        configured_prompt = self._bot_prompts.get(name)
        bot = await self._store.get_bot_by_name(name, self._account_id)
        if bot is not None:
            if configured_prompt and configured_prompt != bot.system_prompt:
                bot.system_prompt = configured_prompt
                await self._store.update_bot(bot)
                logger.info("bot_prompt_refreshed", bot_id=bot.id, name=name)
            self._cache.put(bot)
            return bot

        if not create_if_missing:
            raise BotNotFoundError(name)

        bot = await self._store.create_bot(
            Bot(name=name, account_id=self._account_id, system_prompt=configured_prompt or None)
        )
        self._cache.put(bot)
        return bot

    async def update_system_prompt(self, bot: Bot, system_prompt: str | None) -> Bot:
        """Change a bot's prompt and drop its cached copy."""
        bot.system_prompt = system_prompt
        try:
            await self._store.update_bot(bot)
        finally:
            self._cache.invalidate(bot.name, bot.account_id)
        return bot
