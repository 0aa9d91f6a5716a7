"""Time-based cache for resolved bots."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from botmate.storage.models import Bot

BotKey = tuple[str, str]  # (bot name, account id)


@dataclass(slots=True)
class _Entry:
    bot: Bot
    expires_at: float


class BotCache:
    """Maps (name, account) to a Bot for ``ttl_seconds``.

    Entries also go away on :meth:`invalidate` (called when a bot is updated)
    or :meth:`clear`. A TTL of 0 disables caching.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[BotKey, _Entry] = {}

    def get(self, name: str, account_id: str) -> Bot | None:
        key = (name, account_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.bot

    def put(self, bot: Bot) -> None:
        if self._ttl <= 0:
            return
        self._entries[(bot.name, bot.account_id)] = _Entry(bot, self._clock() + self._ttl)

    def invalidate(self, name: str, account_id: str) -> None:
        self._entries.pop((name, account_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
