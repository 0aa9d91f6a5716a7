"""Summarize a session's history into a short, single-line title."""

from __future__ import annotations

import re

from botmate.ai.context import ConversationContext
from botmate.ai.gateway import CompletionGateway, CompletionSettings
from botmate.errors import ArgumentNullError
from botmate.log import get_logger
from botmate.storage.models import Session

logger = get_logger(__name__)

TITLE_PROMPT = """
From the following conversation, please extract a title for the chat.
Here is the conversation:

{body}

- Keep the title to just a few short words
- Just return the title on a single line and nothing else.
- Title not exceed {max_length} characters
"""

_WHITESPACE = re.compile(r"\s+")
_QUOTES = "\"'`“”‘’"


def clean_title(raw: str, max_length: int = 80) -> str:
    """Collapse a model answer into one trimmed line of at most max_length characters."""
    line = _WHITESPACE.sub(" ", raw).strip()
    line = line.removeprefix("Title:").removeprefix("title:").strip()
    line = line.strip(_QUOTES).strip()
    if len(line) > max_length:
        line = line[:max_length].rstrip()
    return line


class TitleDeriver:
    """One-shot gateway call that labels a session from its messages."""

    def __init__(self, gateway: CompletionGateway, settings: CompletionSettings, max_length: int = 80):
        self._gateway = gateway
        self._settings = settings
        self._max_length = max_length

    @property
    def settings(self) -> CompletionSettings:
        return self._settings

    def build_prompt(self, session: Session) -> str:
        body = "".join(
            f"User Message: {m.user_message}\n\nAgent Response: {m.agent_response}\n"
            for m in session.messages
        )
        return TITLE_PROMPT.format(body=body, max_length=self._max_length)

    async def derive(self, session: Session) -> str | None:
        """Return a cleaned title, or None when the model produced nothing usable."""
        if session is None:
            raise ArgumentNullError("session")
        context = ConversationContext.single_prompt(self.build_prompt(session))
        result = await self._gateway.complete(context, self._settings)
        title = clean_title("".join(result.items), self._max_length)
        if not title:
            logger.warning("title_empty", session_id=session.id)
            return None
        logger.debug("title_derived", session_id=session.id, title=title)
        return title
