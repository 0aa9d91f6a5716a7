"""Build the conversation context sent to the completion gateway for one turn."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from botmate.errors import ArgumentNullError, EmptyMessageError, MissingBotReferenceError
from botmate.log import get_logger
from botmate.media.models import MediaFileInfo, UploadFile
from botmate.media.uploader import MediaUploader
from botmate.storage.models import Session

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant trained to provide information and answer questions about "
    "our products and services. Always be polite and professional. Keep your answers concise "
    "and relevant. Do not provide personal opinions or guess answers to questions outside your "
    "training. If you cannot provide an answer, guide the user on how they can get further "
    "assistance. Remember to respect user privacy and do not ask for personal information "
    "unless necessary for the service."
)

Role = Literal["user", "assistant"]


@dataclass(frozen=True, slots=True)
class TextItem:
    text: str


@dataclass(frozen=True, slots=True)
class ImageItem:
    url: str
    content_type: str = ""


ContentItem = Union[TextItem, ImageItem]


@dataclass(slots=True)
class ContextTurn:
    role: Role
    items: list[ContentItem]

    @property
    def text(self) -> str:
        return "".join(item.text for item in self.items if isinstance(item, TextItem))


@dataclass(slots=True)
class ConversationContext:
    """Ordered conversational input: system prompt, replayed pairs, then the new turn."""

    system_prompt: str
    turns: list[ContextTurn] = field(default_factory=list)

    def add_user_text(self, text: str) -> None:
        self.turns.append(ContextTurn("user", [TextItem(text)]))

    def add_assistant_text(self, text: str) -> None:
        self.turns.append(ContextTurn("assistant", [TextItem(text)]))

    @classmethod
    def single_prompt(cls, prompt: str, system_prompt: str = "") -> ConversationContext:
        """A context with no history, just one user message."""
        context = cls(system_prompt=system_prompt)
        context.add_user_text(prompt)
        return context

    def to_anthropic_messages(self) -> list[dict[str, Any]]:
        """Convert to the Anthropic messages API format."""
        messages: list[dict[str, Any]] = []
        for turn in self.turns:
            if len(turn.items) == 1 and isinstance(turn.items[0], TextItem):
                messages.append({"role": turn.role, "content": turn.items[0].text})
                continue
            content: list[dict[str, Any]] = []
            for item in turn.items:
                if isinstance(item, ImageItem):
                    content.append({"type": "image", "source": {"type": "url", "url": item.url}})
                else:
                    content.append({"type": "text", "text": item.text})
            messages.append({"role": turn.role, "content": content})
        return messages


@dataclass(slots=True)
class PreparedContext:
    context: ConversationContext
    uploads: list[MediaFileInfo] = field(default_factory=list)


class ContextBuilder:
    """Replays a session's history and appends the new user turn with its attachments.

    Only the newest turn's attachments are sent as images; earlier turns are
    replayed as plain text pairs.
    """

    def __init__(self, uploader: MediaUploader, default_system_prompt: str | None = None):
        self._uploader = uploader
        self._default_system_prompt = default_system_prompt or DEFAULT_SYSTEM_PROMPT

    async def build(
        self,
        session: Session,
        message: str,
        attachments: Sequence[UploadFile] | None = None,
    ) -> PreparedContext:
        if session is None:
            raise ArgumentNullError("session")
        if session.bot is None:
            raise MissingBotReferenceError(session.id)
        if message is None or not message.strip():
            raise EmptyMessageError("message")

        context = ConversationContext(system_prompt=session.bot.system_prompt or self._default_system_prompt)

        # Callers wanting a context window must trim session.messages first.
        for previous in session.messages:
            context.add_user_text(previous.user_message)
            context.add_assistant_text(previous.agent_response)

        items: list[ContentItem] = []
        uploads: list[MediaFileInfo] = []
        for attachment in attachments or []:
            info = await self._uploader.upload(attachment.content, attachment.name, attachment.content_type)
            info.public_url = await self._uploader.get_public_url(info.provider_file_name)
            items.append(ImageItem(url=info.public_url, content_type=info.content_type))
            uploads.append(info)

        items.append(TextItem(message))
        context.turns.append(ContextTurn("user", items))

        logger.debug(
            "context_built",
            session_id=session.id,
            replayed=len(session.messages),
            attachments=len(uploads),
        )
        return PreparedContext(context=context, uploads=uploads)
