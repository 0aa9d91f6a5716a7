"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Bot:
    name: str
    account_id: str
    system_prompt: Optional[str] = None
    created_by: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_by: str = ""
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 1
    id: Optional[int] = None


@dataclass
class Media:
    file_name: str
    provider_file_name: str
    provider_name: str
    content_type: str
    content_hash: str
    media_url: str
    message_id: Optional[int] = None
    created_by: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_by: str = ""
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 1
    id: Optional[int] = None


@dataclass
class Message:
    user_message: str
    agent_response: str
    model: str = ""
    provider_name: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    session_id: Optional[int] = None
    media: list[Media] = field(default_factory=list)
    session: Optional[Session] = field(default=None, repr=False, compare=False)
    created_by: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_by: str = ""
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 1
    id: Optional[int] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class Session:
    bot_id: int
    title: str = "New Session"
    has_media: bool = False
    bot: Optional[Bot] = field(default=None, compare=False)
    messages: list[Message] = field(default_factory=list, repr=False)
    created_by: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_by: str = ""
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 1
    id: Optional[int] = None


Auditable = Union[Bot, Session, Message, Media]


def stamp_created(entity: Auditable, actor: str) -> None:
    """Set created/updated audit fields and reset the version for a new row."""
    now = utc_now()
    entity.created_by = actor
    entity.created_at = now
    entity.updated_by = actor
    entity.updated_at = now
    entity.version = 1


def stamp_updated(entity: Auditable, actor: str) -> None:
    """Touch the updated audit fields. The version is bumped by the store on write."""
    entity.updated_by = actor
    entity.updated_at = utc_now()
