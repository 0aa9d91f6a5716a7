"""Attachment and uploaded-file models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Optional, Union


@dataclass(frozen=True, slots=True)
class UploadFile:
    """A file the user attached to a message, not yet uploaded."""

    name: str
    content: Union[bytes, BinaryIO]
    content_type: Optional[str] = None  # e.g. "image/png"; guessed from name when absent


@dataclass(slots=True)
class MediaFileInfo:
    """Result of a durable upload."""

    file_name: str
    provider_file_name: str
    provider_name: str
    content_type: str
    content_hash: str  # base64 MD5 of the stored bytes
    uri: str
    public_url: str = ""
