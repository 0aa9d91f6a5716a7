"""Media uploader interface and a local-filesystem implementation with signed URLs."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import mimetypes
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO, Union
from urllib.parse import parse_qs, urlencode, urlsplit

from botmate.config import MediaConfig
from botmate.errors import ArgumentNullError, MediaUploadError
from botmate.log import get_logger
from botmate.media.models import MediaFileInfo

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class MediaUploader(ABC):
    """Durable byte storage that can hand out time-limited public URLs."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def upload(
        self, content: Union[bytes, BinaryIO], file_name: str, content_type: str | None = None
    ) -> MediaFileInfo:
        """Store the bytes under a unique provider name."""
        ...

    @abstractmethod
    async def get_public_url(self, provider_file_name: str) -> str:
        """Return a URL that grants read access for a limited time."""
        ...


def _read_content(content: Union[bytes, BinaryIO]) -> bytes:
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    if not hasattr(content, "read") or (hasattr(content, "readable") and not content.readable()):
        raise MediaUploadError("Stream must be readable")
    data = content.read()
    if not isinstance(data, (bytes, bytearray)):
        raise MediaUploadError("Stream must yield bytes")
    return bytes(data)


class LocalMediaUploader(MediaUploader):
    """Stores uploads under a directory and signs URLs with HMAC-SHA256."""

    def __init__(self, config: MediaConfig, clock: Callable[[], float] = time.time):
        self._config = config
        self._root = Path(config.root_dir)
        self._base_url = config.base_url.rstrip("/")
        self._key = config.signing_key.encode("utf-8")
        self._clock = clock

    @property
    def provider_name(self) -> str:
        return self._config.provider_name

    async def upload(
        self, content: Union[bytes, BinaryIO], file_name: str, content_type: str | None = None
    ) -> MediaFileInfo:
        if content is None:
            raise ArgumentNullError("content")
        if not file_name:
            raise ArgumentNullError("file_name")

        provider_file_name = uuid.uuid4().hex.upper()
        logger.info("media_upload_started", file_name=file_name, provider_file_name=provider_file_name)
        try:
            data = _read_content(content)
            await asyncio.to_thread(self._write, provider_file_name, data)
        except MediaUploadError:
            logger.error("media_upload_failed", file_name=file_name)
            raise
        except OSError as exc:
            logger.error("media_upload_failed", file_name=file_name, error=str(exc))
            raise MediaUploadError(
                f"Error occurred while uploading file {file_name}", {"file_name": file_name}
            ) from exc

        content_hash = base64.b64encode(hashlib.md5(data).digest()).decode("ascii")
        guessed, _ = mimetypes.guess_type(file_name)
        info = MediaFileInfo(
            file_name=file_name,
            provider_file_name=provider_file_name,
            provider_name=self.provider_name,
            content_type=content_type or guessed or DEFAULT_CONTENT_TYPE,
            content_hash=content_hash,
            uri=f"{self._base_url}/{provider_file_name}",
        )
        logger.info("media_upload_completed", file_name=file_name, size=len(data))
        return info

    async def get_public_url(self, provider_file_name: str) -> str:
        if not provider_file_name:
            raise ArgumentNullError("provider_file_name")
        expires = int(self._clock()) + self._config.url_ttl_seconds
        query = urlencode({"expires": expires, "signature": self._sign(provider_file_name, expires)})
        return f"{self._base_url}/{provider_file_name}?{query}"

    def verify_url(self, url: str) -> bool:
        """Check the signature and expiry of a URL produced by get_public_url."""
        parts = urlsplit(url)
        provider_file_name = parts.path.rsplit("/", 1)[-1]
        params = parse_qs(parts.query)
        try:
            expires = int(params["expires"][0])
            signature = params["signature"][0]
        except (KeyError, IndexError, ValueError):
            return False
        if expires < self._clock():
            return False
        return hmac.compare_digest(signature, self._sign(provider_file_name, expires))

    def path_for(self, provider_file_name: str) -> Path:
        return self._root / provider_file_name

    def _sign(self, provider_file_name: str, expires: int) -> str:
        payload = f"{provider_file_name}:{expires}".encode("utf-8")
        return hmac.new(self._key, payload, hashlib.sha256).hexdigest()

    def _write(self, provider_file_name: str, data: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        self.path_for(provider_file_name).write_bytes(data)
