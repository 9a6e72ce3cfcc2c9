"""Object storage for chat media: upload bytes, get back a public URL."""
from __future__ import annotations

import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse

from boto3.session import Session
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class StorageConfigurationError(RuntimeError):
    """Raised when object storage settings are missing or invalid."""


class StorageUploadError(RuntimeError):
    """Raised when an upload to object storage fails."""


@dataclass(frozen=True)
class StorageConfig:
    key: str
    secret: str
    region: str
    bucket: str
    api_endpoint: str
    public_endpoint: str


@dataclass(frozen=True)
class StoredObject:
    url: str
    key: str
    bucket: str
    content_type: str
    size: int


class ObjectStorage(ABC):
    @abstractmethod
    async def upload(
        self,
        data: bytes,
        *,
        filename: str | None,
        content_type: str | None = None,
        folder: str = "uploads",
    ) -> StoredObject:
        ...


def load_storage_config(settings: Settings | None = None) -> StorageConfig:
    """Validate the Spaces settings and derive the API and public endpoints."""

    settings = settings or get_settings()
    required = {
        "DO_SPACES_KEY": settings.spaces_key,
        "DO_SPACES_SECRET": settings.spaces_secret,
        "DO_SPACES_REGION": settings.spaces_region,
        "DO_SPACES_NAME": settings.spaces_bucket,
        "DO_SPACES_ENDPOINT": settings.spaces_endpoint,
    }
    missing = [name for name, value in required.items() if not value or not value.strip()]
    if missing:
        raise StorageConfigurationError(
            "Missing required object storage configuration: " + ", ".join(sorted(missing))
        )

    region = str(settings.spaces_region).strip()
    bucket = str(settings.spaces_bucket).strip()
    public_endpoint = str(settings.spaces_endpoint).strip().rstrip("/")
    parsed = urlparse(public_endpoint)
    if not parsed.scheme:
        public_endpoint = f"https://{public_endpoint.lstrip(':/')}"
        parsed = urlparse(public_endpoint)
    if not (parsed.netloc or parsed.path):
        raise StorageConfigurationError("DO_SPACES_ENDPOINT must include a hostname.")

    return StorageConfig(
        key=str(settings.spaces_key).strip(),
        secret=str(settings.spaces_secret).strip(),
        region=region,
        bucket=bucket,
        api_endpoint=f"https://{region}.digitaloceanspaces.com",
        public_endpoint=parsed.geturl().rstrip("/"),
    )


@lru_cache(maxsize=1)
def get_storage_client() -> BaseClient:
    config = load_storage_config()
    return Session().client(
        "s3",
        region_name=config.region,
        endpoint_url=config.api_endpoint,
        aws_access_key_id=config.key,
        aws_secret_access_key=config.secret,
    )


def _sanitize_segments(parts: Iterable[str]) -> list[str]:
    sanitized: list[str] = []
    for part in parts:
        if part in {"", ".", ".."}:
            continue
        cleaned = re.sub(r"[^A-Za-z0-9._-]", "-", part.strip())
        cleaned = re.sub(r"-+", "-", cleaned).strip("-._")
        if cleaned:
            sanitized.append(cleaned)
    return sanitized


def object_key(filename: str | None, folder: str) -> str:
    """Namespaced, collision-free key for an upload inside ``folder``."""

    extension = Path(filename or "").suffix.lower()
    if extension and not re.fullmatch(r"\.[A-Za-z0-9]{1,10}", extension):
        extension = ""
    safe_folder = "/".join(_sanitize_segments((folder or "uploads").replace("\\", "/").split("/"))) or "uploads"
    return f"{safe_folder}/{uuid.uuid4().hex}{extension}"


class SpacesStorage(ObjectStorage):
    """DigitalOcean Spaces (S3-compatible) upload via boto3."""

    def __init__(self, config: StorageConfig | None = None, client: BaseClient | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def config(self) -> StorageConfig:
        if self._config is None:
            self._config = load_storage_config()
        return self._config

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    def public_url(self, key: str) -> str:
        normalized = key.lstrip("/")
        endpoint = self.config.public_endpoint.rstrip("/")
        return f"{endpoint}/{normalized}" if normalized else endpoint

    async def upload(
        self,
        data: bytes,
        *,
        filename: str | None,
        content_type: str | None = None,
        folder: str = "uploads",
    ) -> StoredObject:
        if not data:
            raise StorageUploadError("Refusing to upload an empty file")
        config = self.config
        s3_client = self.client
        key = object_key(filename, folder)
        resolved_type = (content_type or "application/octet-stream").strip() or "application/octet-stream"

        def _upload() -> None:
            try:
                s3_client.put_object(
                    Bucket=config.bucket,
                    Key=key,
                    Body=data,
                    ACL="public-read",
                    ContentType=resolved_type,
                )
            except (ClientError, BotoCoreError) as exc:
                logger.exception("Upload to object storage failed: %s", exc)
                raise StorageUploadError("Upload to object storage failed") from exc

        await run_in_threadpool(_upload)
        logger.info("Uploaded %s (%d bytes) to %s", key, len(data), config.bucket)
        return StoredObject(
            url=self.public_url(key),
            key=key,
            bucket=config.bucket,
            content_type=resolved_type,
            size=len(data),
        )


__all__ = [
    "ObjectStorage",
    "SpacesStorage",
    "StorageConfig",
    "StoredObject",
    "StorageConfigurationError",
    "StorageUploadError",
    "get_storage_client",
    "load_storage_config",
    "object_key",
]
