from __future__ import annotations

import re

import pytest
from botocore.exceptions import ClientError

from wolfpack.config import Settings
from wolfpack.remote.storage import (
    SpacesStorage,
    StorageConfigurationError,
    StorageUploadError,
    load_storage_config,
    object_key,
)


class FakeS3Client:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    def put_object(self, **kwargs) -> dict:
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.calls.append(kwargs)
        return {}


def _settings(**overrides) -> Settings:
    values = {
        "DO_SPACES_KEY": "key",
        "DO_SPACES_SECRET": "secret",
        "DO_SPACES_REGION": "nyc3",
        "DO_SPACES_NAME": "wolfpack",
        "DO_SPACES_ENDPOINT": "wolfpack.nyc3.cdn.digitaloceanspaces.com/",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_config_derives_endpoints() -> None:
    config = load_storage_config(_settings())

    assert config.api_endpoint == "https://nyc3.digitaloceanspaces.com"
    assert config.public_endpoint == "https://wolfpack.nyc3.cdn.digitaloceanspaces.com"


def test_config_reports_missing_settings() -> None:
    with pytest.raises(StorageConfigurationError) as excinfo:
        load_storage_config(_settings(DO_SPACES_KEY=None, DO_SPACES_NAME="  "))

    assert "DO_SPACES_KEY" in str(excinfo.value)
    assert "DO_SPACES_NAME" in str(excinfo.value)


def test_object_key_is_sanitised() -> None:
    key = object_key("holiday photo.JPG", "../messages/conv 1/")

    assert re.fullmatch(r"messages/conv-1/[0-9a-f]{32}\.jpg", key)
    assert object_key("archive.tar.bad extension!", "").startswith("uploads/")
    assert object_key("noext", "media").count(".") == 0


@pytest.mark.asyncio
async def test_upload_puts_public_object() -> None:
    client = FakeS3Client()
    storage = SpacesStorage(load_storage_config(_settings()), client)

    stored = await storage.upload(b"GIF89a", filename="dance.gif", content_type="image/gif", folder="messages/c1")

    assert client.calls[0]["Bucket"] == "wolfpack"
    assert client.calls[0]["ACL"] == "public-read"
    assert client.calls[0]["ContentType"] == "image/gif"
    assert stored.key == client.calls[0]["Key"]
    assert stored.url == f"https://wolfpack.nyc3.cdn.digitaloceanspaces.com/{stored.key}"
    assert stored.size == 6


@pytest.mark.asyncio
async def test_upload_failures_raise_upload_error() -> None:
    storage = SpacesStorage(load_storage_config(_settings()), FakeS3Client(fail=True))

    with pytest.raises(StorageUploadError):
        await storage.upload(b"data", filename="a.png", content_type="image/png")
    with pytest.raises(StorageUploadError):
        await storage.upload(b"", filename="empty.png")
