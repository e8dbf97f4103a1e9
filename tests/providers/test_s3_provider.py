"""Tests for the S3 provider (moto)."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from tests.fakes import make_metadata
from vaultsync.core.config import S3Settings, Settings
from vaultsync.core.types import BackupArtifact, DocumentKind
from vaultsync.providers.s3 import S3BackupProvider, decode_metadata, encode_metadata

BUCKET = "test-bucket"


def s3_settings(**overrides: Any) -> Settings:
    section = {
        "enabled": True,
        "bucket_name": BUCKET,
        "access_key_id": "testing",
        "secret_access_key": "testing",
        "path_prefix": "bk",
        **overrides,
    }
    return Settings(s3=S3Settings(**section))


@pytest.fixture
def mock_s3() -> Iterator[Any]:
    """Set up moto mock for S3."""
    pytest.importorskip("moto")
    import boto3
    from moto import mock_aws

    with mock_aws():
        # Create the bucket
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


class TestMetadataEncoding:
    """Tests for S3 user metadata."""

    def test_non_ascii_round_trip(self) -> None:
        """Should quote values so any page name survives the headers."""
        metadata = make_metadata(relative_path="pages/café_notes.md", document_id="café notes")

        headers = encode_metadata(metadata)

        assert all(value.isascii() for value in headers.values())
        assert "journal-day" not in headers
        restored = decode_metadata(headers, "bk/vault/pages/café_notes.md")
        assert restored is not None
        assert restored.relative_path == "pages/café_notes.md"
        assert restored.document_id == "café notes"

    def test_no_metadata(self) -> None:
        """Should return None for objects without a timestamp header."""
        assert decode_metadata({}, "k") is None


class TestS3BackupProvider:
    """Tests for S3BackupProvider."""

    @pytest.mark.asyncio
    async def test_requires_credentials(self) -> None:
        """Should not initialize with an incomplete section."""
        provider = S3BackupProvider()
        assert await provider.initialize(s3_settings(secret_access_key="")) is False

    @pytest.mark.asyncio
    async def test_store_list_fetch(self, mock_s3: Any) -> None:
        """Should round-trip payload and metadata through the bucket."""
        provider = S3BackupProvider()
        assert await provider.initialize(s3_settings())
        artifact = BackupArtifact("note", b"- hello\n", make_metadata())

        assert await provider.store(artifact)

        head = mock_s3.head_object(Bucket=BUCKET, Key="bk/vault/pages/note.md")
        assert head["ContentType"] == "text/markdown"

        (listed,) = await provider.list_backups()
        assert listed.storage_key == "bk/vault/pages/note.md"
        assert listed.timestamp == "2024-01-01T12:00:00.000Z"
        assert listed.kind is DocumentKind.PAGE
        assert await provider.fetch("bk/vault/pages/note.md") == b"- hello\n"
        await provider.close()

    @pytest.mark.asyncio
    async def test_object_without_metadata(self, mock_s3: Any) -> None:
        """Should rebuild metadata from the key for foreign objects."""
        mock_s3.put_object(Bucket=BUCKET, Key="bk/vault/pages/foreign_page.md", Body=b"x")
        mock_s3.put_object(Bucket=BUCKET, Key="elsewhere/vault/pages/a.md", Body=b"x")
        provider = S3BackupProvider()
        await provider.initialize(s3_settings())

        (listed,) = await provider.list_backups()

        assert listed.relative_path == "pages/foreign_page.md"
        assert listed.document_id == "foreign page"
        assert listed.size_bytes == 1

    @pytest.mark.asyncio
    async def test_missing_objects(self, mock_s3: Any) -> None:
        """Should report missing keys as None or False."""
        provider = S3BackupProvider()
        await provider.initialize(s3_settings())

        assert await provider.fetch("bk/vault/pages/ghost.md") is None
        assert await provider.last_modified("bk/vault/pages/ghost.md") is None
        assert await provider.erase("bk/vault/pages/ghost.md") is False

    @pytest.mark.asyncio
    async def test_erase(self, mock_s3: Any) -> None:
        """Should delete an existing object."""
        provider = S3BackupProvider()
        await provider.initialize(s3_settings())
        await provider.store(BackupArtifact("note", b"x", make_metadata()))

        assert await provider.last_modified("bk/vault/pages/note.md") is not None
        assert await provider.erase("bk/vault/pages/note.md")
        assert await provider.list_backups() == []

    @pytest.mark.asyncio
    async def test_connection(self, mock_s3: Any) -> None:
        """Should reach the bucket and fail on a missing one."""
        provider = S3BackupProvider()
        await provider.initialize(s3_settings())
        ok, message = await provider.test_connection()
        assert ok
        assert message == "Connected to S3: s3://test-bucket"

        missing = S3BackupProvider()
        await missing.initialize(s3_settings(bucket_name="no-such-bucket"))
        ok, message = await missing.test_connection()
        assert not ok
        assert message.startswith("Connection failed")

    def test_location_with_custom_endpoint(self) -> None:
        """Should show the endpoint in the location."""
        provider = S3BackupProvider()
        provider._bucket = "b"
        provider._endpoint_url = "https://minio.local"
        assert provider.location == "S3: https://minio.local/b"
