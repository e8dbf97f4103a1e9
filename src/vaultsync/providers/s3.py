"""S3-compatible backup provider (AWS, MinIO, Cloudflare R2, OVH, ...).

BackupMetadata travels as S3 user metadata on each object. boto3 is
synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote

from vaultsync.core.config import validate_provider_config
from vaultsync.core.types import BackupMetadata, to_iso
from vaultsync.providers.base import BackupProvider, content_type_for, normalize_prefix

if TYPE_CHECKING:
    from vaultsync.core.config import Settings

logger = logging.getLogger(__name__)

# Manifest field -> S3 user metadata header (x-amz-meta-*)
METADATA_HEADERS = {
    "timestamp": "timestamp",
    "formatVersion": "format-version",
    "collectionName": "collection-name",
    "documentId": "document-id",
    "kind": "kind",
    "relativePath": "relative-path",
    "fileName": "file-name",
    "sizeBytes": "size-bytes",
    "journalDay": "journal-day",
}

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def encode_metadata(metadata: BackupMetadata) -> dict[str, str]:
    """Convert metadata to S3 user metadata (ASCII-safe values)."""
    encoded: dict[str, str] = {}
    for field_name, value in metadata.to_dict().items():
        if value is None:
            continue
        encoded[METADATA_HEADERS[field_name]] = quote(str(value), safe="")
    return encoded


def decode_metadata(headers: dict[str, str], key: str) -> BackupMetadata | None:
    """Rebuild metadata from S3 user metadata, None if it carries none."""
    if "timestamp" not in headers:
        return None
    data = {
        field_name: unquote(headers[header])
        for field_name, header in METADATA_HEADERS.items()
        if header in headers
    }
    return BackupMetadata.from_dict(data, storage_key=key)


class S3BackupProvider(BackupProvider):
    """S3-compatible object storage."""

    kind = "s3"
    display_name = "Amazon S3"

    def __init__(self) -> None:
        super().__init__()
        self._client: Any = None
        self._bucket = ""
        self._endpoint_url: str | None = None

    @property
    def location(self) -> str:
        """Return the S3 bucket location."""
        if self._endpoint_url:
            return f"S3: {self._endpoint_url}/{self._bucket}"
        return f"S3: s3://{self._bucket}"

    async def _initialize_provider(self, settings: Settings) -> bool:
        import boto3
        from botocore.config import Config

        errors = validate_provider_config(self.kind, settings)
        if errors:
            for error in errors:
                logger.warning(error)
            return False

        s3 = settings.s3
        self._bucket = s3.bucket_name
        self._endpoint_url = s3.custom_endpoint or None
        self._prefix = normalize_prefix(s3.path_prefix)

        # Path-style addressing for MinIO and other S3-compatible services
        config = Config(s3={"addressing_style": "path"}) if self._endpoint_url else None
        self._client = boto3.client(
            "s3",
            endpoint_url=self._endpoint_url,
            aws_access_key_id=s3.access_key_id,
            aws_secret_access_key=s3.secret_access_key,
            region_name=s3.region or "us-east-1",
            config=config,
        )
        if self._endpoint_url:
            logger.info("Using custom S3 endpoint: %s", self._endpoint_url)
        logger.info("S3 provider initialized for bucket %s", self._bucket)
        return True

    async def _upload(self, key: str, data: bytes, metadata: BackupMetadata) -> None:
        logger.debug("Uploading %s (%d bytes) to %s", key, len(data), self.location)
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type_for(key),
            Metadata=encode_metadata(metadata),
        )

    async def _download(self, key: str) -> bytes | None:
        from botocore.exceptions import ClientError

        def get() -> bytes | None:
            try:
                response = self._client.get_object(Bucket=self._bucket, Key=key)
            except ClientError as e:
                if e.response["Error"]["Code"] in _MISSING_CODES:
                    return None
                raise
            body: bytes = response["Body"].read()
            return body

        return await asyncio.to_thread(get)

    async def _list(self) -> list[BackupMetadata]:
        prefix = f"{self._prefix}/" if self._prefix else ""

        def scan() -> list[BackupMetadata]:
            backups: list[BackupMetadata] = []
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    key = item["Key"]
                    head = self._client.head_object(Bucket=self._bucket, Key=key)
                    metadata = decode_metadata(head.get("Metadata", {}), key)
                    if metadata is None:
                        metadata = self.metadata_from_key(
                            key,
                            timestamp=to_iso(item["LastModified"]),
                            size=item.get("Size", 0),
                        )
                    if metadata is not None:
                        backups.append(metadata)
            return backups

        return await asyncio.to_thread(scan)

    async def _delete(self, key: str) -> bool:
        if await self._last_modified(key) is None:
            return False
        await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        return True

    async def _last_modified(self, key: str) -> datetime | None:
        from botocore.exceptions import ClientError

        def head() -> datetime | None:
            try:
                response = self._client.head_object(Bucket=self._bucket, Key=key)
            except ClientError as e:
                if e.response["Error"]["Code"] in _MISSING_CODES:
                    return None
                raise
            modified: datetime = response["LastModified"]
            return modified

        return await asyncio.to_thread(head)

    async def _check_connection(self) -> None:
        await asyncio.to_thread(self._client.head_bucket, Bucket=self._bucket)

    async def close(self) -> None:
        """Release the boto3 client."""
        await super().close()
        self._client = None
