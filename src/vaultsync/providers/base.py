"""Storage provider abstraction for backups.

This module provides:
- derive_key() / parse_key(): the key scheme shared by every provider
- BackupProvider: abstract base class each storage backend implements

Key scheme:
    <prefix>/<collection>/<journals|pages|assets>/<file>   content
    <prefix>/<collection>/backups/<timestamp>.archive       opaque bundles
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from vaultsync.core.types import (
    BackupArtifact,
    BackupMetadata,
    ProviderNotInitializedError,
    SyncDecision,
    TransientProviderError,
)
from vaultsync.sync.decisions import DEFAULT_TOLERANCE_MS, diff_with_remote, latest_first

if TYPE_CHECKING:
    from vaultsync.core.config import Settings

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".archive"
BACKUPS_DIR = "backups"
MANIFEST_SUFFIX = ".meta.json"

CONTENT_TYPES = {
    ".md": "text/markdown",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".pdf": "application/pdf",
}


def normalize_prefix(prefix: str | None) -> str:
    """Strip surrounding slashes from a path prefix."""
    return (prefix or "").strip("/")


def sanitize_timestamp(timestamp: str) -> str:
    """Make a timestamp safe for use in a key: ':' and '.' become '-'."""
    return timestamp.replace(":", "-").replace(".", "-")


def derive_key(metadata: BackupMetadata, prefix: str = "") -> str:
    """Derive the storage key of a backup.

    Pure function of its arguments; identical for every provider.

    Args:
        metadata: Metadata of the backup.
        prefix: Provider path prefix (may be empty).

    Returns:
        The storage key, without leading slash.
    """
    collection = metadata.collection_name
    relative = metadata.relative_path

    if relative:
        relative = relative.lstrip("/")
        body = relative if relative.startswith(f"{collection}/") else f"{collection}/{relative}"
    else:
        stamp = sanitize_timestamp(metadata.timestamp)
        body = f"{collection}/{BACKUPS_DIR}/{stamp}{ARCHIVE_SUFFIX}"

    prefix = normalize_prefix(prefix)
    return f"{prefix}/{body}" if prefix else body


def parse_key(key: str, prefix: str = "") -> tuple[str, str] | None:
    """Split a storage key into (collection, relative path).

    Returns:
        None if the key is not under the prefix or has no relative part.
    """
    key = key.lstrip("/")
    prefix = normalize_prefix(prefix)
    if prefix:
        if not key.startswith(f"{prefix}/"):
            return None
        key = key[len(prefix) + 1:]

    collection, _, relative = key.partition("/")
    if not collection or not relative:
        return None
    return collection, relative


def content_type_for(key: str) -> str:
    """MIME type used when uploading a key."""
    lowered = key.lower()
    for suffix, content_type in CONTENT_TYPES.items():
        if lowered.endswith(suffix):
            return content_type
    return "application/octet-stream"


class BackupProvider(ABC):
    """Abstract base class for backup storage providers.

    Public methods check initialization and translate backend errors:
    store() and erase() return False on failure, list_backups() and
    fetch() raise TransientProviderError so callers can count a failure.
    """

    #: Registry tag, set by each variant
    kind: str = ""
    #: Human-readable variant name
    display_name: str = ""

    def __init__(self) -> None:
        self._initialized = False
        self._prefix = ""

    @property
    def name(self) -> str:
        return self.kind

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where backups are stored."""

    async def initialize(self, settings: Settings) -> bool:
        """Configure the provider.

        Returns:
            False (never raises) when configuration is missing or invalid.
        """
        try:
            self._initialized = await self._initialize_provider(settings)
        except Exception:
            logger.exception("Failed to initialize %s provider", self.name)
            self._initialized = False
        return self._initialized

    async def store(self, artifact: BackupArtifact) -> bool:
        """Write an artifact under its derived key."""
        self._require_initialized()
        key = derive_key(artifact.metadata, self._prefix)
        try:
            await self._upload(key, artifact.payload, artifact.metadata)
        except Exception as e:
            logger.error("Error in %s backup of %s: %s", self.name, key, e)
            return False
        logger.info("Backed up %s to %s", artifact.metadata.relative_path or key, self.name)
        return True

    async def list_backups(self) -> list[BackupMetadata]:
        """List existing backups under the configured prefix (fresh query).

        Raises:
            TransientProviderError: If the listing fails.
        """
        self._require_initialized()
        try:
            backups = await self._list()
        except Exception as e:
            raise TransientProviderError(self.name, f"listing failed: {e}") from e
        return latest_first(backups)

    async def fetch(self, key: str) -> bytes | None:
        """Read the payload stored under key.

        Returns:
            None if the key does not exist.

        Raises:
            TransientProviderError: On any other failure.
        """
        self._require_initialized()
        try:
            return await self._download(key)
        except Exception as e:
            raise TransientProviderError(self.name, f"fetch of {key} failed: {e}") from e

    async def erase(self, key: str) -> bool:
        """Delete the object stored under key (and its manifest)."""
        self._require_initialized()
        try:
            deleted = await self._delete(key)
        except Exception as e:
            logger.error("Error deleting %s from %s: %s", key, self.name, e)
            return False
        if deleted:
            logger.info("Deleted %s from %s", key, self.name)
        return deleted

    async def last_modified(self, key: str) -> datetime | None:
        """Modification time of the object under key, if it exists."""
        self._require_initialized()
        try:
            return await self._last_modified(key)
        except Exception as e:
            logger.debug("Could not stat %s on %s: %s", key, self.name, e)
            return None

    async def test_connection(self) -> tuple[bool, str]:
        """Check the backend is reachable.

        Returns:
            (ok, message) tuple.
        """
        if not self._initialized:
            return False, f"{self.display_name} provider not initialized"
        try:
            await self._check_connection()
        except Exception as e:
            return False, f"Connection failed: {e}"
        return True, f"Connected to {self.location}"

    async def close(self) -> None:
        """Release backend resources."""
        self._initialized = False

    def key_for(self, metadata: BackupMetadata) -> str:
        """Storage key of a backup on this provider."""
        return derive_key(metadata, self._prefix)

    def diff_with_remote(
        self,
        catalog: Iterable[BackupMetadata],
        relative_path: str,
        local_modified_at: datetime,
        tolerance_ms: int = DEFAULT_TOLERANCE_MS,
        collection_name: str | None = None,
    ) -> tuple[SyncDecision, BackupMetadata | None]:
        """Compare a local document with its newest backup in this provider's catalog."""
        return diff_with_remote(
            catalog, relative_path, local_modified_at, tolerance_ms, collection_name
        )

    def metadata_from_key(
        self, key: str, timestamp: str, size: int = 0
    ) -> BackupMetadata | None:
        """Reconstruct minimal metadata for an object without a manifest."""
        parsed = parse_key(key, self._prefix)
        if parsed is None:
            return None
        collection, relative = parsed
        file_name = relative.rsplit("/", 1)[-1]
        return BackupMetadata(
            timestamp=timestamp,
            collection_name=collection,
            document_id=file_name.removesuffix(".md").replace("_", " "),
            relative_path=relative,
            file_name=file_name,
            size_bytes=size,
            storage_key=key,
        )

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise ProviderNotInitializedError(self.name)

    # Variant-specific operations

    @abstractmethod
    async def _initialize_provider(self, settings: Settings) -> bool:
        """Validate settings and create clients."""

    @abstractmethod
    async def _upload(self, key: str, data: bytes, metadata: BackupMetadata) -> None:
        """Write payload and metadata under key."""

    @abstractmethod
    async def _download(self, key: str) -> bytes | None:
        """Read payload under key, None if missing."""

    @abstractmethod
    async def _list(self) -> list[BackupMetadata]:
        """List backups under the prefix, with storage_key set."""

    @abstractmethod
    async def _delete(self, key: str) -> bool:
        """Delete key, False if it did not exist."""

    @abstractmethod
    async def _last_modified(self, key: str) -> datetime | None:
        """Modification time of key, None if missing."""

    async def _check_connection(self) -> None:
        """Raise if the backend is unreachable."""
        await self._list()
