"""Filesystem backup provider.

Backups are plain files under the configured directory, laid out with the
shared key scheme. Each file has a sidecar manifest <file>.meta.json
carrying its BackupMetadata. Blocking IO runs in worker threads.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from vaultsync.core.config import validate_provider_config
from vaultsync.core.types import BackupMetadata, to_iso
from vaultsync.providers.base import MANIFEST_SUFFIX, BackupProvider, normalize_prefix

if TYPE_CHECKING:
    from vaultsync.core.config import Settings

logger = logging.getLogger(__name__)


class LocalBackupProvider(BackupProvider):
    """Local or mounted directory storage."""

    kind = "local"
    display_name = "Local Filesystem"

    def __init__(self) -> None:
        super().__init__()
        self._base_path: Path | None = None

    @property
    def base_path(self) -> Path:
        if self._base_path is None:
            raise RuntimeError("Local provider has no base path")
        return self._base_path

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    async def _initialize_provider(self, settings: Settings) -> bool:
        errors = validate_provider_config(self.kind, settings)
        if errors:
            for error in errors:
                logger.warning(error)
            return False

        base_path = Path(settings.local.path).expanduser().resolve()
        await asyncio.to_thread(base_path.mkdir, parents=True, exist_ok=True)
        self._base_path = base_path
        self._prefix = normalize_prefix(settings.local.path_prefix)
        logger.info("Local backup provider initialized with path: %s", base_path)
        return True

    def _path(self, key: str) -> Path:
        """Map a key to a file path inside the base directory."""
        path = (self.base_path / key.lstrip("/")).resolve()
        if not path.is_relative_to(self.base_path):
            raise ValueError(f"Key escapes backup directory: {key}")
        return path

    def _manifest_path(self, key: str) -> Path:
        return self._path(key + MANIFEST_SUFFIX)

    async def _upload(self, key: str, data: bytes, metadata: BackupMetadata) -> None:
        path = self._path(key)
        manifest = self._manifest_path(key)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            manifest.write_text(json.dumps(metadata.to_dict(), indent=2))

        await asyncio.to_thread(write)

    async def _download(self, key: str) -> bytes | None:
        path = self._path(key)

        def read() -> bytes | None:
            if not path.is_file():
                return None
            return path.read_bytes()

        return await asyncio.to_thread(read)

    async def _list(self) -> list[BackupMetadata]:
        base = self.base_path
        root = base / self._prefix if self._prefix else base

        def scan() -> list[BackupMetadata]:
            backups: list[BackupMetadata] = []
            if not root.is_dir():
                return backups

            for path in sorted(root.rglob("*")):
                if not path.is_file() or path.name.endswith(MANIFEST_SUFFIX):
                    continue
                key = path.relative_to(base).as_posix()
                manifest = path.with_name(path.name + MANIFEST_SUFFIX)
                metadata = None
                if manifest.is_file():
                    try:
                        data = json.loads(manifest.read_text())
                        metadata = BackupMetadata.from_dict(data, storage_key=key)
                    except (ValueError, KeyError) as e:
                        logger.warning("Ignoring invalid manifest %s: %s", manifest, e)
                if metadata is None:
                    stat = path.stat()
                    metadata = self.metadata_from_key(
                        key,
                        timestamp=to_iso(datetime.fromtimestamp(stat.st_mtime, UTC)),
                        size=stat.st_size,
                    )
                if metadata is not None:
                    backups.append(metadata)
            return backups

        return await asyncio.to_thread(scan)

    async def _delete(self, key: str) -> bool:
        path = self._path(key)
        manifest = self._manifest_path(key)

        def delete() -> bool:
            if not path.exists():
                return False
            path.unlink()
            manifest.unlink(missing_ok=True)
            return True

        return await asyncio.to_thread(delete)

    async def _last_modified(self, key: str) -> datetime | None:
        path = self._path(key)

        def stat() -> datetime | None:
            if not path.exists():
                return None
            return datetime.fromtimestamp(path.stat().st_mtime, UTC)

        return await asyncio.to_thread(stat)

    async def _check_connection(self) -> None:
        if not self.base_path.is_dir():
            raise FileNotFoundError(f"Backup directory missing: {self.base_path}")
