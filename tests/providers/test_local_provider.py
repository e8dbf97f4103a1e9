"""Tests for the filesystem provider."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import pytest_asyncio

from tests.fakes import make_metadata
from vaultsync.core.config import LocalSettings, Settings
from vaultsync.core.types import BackupArtifact
from vaultsync.providers.local import LocalBackupProvider


def artifact(relative_path: str = "pages/note.md", payload: bytes = b"- hi\n") -> BackupArtifact:
    return BackupArtifact("note", payload, make_metadata(relative_path=relative_path))


@pytest_asyncio.fixture
async def provider(tmp_path: Path) -> LocalBackupProvider:
    provider = LocalBackupProvider()
    settings = Settings(local=LocalSettings(enabled=True, path=str(tmp_path), path_prefix="bk"))
    assert await provider.initialize(settings)
    return provider


class TestLocalBackupProvider:
    """Tests for LocalBackupProvider."""

    @pytest.mark.asyncio
    async def test_requires_path(self) -> None:
        """Should not initialize without a backup path."""
        provider = LocalBackupProvider()
        assert await provider.initialize(Settings(local=LocalSettings(enabled=True))) is False
        assert not provider.initialized

    @pytest.mark.asyncio
    async def test_store_writes_file_and_manifest(
        self, provider: LocalBackupProvider, tmp_path: Path
    ) -> None:
        """Should lay the file out under the key and write a sidecar manifest."""
        assert await provider.store(artifact())

        path = tmp_path / "bk" / "vault" / "pages" / "note.md"
        assert path.read_bytes() == b"- hi\n"
        manifest = json.loads(path.with_name("note.md.meta.json").read_text())
        assert manifest["relativePath"] == "pages/note.md"

    @pytest.mark.asyncio
    async def test_list_and_fetch(self, provider: LocalBackupProvider) -> None:
        """Should list stored backups with their keys and read them back."""
        await provider.store(artifact())
        await provider.store(artifact("journals/2024_01_01.md", b"- day\n"))

        listing = await provider.list_backups()

        keys = sorted(m.storage_key or "" for m in listing)
        assert keys == ["bk/vault/journals/2024_01_01.md", "bk/vault/pages/note.md"]
        assert await provider.fetch("bk/vault/journals/2024_01_01.md") == b"- day\n"
        assert await provider.fetch("bk/vault/pages/missing.md") is None

    @pytest.mark.asyncio
    async def test_file_without_manifest(
        self, provider: LocalBackupProvider, tmp_path: Path
    ) -> None:
        """Should fall back to the key and file mtime for bare files."""
        bare = tmp_path / "bk" / "vault" / "pages" / "loose_page.md"
        bare.parent.mkdir(parents=True)
        bare.write_bytes(b"- loose\n")

        (listing,) = await provider.list_backups()

        assert listing.relative_path == "pages/loose_page.md"
        assert listing.document_id == "loose page"
        assert listing.size_bytes == 8
        assert listing.timestamp.endswith("Z")

    @pytest.mark.asyncio
    async def test_invalid_manifest_ignored(
        self, provider: LocalBackupProvider, tmp_path: Path
    ) -> None:
        """Should fall back to the key when the manifest is not JSON."""
        await provider.store(artifact())
        manifest = tmp_path / "bk" / "vault" / "pages" / "note.md.meta.json"
        manifest.write_text("{not json")

        (listing,) = await provider.list_backups()

        assert listing.relative_path == "pages/note.md"
        assert listing.collection_name == "vault"

    @pytest.mark.asyncio
    async def test_erase(self, provider: LocalBackupProvider, tmp_path: Path) -> None:
        """Should delete the file with its manifest."""
        await provider.store(artifact())
        key = "bk/vault/pages/note.md"

        assert await provider.last_modified(key) is not None
        assert await provider.erase(key)
        assert not (tmp_path / "bk" / "vault" / "pages" / "note.md.meta.json").exists()
        assert await provider.erase(key) is False
        assert await provider.last_modified(key) is None

    @pytest.mark.asyncio
    async def test_key_cannot_escape(self, provider: LocalBackupProvider) -> None:
        """Should refuse keys resolving outside the backup directory."""
        assert await provider.store(artifact("../../../outside.md")) is False

    @pytest.mark.asyncio
    async def test_connection(self, provider: LocalBackupProvider, tmp_path: Path) -> None:
        """Should report the directory as reachable."""
        ok, message = await provider.test_connection()
        assert ok
        assert str(tmp_path.resolve()) in message

    @pytest.mark.asyncio
    async def test_empty_listing(self, provider: LocalBackupProvider) -> None:
        """Should list nothing before the first backup."""
        assert await provider.list_backups() == []
