"""Tests for the WebDAV provider against an in-memory DAV server."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import format_datetime
from urllib.parse import quote, unquote

import httpx
import pytest
import pytest_asyncio

from tests.fakes import make_metadata
from vaultsync.core.config import Settings, WebDAVSettings
from vaultsync.core.types import BackupArtifact
from vaultsync.providers.webdav import WebDAVBackupProvider, parse_multistatus

MODIFIED = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class FakeDavServer:
    """Just enough of RFC 4918 for the provider: MKCOL, PUT, GET, DELETE, PROPFIND."""

    def __init__(self, root: str = "/dav") -> None:
        self.root = root
        self.files: dict[str, bytes] = {}
        self.collections: set[str] = {root}
        self.requests: list[tuple[str, str]] = []
        self.authorization: set[str] = set()
        self.status_override: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path).rstrip("/")
        self.requests.append((request.method, path))
        self.authorization.add(request.headers.get("Authorization", ""))
        if self.status_override is not None:
            return httpx.Response(self.status_override)

        if request.method == "MKCOL":
            if path in self.collections:
                return httpx.Response(405)
            self.collections.add(path)
            return httpx.Response(201)
        if request.method == "PUT":
            self.files[path] = request.content
            return httpx.Response(201)
        if request.method == "GET":
            if path not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, content=self.files[path])
        if request.method == "DELETE":
            if self.files.pop(path, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        if request.method == "PROPFIND":
            return self._propfind(path, request.headers.get("Depth", "1"))
        return httpx.Response(405)

    def _propfind(self, path: str, depth: str) -> httpx.Response:
        if path in self.files:
            entries = [(path, False)]
        elif path in self.collections:
            entries = [(path, True)]
            if depth != "0":
                entries += [(c, True) for c in sorted(self.collections) if c.startswith(path + "/")]
                entries += [(f, False) for f in sorted(self.files) if f.startswith(path + "/")]
        else:
            return httpx.Response(404)
        return httpx.Response(207, content=self.multistatus(entries))

    def multistatus(self, entries: list[tuple[str, bool]]) -> str:
        stamp = format_datetime(MODIFIED, usegmt=True)
        parts = ['<?xml version="1.0" encoding="utf-8"?><d:multistatus xmlns:d="DAV:">']
        for path, is_collection in entries:
            href = quote(path + "/" if is_collection else path)
            resourcetype = "<d:collection/>" if is_collection else ""
            length = (
                "" if is_collection else f"<d:getcontentlength>{len(self.files[path])}</d:getcontentlength>"
            )
            parts.append(
                f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>"
                f"<d:resourcetype>{resourcetype}</d:resourcetype>"
                f"<d:getlastmodified>{stamp}</d:getlastmodified>{length}"
                "</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
            )
        parts.append("</d:multistatus>")
        return "".join(parts)


@pytest.fixture
def server() -> FakeDavServer:
    return FakeDavServer()


@pytest_asyncio.fixture
async def provider(server: FakeDavServer) -> WebDAVBackupProvider:
    provider = WebDAVBackupProvider(transport=httpx.MockTransport(server.handler))
    settings = Settings(
        webdav=WebDAVSettings(
            enabled=True,
            url="https://dav.example.com/dav/",
            username="alice",
            password="secret",
            path_prefix="bk",
        )
    )
    assert await provider.initialize(settings)
    return provider


def artifact(relative_path: str = "pages/note.md", payload: bytes = b"- hi\n") -> BackupArtifact:
    return BackupArtifact("note", payload, make_metadata(relative_path=relative_path))


class TestParseMultistatus:
    """Tests for parse_multistatus()."""

    def test_entries(self, server: FakeDavServer) -> None:
        """Should read href, collection flag, date and size."""
        server.files["/dav/my page.md"] = b"abc"
        body = server.multistatus([("/dav", True), ("/dav/my page.md", False)])

        directory, page = parse_multistatus(body)

        assert directory.is_collection
        assert page.path == "/dav/my page.md"
        assert page.size == 3
        assert page.last_modified == MODIFIED


class TestWebDAVBackupProvider:
    """Tests for WebDAVBackupProvider."""

    @pytest.mark.asyncio
    async def test_requires_password(self) -> None:
        """Should not initialize with an incomplete section."""
        provider = WebDAVBackupProvider()
        settings = Settings(webdav=WebDAVSettings(enabled=True, url="https://dav", username="u"))
        assert await provider.initialize(settings) is False

    @pytest.mark.asyncio
    async def test_store_creates_collections_and_manifest(
        self, provider: WebDAVBackupProvider, server: FakeDavServer
    ) -> None:
        """Should MKCOL each parent once, then PUT file and sidecar."""
        assert await provider.store(artifact())
        assert await provider.store(artifact("pages/other.md"))

        assert {"/dav/bk", "/dav/bk/vault", "/dav/bk/vault/pages"} <= server.collections
        assert [r for r in server.requests if r[0] == "MKCOL"] == [
            ("MKCOL", "/dav/bk"),
            ("MKCOL", "/dav/bk/vault"),
            ("MKCOL", "/dav/bk/vault/pages"),
        ]
        assert server.files["/dav/bk/vault/pages/note.md"] == b"- hi\n"
        assert b'"relativePath": "pages/note.md"' in server.files["/dav/bk/vault/pages/note.md.meta.json"]
        assert all(auth.startswith("Basic ") for auth in server.authorization)
        await provider.close()

    @pytest.mark.asyncio
    async def test_list_reads_manifests(
        self, provider: WebDAVBackupProvider, server: FakeDavServer
    ) -> None:
        """Should list files with their manifest metadata."""
        await provider.store(artifact())
        await provider.store(artifact("journals/2024_01_01.md"))

        listing = await provider.list_backups()

        assert sorted(m.storage_key or "" for m in listing) == [
            "bk/vault/journals/2024_01_01.md",
            "bk/vault/pages/note.md",
        ]
        assert all(m.timestamp == "2024-01-01T12:00:00.000Z" for m in listing)

    @pytest.mark.asyncio
    async def test_list_without_manifest(
        self, provider: WebDAVBackupProvider, server: FakeDavServer
    ) -> None:
        """Should fall back to getlastmodified for files without a sidecar."""
        server.collections.update({"/dav/bk", "/dav/bk/vault", "/dav/bk/vault/pages"})
        server.files["/dav/bk/vault/pages/loose page.md"] = b"- loose\n"

        (listed,) = await provider.list_backups()

        assert listed.storage_key == "bk/vault/pages/loose page.md"
        assert listed.timestamp == "2024-01-01T12:00:00.000Z"
        assert listed.size_bytes == 8

    @pytest.mark.asyncio
    async def test_list_before_first_backup(self, provider: WebDAVBackupProvider) -> None:
        """Should treat a missing prefix collection as an empty listing."""
        assert await provider.list_backups() == []

    @pytest.mark.asyncio
    async def test_fetch_and_erase(
        self, provider: WebDAVBackupProvider, server: FakeDavServer
    ) -> None:
        """Should read, stat and delete files with their manifest."""
        await provider.store(artifact())
        key = "bk/vault/pages/note.md"

        assert await provider.fetch(key) == b"- hi\n"
        assert await provider.fetch("bk/vault/pages/ghost.md") is None
        assert await provider.last_modified(key) == MODIFIED
        assert await provider.erase(key)
        assert server.files == {}
        assert await provider.erase(key) is False

    @pytest.mark.asyncio
    async def test_connection(self, provider: WebDAVBackupProvider, server: FakeDavServer) -> None:
        """Should report reachability and HTTP errors."""
        ok, message = await provider.test_connection()
        assert ok
        assert message == "Connected to WebDAV: https://dav.example.com/dav/bk"

        server.status_override = 401
        ok, message = await provider.test_connection()
        assert not ok
        assert message.startswith("Connection failed")

    @pytest.mark.asyncio
    async def test_store_failure(self, provider: WebDAVBackupProvider, server: FakeDavServer) -> None:
        """Should report a failed upload as False."""
        server.status_override = 507
        assert await provider.store(artifact()) is False
