"""WebDAV backup provider (Nextcloud, ownCloud, Synology, JianGuoYun, ...).

Uses httpx.AsyncClient with basic auth. WebDAV has no per-object user
metadata, so each file gets a sidecar manifest <file>.meta.json; files
without a sidecar fall back to the server's getlastmodified.
"""

from __future__ import annotations

import asyncio
import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote, urlparse

import httpx

from vaultsync.core.config import validate_provider_config
from vaultsync.core.types import BackupMetadata, to_iso
from vaultsync.providers.base import (
    MANIFEST_SUFFIX,
    BackupProvider,
    content_type_for,
    normalize_prefix,
)

if TYPE_CHECKING:
    from vaultsync.core.config import Settings

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"
PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getlastmodified/><d:getcontentlength/>"
    "</d:prop></d:propfind>"
)


@dataclass
class DavEntry:
    """One resource from a PROPFIND multistatus response."""

    path: str
    is_collection: bool
    last_modified: datetime | None
    size: int


def parse_multistatus(body: bytes | str) -> list[DavEntry]:
    """Parse a PROPFIND multistatus document."""
    root = ET.fromstring(body)
    entries: list[DavEntry] = []

    for response in root.iter(f"{DAV_NS}response"):
        href = response.findtext(f"{DAV_NS}href")
        if not href:
            continue

        prop = response.find(f".//{DAV_NS}prop")
        is_collection = False
        last_modified = None
        size = 0
        if prop is not None:
            resourcetype = prop.find(f"{DAV_NS}resourcetype")
            is_collection = (
                resourcetype is not None
                and resourcetype.find(f"{DAV_NS}collection") is not None
            )
            lastmod = prop.findtext(f"{DAV_NS}getlastmodified")
            if lastmod:
                try:
                    last_modified = parsedate_to_datetime(lastmod).astimezone(UTC)
                except (TypeError, ValueError):
                    logger.debug("Unparsable getlastmodified %r", lastmod)
            length = prop.findtext(f"{DAV_NS}getcontentlength")
            if length and length.isdigit():
                size = int(length)

        entries.append(
            DavEntry(
                path=unquote(urlparse(href).path),
                is_collection=is_collection,
                last_modified=last_modified,
                size=size,
            )
        )
    return entries


class WebDAVBackupProvider(BackupProvider):
    """WebDAV server storage."""

    kind = "webdav"
    display_name = "WebDAV"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the provider.

        Args:
            transport: Optional httpx transport (used by tests).
        """
        super().__init__()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._url = ""
        self._base_path = "/"
        self._known_collections: set[str] = set()

    @property
    def location(self) -> str:
        return f"WebDAV: {self._url}/{self._prefix}"

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("WebDAV client not initialized")
        return self._client

    async def _initialize_provider(self, settings: Settings) -> bool:
        errors = validate_provider_config(self.kind, settings)
        if errors:
            for error in errors:
                logger.warning(error)
            return False

        dav = settings.webdav
        if self._client is not None:
            await self._client.aclose()

        self._url = dav.url.rstrip("/")
        self._base_path = urlparse(self._url).path.rstrip("/") + "/"
        self._prefix = normalize_prefix(dav.path_prefix)
        self._known_collections.clear()
        self._client = httpx.AsyncClient(
            base_url=self._url + "/",
            auth=(dav.username, dav.password),
            timeout=30.0,
            transport=self._transport,
        )
        logger.info("WebDAV provider initialized with URL: %s", self._url)
        return True

    def _url_path(self, key: str) -> str:
        """Relative request path of a key (percent-encoded)."""
        return quote(key.lstrip("/"))

    def _key_from_path(self, path: str) -> str | None:
        """Convert an absolute server path from a listing back to a key."""
        if not path.startswith(self._base_path):
            return None
        return path[len(self._base_path):].strip("/")

    async def _ensure_collections(self, key: str) -> None:
        """Create the parent collections of key, top-down."""
        parts = key.split("/")[:-1]
        current = ""
        for part in parts:
            current = f"{current}/{part}" if current else part
            if current in self._known_collections:
                continue
            response = await self.client.request("MKCOL", self._url_path(current) + "/")
            # 405: already exists
            if response.status_code not in (200, 201, 301, 405):
                response.raise_for_status()
            self._known_collections.add(current)

    async def _propfind(self, key: str, depth: str) -> httpx.Response:
        return await self.client.request(
            "PROPFIND",
            self._url_path(key),
            headers={"Depth": depth, "Content-Type": "application/xml"},
            content=PROPFIND_BODY,
        )

    async def _upload(self, key: str, data: bytes, metadata: BackupMetadata) -> None:
        await self._ensure_collections(key)

        response = await self.client.put(
            self._url_path(key),
            content=data,
            headers={"Content-Type": content_type_for(key)},
        )
        response.raise_for_status()

        manifest = json.dumps(metadata.to_dict(), indent=2).encode("utf-8")
        response = await self.client.put(
            self._url_path(key + MANIFEST_SUFFIX),
            content=manifest,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

    async def _download(self, key: str) -> bytes | None:
        response = await self.client.get(self._url_path(key))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.content

    async def _read_manifest(self, key: str) -> BackupMetadata | None:
        try:
            data = await self._download(key + MANIFEST_SUFFIX)
            if data is None:
                return None
            return BackupMetadata.from_dict(json.loads(data), storage_key=key)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("Ignoring unreadable manifest for %s: %s", key, e)
            return None

    async def _list(self) -> list[BackupMetadata]:
        response = await self._propfind(f"{self._prefix}/" if self._prefix else "", "infinity")
        if response.status_code == 404:
            return []
        response.raise_for_status()

        files: dict[str, DavEntry] = {}
        manifests: set[str] = set()
        for entry in parse_multistatus(response.content):
            if entry.is_collection:
                continue
            key = self._key_from_path(entry.path)
            if not key:
                continue
            if key.endswith(MANIFEST_SUFFIX):
                manifests.add(key.removesuffix(MANIFEST_SUFFIX))
            else:
                files[key] = entry

        keys = list(files)
        loaded = await asyncio.gather(
            *(self._read_manifest(k) if k in manifests else _none() for k in keys)
        )

        backups: list[BackupMetadata] = []
        for key, metadata in zip(keys, loaded, strict=True):
            if metadata is None:
                entry = files[key]
                stamp = entry.last_modified or datetime.now(UTC)
                metadata = self.metadata_from_key(key, to_iso(stamp), entry.size)
            if metadata is not None:
                backups.append(metadata)
        return backups

    async def _delete(self, key: str) -> bool:
        response = await self.client.delete(self._url_path(key))
        if response.status_code == 404:
            return False
        response.raise_for_status()

        manifest = await self.client.delete(self._url_path(key + MANIFEST_SUFFIX))
        if manifest.status_code not in (200, 204, 404):
            logger.warning("Could not delete manifest of %s: HTTP %d", key, manifest.status_code)
        return True

    async def _last_modified(self, key: str) -> datetime | None:
        response = await self._propfind(key, "0")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        entries = parse_multistatus(response.content)
        return entries[0].last_modified if entries else None

    async def _check_connection(self) -> None:
        response = await self._propfind("", "0")
        response.raise_for_status()

    async def close(self) -> None:
        """Close the HTTP client."""
        await super().close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None


async def _none() -> None:
    return None
