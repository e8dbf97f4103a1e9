"""Conversion of documents into storage-ready artifacts.

This module provides:
- detect_tag_page() / is_system_page(): exclusion rules
- document_path(): canonical relative path of a document
- render_markdown(): block tree -> markdown text
- find_asset_references(): asset links inside a block tree
- ArtifactBuilder: document id -> BackupArtifact
"""

from __future__ import annotations

import io
import json
import logging
import re
import zipfile
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from vaultsync.core.config import Settings, should_backup
from vaultsync.core.types import (
    BackupArtifact,
    BackupMetadata,
    Block,
    DocumentInfo,
    DocumentKind,
    FatalInitializationError,
    FilteredError,
    NotFoundError,
    to_iso,
    utc_now_iso,
)

if TYPE_CHECKING:
    from vaultsync.host.protocol import DocumentStore

logger = logging.getLogger(__name__)

TAG_PAGE_NAMES = frozenset({"tags", "tag", "all-tags", "all-pages"})
SYSTEM_PAGE_NAMES = frozenset({"contents", "card"})
SYSTEM_PAGE_PREFIX = "logseq-"
BACKUP_TAGS_PROPERTY = "backup-tags"

JOURNALS_DIR = "journals"
PAGES_DIR = "pages"
ASSETS_DIR = "assets"

_UNSAFE_CHARS = re.compile(r"[^\w.-]")
_MD_IMAGE = re.compile(r"!\[.*?\]\((\./assets/[^)]+)\)")
_FILE_ASSET = re.compile(r"!\[\[file:/?/?assets/([^\]]+)\]\]")
_ASSET_LINK = re.compile(r"\[\[asset:([^\]]+)\]\]")
_BARE_ASSET = re.compile(r"(?<![\S])assets/([^\s)\"'\]]+)")


def detect_tag_page(document: DocumentInfo) -> bool:
    """Check if a page is a tag/collection page that must not be backed up."""
    if document.name.startswith("#"):
        return True
    if document.original_name and document.original_name.startswith("#"):
        return True
    if document.properties.get("tags") or document.properties.get(":namespace"):
        return True
    return document.name.lower() in TAG_PAGE_NAMES


def is_system_page(document: DocumentInfo) -> bool:
    """Check if a page is one of the host's built-in pages."""
    name = document.name.lower()
    return name.startswith(SYSTEM_PAGE_PREFIX) or name in SYSTEM_PAGE_NAMES


def page_tags(document: DocumentInfo) -> list[str]:
    """Tags a page opts into backups with (list or comma string).

    Read from the backup-tags property; a tags property marks a tag page.
    """
    raw = document.properties.get(BACKUP_TAGS_PROPERTY)
    if not raw:
        return []
    if isinstance(raw, str):
        return [t.strip() for t in raw.split(",") if t.strip()]
    return [str(t) for t in raw]


def journal_file_name(journal_day: int) -> str:
    """File name of a journal page: 20240105 -> 2024_01_05.md."""
    day = str(journal_day)
    return f"{day[:4]}_{day[4:6]}_{day[6:8]}.md"


def page_file_name(name: str) -> str:
    """File-safe name of a regular page: "My Page" -> my_page.md."""
    return _UNSAFE_CHARS.sub("", name.replace(" ", "_")).lower() + ".md"


def document_path(document: DocumentInfo) -> tuple[str, str]:
    """Compute the canonical (relative_path, file_name) of a document."""
    if document.journal_day:
        file_name = journal_file_name(document.journal_day)
        return f"{JOURNALS_DIR}/{file_name}", file_name
    file_name = page_file_name(document.name)
    return f"{PAGES_DIR}/{file_name}", file_name


def _render_block(block: Block, level: int, lines: list[str]) -> None:
    indent = "  " * level
    bullet = "1. " if block.properties.get("numbered") else "- "
    first, *rest = block.content.split("\n") if block.content else [""]
    lines.append(f"{indent}{bullet}{first}")
    lines.extend(f"{indent}  {line}" for line in rest)
    for child in block.children:
        _render_block(child, level + 1, lines)


def render_markdown(properties: dict[str, Any], blocks: list[Block]) -> str:
    """Render page properties and a block tree as markdown."""
    lines: list[str] = []

    visible = {k: v for k, v in properties.items() if not k.startswith(":")}
    if visible:
        lines.append("---")
        lines.extend(f"{key}: {json.dumps(value)}" for key, value in visible.items())
        lines.append("---")
        lines.append("")

    for block in blocks:
        _render_block(block, 0, lines)

    return "\n".join(lines) + "\n"


def find_asset_references(blocks: Iterable[Block]) -> list[str]:
    """Find asset paths referenced in a block tree.

    Returns:
        Unique paths normalised to ./assets/<name>, in order of appearance.
    """
    found: dict[str, None] = {}

    def visit(block: Block) -> None:
        content = block.content or ""
        for match in _MD_IMAGE.finditer(content):
            found.setdefault(match.group(1).strip(), None)
        for pattern in (_FILE_ASSET, _ASSET_LINK, _BARE_ASSET):
            for match in pattern.finditer(content):
                found.setdefault(f"./{ASSETS_DIR}/{match.group(1).strip()}", None)
        for child in block.children:
            visit(child)

    for block in blocks:
        visit(block)
    return list(found)


class ArtifactBuilder:
    """Builds BackupArtifacts from host documents.

    Only reads from the document store.
    """

    def __init__(self, store: DocumentStore, settings: Settings | None = None) -> None:
        """Initialize the builder.

        Args:
            store: Host document store.
            settings: Settings providing backup mode/tags and collection override.
        """
        self._store = store
        self._settings = settings or Settings()

    @property
    def settings(self) -> Settings:
        return self._settings

    @settings.setter
    def settings(self, value: Settings) -> None:
        self._settings = value

    async def collection_name(self) -> str:
        """Name of the open collection.

        Raises:
            FatalInitializationError: If no collection is open.
        """
        collection = await self._store.current_collection()
        if not collection:
            raise FatalInitializationError("No collection is currently open")
        return self._settings.collection_name or collection

    def check_eligible(self, document: DocumentInfo) -> None:
        """Raise FilteredError if the document must not be backed up."""
        if is_system_page(document):
            raise FilteredError(f"System page: {document.name}")
        if detect_tag_page(document):
            raise FilteredError(f"Tag page: {document.name}")
        if not should_backup(page_tags(document), self._settings):
            raise FilteredError(f"Not tagged for backup: {document.name}")

    async def resolve(self, document_id: str) -> DocumentInfo:
        """Fetch a document and check it is eligible.

        Raises:
            NotFoundError: If the document no longer exists.
            FilteredError: If the document is excluded.
        """
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")
        self.check_eligible(document)
        return document

    async def build(
        self, document_id: str, timestamp: datetime | None = None
    ) -> BackupArtifact:
        """Build the artifact of one document.

        Args:
            document_id: Document to serialize.
            timestamp: Stamp to record instead of the current time.

        Raises:
            FatalInitializationError: If no collection is open.
            NotFoundError: If the document or its content is missing.
            FilteredError: If the document is excluded.
        """
        collection = await self.collection_name()
        document = await self.resolve(document_id)

        relative_path, file_name = document_path(document)
        payload = await self._payload(document)
        kind = DocumentKind.JOURNAL if document.journal_day else DocumentKind.PAGE

        metadata = BackupMetadata(
            timestamp=to_iso(timestamp) if timestamp else utc_now_iso(),
            collection_name=collection,
            document_id=document.id,
            kind=kind,
            relative_path=relative_path,
            file_name=file_name,
            size_bytes=len(payload),
            journal_day=str(document.journal_day) if document.journal_day else None,
        )
        logger.debug("Built artifact for %s (%d bytes)", relative_path, len(payload))
        return BackupArtifact(document_id=document.id, payload=payload, metadata=metadata)

    async def _payload(self, document: DocumentInfo) -> bytes:
        """Stored bytes of a file-backed document, else its rendered block tree.

        A pull writes the payload back verbatim, so file content must never
        go through the renderer.
        """
        if document.has_file:
            raw = await self._store.read_document_bytes(document.id)
            if raw is not None:
                return raw

        blocks = await self._store.get_block_tree(document.id)
        if blocks is None:
            raise NotFoundError(f"No content for document: {document.id}")
        return render_markdown(document.properties, blocks).encode("utf-8")

    async def asset_references(self, document_id: str) -> list[str]:
        """Asset paths referenced by a document (empty if it has no content)."""
        blocks = await self._store.get_block_tree(document_id)
        return find_asset_references(blocks) if blocks else []

    async def build_asset(self, asset_path: str) -> BackupArtifact:
        """Build the artifact of a referenced asset file.

        Raises:
            NotFoundError: If the asset cannot be read.
        """
        collection = await self.collection_name()
        data = await self._store.read_asset(asset_path)
        if data is None:
            raise NotFoundError(f"Asset not found: {asset_path}")

        file_name = asset_path.rsplit("/", 1)[-1]
        metadata = BackupMetadata(
            timestamp=utc_now_iso(),
            collection_name=collection,
            document_id=asset_path,
            kind=DocumentKind.ASSET,
            relative_path=f"{ASSETS_DIR}/{file_name}",
            file_name=file_name,
            size_bytes=len(data),
        )
        return BackupArtifact(document_id=asset_path, payload=data, metadata=metadata)

    async def build_archive(self, document_ids: Iterable[str]) -> BackupArtifact:
        """Bundle several documents into one zip archive.

        Excluded or missing documents are left out. The archive carries a
        manifest.json listing the metadata of every included page and has
        no relative path, so providers store it under backups/.
        """
        collection = await self.collection_name()
        timestamp = utc_now_iso()
        manifest: list[dict[str, Any]] = []

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for document_id in document_ids:
                try:
                    artifact = await self.build(document_id)
                except (NotFoundError, FilteredError) as e:
                    logger.debug("Leaving %s out of archive: %s", document_id, e)
                    continue
                archive.writestr(artifact.metadata.relative_path or document_id, artifact.payload)
                manifest.append(artifact.metadata.to_dict())
            archive.writestr(
                "manifest.json",
                json.dumps({"timestamp": timestamp, "documents": manifest}, indent=2),
            )

        payload = buffer.getvalue()
        metadata = BackupMetadata(
            timestamp=timestamp,
            collection_name=collection,
            document_id=collection,
            kind=DocumentKind.PAGE,
            relative_path=None,
            size_bytes=len(payload),
        )
        logger.info("Built archive of %d documents (%d bytes)", len(manifest), len(payload))
        return BackupArtifact(document_id=collection, payload=payload, metadata=metadata)
