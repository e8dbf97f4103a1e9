"""A directory of markdown files acting as the host document store.

Layout:
    <root>/pages/my_page.md        page "my page"
    <root>/journals/2024_01_05.md  journal "2024-01-05" (journal_day 20240105)
    <root>/assets/...              files referenced from pages

A page file holds optional front matter followed by an outline:

    ---
    tags: ["work"]
    ---

    - first block
      continuation line
      - child block
    1. numbered block
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from vaultsync.backup.artifact import (
    ASSETS_DIR,
    JOURNALS_DIR,
    PAGES_DIR,
    journal_file_name,
    page_file_name,
)
from vaultsync.core.types import Block, DocumentInfo, DocumentKind, NotFoundError

logger = logging.getLogger(__name__)

FRONT_MATTER_DELIMITER = "---"
_JOURNAL_STEM = re.compile(r"^(\d{4})_(\d{2})_(\d{2})$")
_JOURNAL_NAME = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_BULLET = re.compile(r"^( *)(- |-$|1\. )(.*)$")


def parse_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split a page into (properties, body).

    Values are JSON-decoded when possible, otherwise kept as strings.
    """
    lines = text.split("\n")
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return {}, text

    properties: dict[str, Any] = {}
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == FRONT_MATTER_DELIMITER:
            return properties, "\n".join(lines[index + 1:])
        key, sep, raw = line.partition(":")
        if not sep or not key.strip():
            continue
        raw = raw.strip()
        try:
            properties[key.strip()] = json.loads(raw)
        except ValueError:
            properties[key.strip()] = raw

    # Unterminated front matter is ordinary content
    return {}, text


def parse_outline(body: str) -> list[Block]:
    """Parse a bullet outline into a block tree (two spaces per level)."""
    roots: list[Block] = []
    stack: list[tuple[int, Block]] = []

    for line in body.split("\n"):
        if not line.strip():
            continue

        match = _BULLET.match(line)
        if match is None:
            if stack:
                level, block = stack[-1]
                indent = " " * (level + 1) * 2
                continuation = line.removeprefix(indent) if line.startswith(indent) else line.strip()
                block.content = f"{block.content}\n{continuation}"
            else:
                roots.append(Block(content=line.strip()))
            continue

        indent, bullet, content = match.groups()
        level = len(indent) // 2
        block = Block(content=content)
        if bullet.startswith("1."):
            block.properties["numbered"] = True

        while stack and stack[-1][0] >= level:
            stack.pop()
        if stack:
            stack[-1][1].children.append(block)
        else:
            roots.append(block)
        stack.append((level, block))

    return roots


class MarkdownVault:
    """DocumentStore over a directory of markdown pages and journals.

    Document ids are lower-cased page names. A document's modification
    time is its file mtime.
    """

    def __init__(self, root: Path | str, name: str | None = None) -> None:
        """Initialize the vault.

        Args:
            root: Vault directory.
            name: Collection name (defaults to the directory name).
        """
        self.root = Path(root).expanduser().resolve()
        self._name = name or self.root.name

    def __repr__(self) -> str:
        return f"MarkdownVault({str(self.root)!r})"

    # Path mapping

    def document_id_for_path(self, path: Path | str) -> str | None:
        """Map a file inside the vault to its document id."""
        path = Path(path)
        if path.suffix != ".md":
            return None
        try:
            relative = path.resolve().relative_to(self.root)
        except ValueError:
            return None
        if len(relative.parts) != 2 or relative.parts[0] not in (PAGES_DIR, JOURNALS_DIR):
            return None
        return self._info_for(path.stem, relative.parts[0]).id

    def path_for(self, document_id: str) -> Path | None:
        """Existing file of a document, or None."""
        candidates = [self.root / PAGES_DIR / page_file_name(document_id)]
        journal_day = _journal_day_from_name(document_id)
        if journal_day:
            candidates.insert(0, self.root / JOURNALS_DIR / journal_file_name(journal_day))
        for candidate in candidates:
            if candidate.is_file():
                return candidate

        # File names with upper case or dropped characters
        for directory in (JOURNALS_DIR, PAGES_DIR):
            folder = self.root / directory
            if not folder.is_dir():
                continue
            for path in folder.glob("*.md"):
                if self._info_for(path.stem, directory).id == document_id:
                    return path
        return None

    def new_path_for(self, document_id: str) -> Path:
        """Location a document would be created at.

        Raises:
            NotFoundError: If the id has no valid file name.
        """
        journal_day = _journal_day_from_name(document_id)
        if journal_day:
            return self.root / JOURNALS_DIR / journal_file_name(journal_day)
        file_name = page_file_name(document_id)
        if file_name == ".md":
            raise NotFoundError(f"Cannot map document to a file: {document_id!r}")
        return self.root / PAGES_DIR / file_name

    def _info_for(self, stem: str, directory: str) -> DocumentInfo:
        """Document identity of a file stem, without reading the file."""
        journal = _JOURNAL_STEM.match(stem) if directory == JOURNALS_DIR else None
        if journal:
            name = "-".join(journal.groups())
            return DocumentInfo(
                id=name,
                name=name,
                modified_at=datetime.now(UTC),
                kind=DocumentKind.JOURNAL,
                journal_day=int("".join(journal.groups())),
            )
        name = stem.replace("_", " ")
        return DocumentInfo(id=name.lower(), name=name, modified_at=datetime.now(UTC))

    def _load_info(self, path: Path) -> DocumentInfo:
        info = self._info_for(path.stem, path.parent.name)
        info.modified_at = datetime.fromtimestamp(path.stat().st_mtime, UTC)
        properties, _ = parse_front_matter(path.read_text(encoding="utf-8"))
        info.properties = properties
        if isinstance(properties.get("title"), str):
            info.original_name = properties["title"]
        return info

    def _scan(self) -> list[DocumentInfo]:
        documents: list[DocumentInfo] = []
        for directory in (JOURNALS_DIR, PAGES_DIR):
            folder = self.root / directory
            if not folder.is_dir():
                continue
            for path in sorted(folder.glob("*.md")):
                try:
                    documents.append(self._load_info(path))
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning("Cannot read %s: %s", path, e)
        return documents

    # DocumentStore

    async def current_collection(self) -> str | None:
        if not self.root.is_dir():
            return None
        return self._name

    async def list_all_documents(self) -> list[DocumentInfo]:
        return await asyncio.to_thread(self._scan)

    async def get_document(self, ref: str) -> DocumentInfo | None:
        """Look up a document by id, name or file stem."""

        def load() -> DocumentInfo | None:
            document_id = ref.strip().lower().replace("_", " ")
            path = self.path_for(document_id) or self.path_for(ref.strip().lower())
            if path is None:
                return None
            return self._load_info(path)

        return await asyncio.to_thread(load)

    async def get_block_tree(self, document_id: str) -> list[Block] | None:
        def load() -> list[Block] | None:
            path = self.path_for(document_id)
            if path is None:
                return None
            _, body = parse_front_matter(path.read_text(encoding="utf-8"))
            return parse_outline(body)

        return await asyncio.to_thread(load)

    async def read_document_bytes(self, document_id: str) -> bytes | None:
        def read() -> bytes | None:
            path = self.path_for(document_id)
            return path.read_bytes() if path is not None else None

        return await asyncio.to_thread(read)

    async def update_document_content(
        self, document_id: str, content: bytes, modified_at: datetime | None = None
    ) -> None:
        """Write a document's markdown and set its mtime.

        Raises:
            NotFoundError: If the id cannot be mapped to a file.
        """

        def write() -> None:
            path = self.path_for(document_id) or self.new_path_for(document_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            temp = path.with_name(f".{path.name}.tmp")
            temp.write_bytes(content)
            temp.replace(path)
            if modified_at is not None:
                stamp = modified_at.timestamp()
                os.utime(path, (stamp, stamp))
            logger.info("Updated %s", path.relative_to(self.root))

        await asyncio.to_thread(write)

    async def read_asset(self, path: str) -> bytes | None:
        """Read an asset referenced as ./assets/<name> or assets/<name>."""
        relative = path.removeprefix("./").lstrip("/")
        if not relative.startswith(f"{ASSETS_DIR}/"):
            relative = f"{ASSETS_DIR}/{relative}"
        full = (self.root / relative).resolve()
        if not full.is_relative_to(self.root / ASSETS_DIR):
            logger.warning("Asset path escapes the vault: %s", path)
            return None

        def read() -> bytes | None:
            return full.read_bytes() if full.is_file() else None

        return await asyncio.to_thread(read)


def _journal_day_from_name(name: str) -> int | None:
    match = _JOURNAL_NAME.match(name.strip())
    return int("".join(match.groups())) if match else None
