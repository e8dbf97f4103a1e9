"""Interfaces of the host application consumed by vaultsync.

The backup core never talks to a concrete editor. It reads documents
through a DocumentStore and reports to a NotificationSink; MarkdownVault
is the bundled DocumentStore.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Protocol

from vaultsync.core.types import Block, DocumentInfo


class NotificationLevel(str, Enum):
    """Severity of a user-visible notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class DocumentStore(Protocol):
    """Read/write access to the host's documents."""

    async def current_collection(self) -> str | None:
        """Name of the open collection, or None when nothing is open."""
        ...

    async def list_all_documents(self) -> list[DocumentInfo]:
        ...

    async def get_document(self, ref: str) -> DocumentInfo | None:
        """Look a document up by id or by a host-specific alias."""
        ...

    async def get_block_tree(self, document_id: str) -> list[Block] | None:
        ...

    async def read_document_bytes(self, document_id: str) -> bytes | None:
        """Exact stored content of a file-backed document, or None."""
        ...

    async def update_document_content(
        self, document_id: str, content: bytes, modified_at: datetime | None = None
    ) -> None:
        """Replace a document's content.

        Raises:
            NotFoundError: If the id cannot be mapped to a location.
        """
        ...

    async def read_asset(self, path: str) -> bytes | None:
        ...


class NotificationSink(Protocol):
    """Destination of user-visible messages."""

    def notify(self, message: str, level: NotificationLevel) -> None:
        ...
