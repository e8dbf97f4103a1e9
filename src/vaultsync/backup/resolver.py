"""Resolve change events to the documents they touched.

All knowledge of the host's raw block record shape lives here. A raw
block may reference its page as:
- {"page": {"name": "..."}}           name known directly
- {"page": {"id": ...}} / {"page": id} page id, looked up via the store
- {"parent": {"page": ...}}            same forms, one level up
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from vaultsync.core.types import ChangeEvent

if TYPE_CHECKING:
    from vaultsync.host.protocol import DocumentStore

logger = logging.getLogger(__name__)


def _page_reference(block: Mapping[str, Any]) -> tuple[str | None, str | None]:
    """Extract (page name, page id) from a raw block record."""
    candidates = [block.get("page")]
    parent = block.get("parent")
    if isinstance(parent, Mapping):
        candidates.append(parent.get("page"))

    for page in candidates:
        if isinstance(page, Mapping):
            if page.get("name"):
                return str(page["name"]), None
            if page.get("id") is not None:
                return None, str(page["id"])
        elif isinstance(page, str | int) and not isinstance(page, bool):
            return None, str(page)

    return None, None


async def resolve_document_ids(
    events: Iterable[ChangeEvent], store: DocumentStore
) -> list[str]:
    """Collect the ids of documents touched by events.

    Args:
        events: Events in arrival order.
        store: Document store used to resolve page ids and names.

    Returns:
        Unique document ids in order of first discovery.
    """
    found: dict[str, None] = {}
    lookups: dict[str, str | None] = {}

    async def lookup(ref: str) -> str | None:
        if ref not in lookups:
            try:
                document = await store.get_document(ref)
            except Exception as e:
                logger.warning("Could not fetch document %s: %s", ref, e)
                document = None
            lookups[ref] = document.id if document else None
        return lookups[ref]

    for event in events:
        if event.affected_document_id:
            found.setdefault(event.affected_document_id, None)
            continue

        for block in event.raw_blocks:
            if not isinstance(block, Mapping):
                continue
            name, page_id = _page_reference(block)
            ref = name or page_id
            if ref is None:
                continue
            document_id = await lookup(ref)
            if document_id:
                found.setdefault(document_id, None)
            else:
                logger.debug("Block references unknown page %s", ref)

    return list(found)
