"""Tests for change event resolution."""

from __future__ import annotations

from datetime import datetime

import pytest

from tests.fakes import InMemoryStore
from vaultsync.backup.resolver import resolve_document_ids
from vaultsync.core.types import ChangeEvent, DocumentInfo


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add("Alpha", alias="101")
    store.add("Beta", alias="102")
    return store


class TestResolveDocumentIds:
    """Tests for resolve_document_ids()."""

    @pytest.mark.asyncio
    async def test_direct_ids_keep_first_order(self, store: InMemoryStore) -> None:
        """Should deduplicate directly named documents in discovery order."""
        events = [ChangeEvent.for_document(name) for name in ("beta", "alpha", "beta")]
        assert await resolve_document_ids(events, store) == ["beta", "alpha"]

    @pytest.mark.asyncio
    async def test_block_shapes(self, store: InMemoryStore) -> None:
        """Should resolve page names, page ids and parent references."""
        event = ChangeEvent.from_blocks(
            [
                {"page": {"name": "Alpha"}},
                {"page": {"id": 102}},
                {"parent": {"page": 101}},
                {"content": "no page at all"},
            ]
        )
        assert await resolve_document_ids([event], store) == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_lookups_are_cached(self, store: InMemoryStore) -> None:
        """Should look each reference up once per call."""
        events = [ChangeEvent.from_blocks([{"page": 101}, {"page": {"id": 101}}])] * 3
        await resolve_document_ids(events, store)
        assert store.lookups == ["101"]

    @pytest.mark.asyncio
    async def test_unknown_pages_dropped(self, store: InMemoryStore) -> None:
        """Should ignore references to pages the store does not know."""
        event = ChangeEvent.from_blocks([{"page": {"name": "Gamma"}}, "not a block"])  # type: ignore[list-item]
        assert await resolve_document_ids([event], store) == []

    @pytest.mark.asyncio
    async def test_store_errors_are_tolerated(self) -> None:
        """Should skip a reference whose lookup raises."""

        class FlakyStore(InMemoryStore):
            async def get_document(self, ref: str) -> DocumentInfo | None:
                if ref == "bad":
                    raise ConnectionError("host went away")
                return await super().get_document(ref)

        store = FlakyStore()
        store.add("Alpha", modified_at=datetime(2024, 1, 1).astimezone())
        event = ChangeEvent.from_blocks([{"page": {"name": "bad"}}, {"page": {"name": "Alpha"}}])

        assert await resolve_document_ids([event], store) == ["alpha"]

    @pytest.mark.asyncio
    async def test_empty(self, store: InMemoryStore) -> None:
        """Should return nothing for no events."""
        assert await resolve_document_ids([], store) == []
