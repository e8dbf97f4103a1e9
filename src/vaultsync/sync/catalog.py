"""Per-pass cache of remote backup listings.

Listing a WebDAV or S3 backend is a remote round-trip, and the reconciler
needs the listing once per document. RemoteCatalog memoizes each
provider's listing in ProviderState.cached_catalog until invalidated.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from vaultsync.core.types import BackupMetadata, ProviderState

logger = logging.getLogger(__name__)


class RemoteCatalog:
    """Memoized provider listings for one sync pass.

    Args:
        states: Live mapping of provider name to ProviderState, owned by
            the service.
    """

    def __init__(self, states: Mapping[str, ProviderState]) -> None:
        self._states = states
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_or_fetch(self, state: ProviderState) -> list[BackupMetadata]:
        """Return the provider's listing, querying it on first use.

        Concurrent callers for the same provider share one query.

        Raises:
            TransientProviderError: If the listing fails (nothing is cached).
        """
        if state.cached_catalog is not None:
            return state.cached_catalog

        lock = self._locks.setdefault(state.name, asyncio.Lock())
        async with lock:
            if state.cached_catalog is None:
                logger.debug("Fetching catalog of %s", state.name)
                state.cached_catalog = await state.provider.list_backups()
                logger.info(
                    "Fetched %d backups from %s", len(state.cached_catalog), state.name
                )
        return state.cached_catalog

    def remember(self, state: ProviderState, metadata: BackupMetadata) -> None:
        """Record a backup just stored, if the listing is cached."""
        if state.cached_catalog is not None:
            state.cached_catalog.insert(0, metadata)

    def invalidate(self, name: str | None = None) -> None:
        """Drop the cached listing of one provider, or of all of them."""
        if name is not None:
            state = self._states.get(name)
            if state is not None:
                state.cached_catalog = None
            return

        for state in self._states.values():
            state.cached_catalog = None
        logger.debug("Catalog cache cleared")
