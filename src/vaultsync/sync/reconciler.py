"""Per-document reconciliation against every provider.

For one document and each initialized provider:
1. Look up the newest remote backup of the document's relative path in
   the open collection (other collections under the same prefix never match)
2. Decide (see decisions.py): push, pull or nothing
3. Pull at most once, from the newest REMOTE_NEWER provider
4. Push to every provider where local is newer or the backup is missing;
   after a pull, push the pulled content to providers still behind it

Pushes are stamped with the document's modification time (not the wall
clock) and pulls set the local modification time to the remote stamp, so
a reconciled pair compares SAME on the next pass.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING

from vaultsync.backup.artifact import document_path
from vaultsync.core.types import (
    BackupArtifact,
    BackupMetadata,
    DocumentInfo,
    DocumentSyncResult,
    FilteredError,
    NotFoundError,
    ProviderState,
    ProviderSyncResult,
    SyncAction,
    SyncDecision,
    TransientProviderError,
    parse_timestamp,
)
from vaultsync.sync.decisions import ACTIONS, DEFAULT_TOLERANCE_MS, diff_with_remote

if TYPE_CHECKING:
    from vaultsync.backup.artifact import ArtifactBuilder
    from vaultsync.host.protocol import DocumentStore
    from vaultsync.sync.catalog import RemoteCatalog

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class _Comparison:
    state: ProviderState
    result: ProviderSyncResult
    catalog: list[BackupMetadata] | None = None
    match: BackupMetadata | None = None


@dataclasses.dataclass
class _Pulled:
    source: _Comparison
    match: BackupMetadata
    data: bytes


class SyncReconciler:
    """Decides and performs push/pull for single documents."""

    def __init__(
        self,
        store: DocumentStore,
        builder: ArtifactBuilder,
        catalog: RemoteCatalog,
        states: Mapping[str, ProviderState],
        tolerance_ms: int = DEFAULT_TOLERANCE_MS,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Host document store (read and update).
            builder: Artifact builder used for pushes.
            catalog: Cached remote listings.
            states: Live mapping of provider name to ProviderState.
            tolerance_ms: Timestamps closer than this compare SAME.
        """
        self._store = store
        self._builder = builder
        self._catalog = catalog
        self._states = states
        self.tolerance_ms = tolerance_ms

    async def reconcile(self, document: DocumentInfo | str) -> DocumentSyncResult:
        """Reconcile one document with every initialized provider.

        Args:
            document: The document, or its id.

        Returns:
            Per-provider outcomes. Excluded or vanished documents are
            reported as skipped.
        """
        if isinstance(document, str):
            found = await self._store.get_document(document)
            if found is None:
                logger.debug("Skipping sync of %s: document not found", document)
                return DocumentSyncResult(document_id=document, skipped=True)
            document = found

        try:
            self._builder.check_eligible(document)
        except FilteredError as e:
            logger.debug("Skipping sync of %s: %s", document.id, e)
            return DocumentSyncResult(document_id=document.id, skipped=True)

        relative_path, _ = document_path(document)
        collection = await self._builder.collection_name()
        states = [s for s in self._states.values() if s.initialized]
        comparisons = await asyncio.gather(
            *(
                self._compare(state, collection, relative_path, document.modified_at)
                for state in states
            )
        )

        try:
            pulled = await self._pull(document, comparisons)
            if pulled is not None:
                await self._push_pulled(pulled, collection, relative_path, comparisons)
            else:
                await self._push_local(document, comparisons)
        except (NotFoundError, FilteredError) as e:
            logger.debug("Skipping sync of %s: %s", document.id, e)
            return DocumentSyncResult(document_id=document.id, skipped=True)

        result = DocumentSyncResult(
            document_id=document.id, results=[c.result for c in comparisons]
        )
        logger.debug(
            "Reconciled %s: %s",
            document.id,
            ", ".join(f"{r.provider}={r.action.name.lower()}" for r in result.results),
        )
        return result

    async def _compare(
        self,
        state: ProviderState,
        collection: str,
        relative_path: str,
        local_modified_at: datetime,
    ) -> _Comparison:
        try:
            catalog = await self._catalog.get_or_fetch(state)
        except TransientProviderError as e:
            logger.warning("%s", e)
            return _Comparison(
                state, ProviderSyncResult(state.name, None, ok=False, error=str(e))
            )

        decision, match = diff_with_remote(
            catalog, relative_path, local_modified_at, self.tolerance_ms, collection
        )
        return _Comparison(
            state,
            ProviderSyncResult(state.name, decision, ACTIONS[decision]),
            catalog,
            match,
        )

    async def _pull(
        self, document: DocumentInfo, comparisons: list[_Comparison]
    ) -> _Pulled | None:
        """Pull from the newest REMOTE_NEWER provider that can serve the object.

        Returns:
            What was pulled and from where, or None if nothing was pulled.
        """
        candidates = [
            (c, c.match) for c in comparisons
            if c.result.decision is SyncDecision.REMOTE_NEWER and c.match is not None
        ]
        candidates.sort(key=lambda pair: parse_timestamp(pair[1].timestamp), reverse=True)

        pulled: _Pulled | None = None
        for comparison, match in candidates:
            if pulled is not None:
                # Superseded by the newer copy already pulled
                comparison.result.action = SyncAction.NONE
                continue

            key = match.storage_key or comparison.state.provider.key_for(match)
            try:
                data = await comparison.state.provider.fetch(key)
            except TransientProviderError as e:
                logger.warning("%s", e)
                comparison.result.ok = False
                comparison.result.error = str(e)
                continue

            if data is None:
                logger.warning("Backup %s vanished from %s", key, comparison.state.name)
                comparison.result.action = SyncAction.NONE
                comparison.result.error = "remote object missing"
                continue

            await self._store.update_document_content(
                document.id, data, parse_timestamp(match.timestamp)
            )
            logger.info("Pulled %s from %s", document.id, comparison.state.name)
            pulled = _Pulled(comparison, match, data)

        return pulled

    async def _push_local(self, document: DocumentInfo, comparisons: list[_Comparison]) -> None:
        targets = [c for c in comparisons if c.result.ok and c.result.action is SyncAction.PUSH]
        if not targets:
            return

        artifact = await self._builder.build(document.id, timestamp=document.modified_at)
        await self._store_on(artifact, targets)

    async def _push_pulled(
        self,
        pulled: _Pulled,
        collection: str,
        relative_path: str,
        comparisons: list[_Comparison],
    ) -> None:
        pulled_at = parse_timestamp(pulled.match.timestamp)

        targets: list[_Comparison] = []
        for comparison in comparisons:
            if comparison is pulled.source or comparison.catalog is None:
                continue
            decision, _ = diff_with_remote(
                comparison.catalog, relative_path, pulled_at, self.tolerance_ms, collection
            )
            if ACTIONS[decision] is SyncAction.PUSH:
                comparison.result.action = SyncAction.PUSH
                targets.append(comparison)
            elif comparison.result.action is SyncAction.PUSH:
                comparison.result.action = SyncAction.NONE

        if targets:
            # Legacy suffix matches are stored back under the canonical path
            metadata = dataclasses.replace(
                pulled.match,
                storage_key=None,
                collection_name=collection,
                relative_path=relative_path,
                file_name=relative_path.rsplit("/", 1)[-1],
                size_bytes=len(pulled.data),
            )
            artifact = BackupArtifact(pulled.match.document_id, pulled.data, metadata)
            await self._store_on(artifact, targets)

    async def _store_on(self, artifact: BackupArtifact, targets: list[_Comparison]) -> None:
        outcomes = await asyncio.gather(*(t.state.provider.store(artifact) for t in targets))
        for target, ok in zip(targets, outcomes, strict=True):
            target.result.ok = ok
            if ok:
                stored = dataclasses.replace(
                    artifact.metadata, storage_key=target.state.provider.key_for(artifact.metadata)
                )
                self._catalog.remember(target.state, stored)
            else:
                target.result.error = "store failed"
