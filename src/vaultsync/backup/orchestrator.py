"""Fan-out of artifacts to every enabled provider.

This module provides:
- BackupOrchestrator.dispatch(): store one artifact on all providers at once
- BackupOrchestrator.run_pass() / run_full(): back up a list of documents
  with cumulative accounting and asset deduplication
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from vaultsync.core.types import (
    BackupArtifact,
    DispatchOutcome,
    DispatchResult,
    FatalInitializationError,
    FilteredError,
    NotFoundError,
    RunSummary,
)

if TYPE_CHECKING:
    from vaultsync.backup.artifact import ArtifactBuilder
    from vaultsync.providers.base import BackupProvider

logger = logging.getLogger(__name__)


class BackupOrchestrator:
    """Stores artifacts on providers and keeps run statistics.

    The processed-assets set lives as long as the orchestrator and is
    cleared at the start of every full run, so an asset referenced by
    several documents is uploaded once per run.
    """

    def __init__(self, builder: ArtifactBuilder) -> None:
        self._builder = builder
        self._processed_assets: set[str] = set()

    @property
    def processed_assets(self) -> frozenset[str]:
        return frozenset(self._processed_assets)

    async def dispatch(
        self, artifact: BackupArtifact, providers: Iterable[BackupProvider]
    ) -> DispatchResult:
        """Store an artifact on every initialized provider concurrently.

        A failing provider (False or an exception) never cancels the others;
        the result is computed after all of them settle.

        Args:
            artifact: Artifact to store.
            providers: Candidate providers; uninitialized ones are ignored.

        Returns:
            DispatchResult with success and total counts.
        """
        active = [p for p in providers if p.initialized]
        if not active:
            logger.warning("No initialized providers to store %r", artifact)
            return DispatchResult(success_count=0, total_count=0)

        outcomes = await asyncio.gather(
            *(provider.store(artifact) for provider in active),
            return_exceptions=True,
        )

        result = DispatchResult(success_count=0, total_count=len(active))
        for provider, outcome in zip(active, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error("Error with %s provider for %r: %s", provider.name, artifact, outcome)
                result.failures[provider.name] = str(outcome) or type(outcome).__name__
            elif outcome:
                result.success_count += 1
            else:
                result.failures[provider.name] = "store failed"

        logger.debug(
            "Dispatched %r: %d/%d providers",
            artifact,
            result.success_count,
            result.total_count,
        )
        return result

    async def backup_document(
        self,
        document_id: str,
        providers: Sequence[BackupProvider],
        summary: RunSummary | None = None,
    ) -> DispatchResult | None:
        """Build and dispatch one document, then its unseen assets.

        Args:
            document_id: Document to back up.
            providers: Enabled providers.
            summary: Counters updated in place, if given.

        Returns:
            The dispatch result, or None if the document was skipped or
            could not be built.

        Raises:
            FatalInitializationError: If no collection is open.
        """
        summary = summary if summary is not None else RunSummary()

        try:
            document = await self._builder.resolve(document_id)
            artifact = await self._builder.build(document.id)
        except (NotFoundError, FilteredError) as e:
            logger.debug("Skipping %s: %s", document_id, e)
            summary.skipped += 1
            return None
        except FatalInitializationError:
            raise
        except Exception:
            logger.exception("Error creating backup for %s", document_id)
            summary.failed += 1
            return None

        result = await self.dispatch(artifact, providers)
        if result.outcome is DispatchOutcome.FULL:
            summary.succeeded += 1
            if document.has_file:
                await self._backup_assets(document.id, providers, summary)
        else:
            summary.failed += 1
        return result

    async def _backup_assets(
        self, document_id: str, providers: Sequence[BackupProvider], summary: RunSummary
    ) -> None:
        for asset_path in await self._builder.asset_references(document_id):
            if asset_path in self._processed_assets:
                continue
            self._processed_assets.add(asset_path)

            try:
                artifact = await self._builder.build_asset(asset_path)
            except NotFoundError as e:
                logger.warning("%s", e)
                continue

            result = await self.dispatch(artifact, providers)
            if result.success_count:
                summary.assets += 1

    async def run_pass(
        self, document_ids: Iterable[str], providers: Sequence[BackupProvider]
    ) -> RunSummary:
        """Back up documents in order.

        Raises:
            FatalInitializationError: If no collection is open or no
                provider is enabled.
        """
        if not providers:
            raise FatalInitializationError(
                "No backup providers enabled. Please configure a provider first."
            )
        await self._builder.collection_name()

        summary = RunSummary()
        for document_id in document_ids:
            await self.backup_document(document_id, providers, summary)

        logger.info(
            "Backed up %d documents (%d failed, %d skipped, %d assets)",
            summary.succeeded,
            summary.failed,
            summary.skipped,
            summary.assets,
        )
        return summary

    async def run_full(
        self, document_ids: Iterable[str], providers: Sequence[BackupProvider]
    ) -> RunSummary:
        """Full backup run: reset asset deduplication, then run_pass()."""
        self._processed_assets.clear()
        return await self.run_pass(document_ids, providers)
