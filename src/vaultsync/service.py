"""Backup service facade.

Wires the document store, the providers and the backup/sync components
together and exposes the operations used by the CLI:
- start() / shutdown()
- on_host_change(): automatic backups through the change coalescer
- trigger_full_backup() / trigger_document_backup(): manual backups
- sync_all(): one reconciliation pass over every document
- archive(): one zip bundle of every eligible document
- apply_settings(): live reconfiguration
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from vaultsync.backup.artifact import ArtifactBuilder
from vaultsync.backup.coalescer import ChangeCoalescer
from vaultsync.backup.orchestrator import BackupOrchestrator
from vaultsync.backup.resolver import resolve_document_ids
from vaultsync.core.config import (
    PROVIDER_ORDER,
    Settings,
    enabled_providers,
    is_provider_toggled,
    provider_fingerprint,
    validate_provider_config,
)
from vaultsync.core.types import (
    ChangeEvent,
    DispatchOutcome,
    DispatchResult,
    DocumentSyncResult,
    FatalInitializationError,
    ProviderState,
    ProviderSyncResult,
    RunSummary,
    SyncSummary,
)
from vaultsync.host.protocol import NotificationLevel
from vaultsync.notifications import Notifier
from vaultsync.providers.registry import create_provider
from vaultsync.sync.catalog import RemoteCatalog
from vaultsync.sync.reconciler import SyncReconciler

if TYPE_CHECKING:
    from vaultsync.backup.scheduler import Scheduler
    from vaultsync.host.protocol import DocumentStore, NotificationSink
    from vaultsync.providers.base import BackupProvider

logger = logging.getLogger(__name__)

NO_PROVIDERS_MESSAGE = "No backup providers enabled. Please configure a provider first."

ProviderFactory = Callable[[str], "BackupProvider"]


class BackupService:
    """Owns the providers and drives backup and sync passes.

    Usage:
        service = BackupService(vault, Notifier(), settings)
        await service.start()
        summary = await service.trigger_full_backup()
        await service.shutdown()
    """

    def __init__(
        self,
        store: DocumentStore,
        sink: NotificationSink,
        settings: Settings | None = None,
        scheduler: Scheduler | None = None,
        provider_factory: ProviderFactory = create_provider,
    ) -> None:
        """Initialize the service.

        Args:
            store: Host document store.
            sink: Destination of user-visible messages.
            settings: Configuration (defaults to Settings()).
            scheduler: Timer source for the coalescer (defaults to asyncio).
            provider_factory: Creates an uninitialized provider for a kind.
        """
        self._store = store
        self._sink = sink
        self._settings = settings or Settings()
        self._scheduler = scheduler
        self._provider_factory = provider_factory

        self._states: dict[str, ProviderState] = {}
        self.builder = ArtifactBuilder(store, self._settings)
        self.orchestrator = BackupOrchestrator(self.builder)
        self.catalog = RemoteCatalog(self._states)
        self.reconciler = SyncReconciler(
            store, self.builder, self.catalog, self._states, self._settings.tolerance_ms
        )
        self._coalescer: ChangeCoalescer | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def states(self) -> dict[str, ProviderState]:
        return self._states

    @property
    def providers(self) -> list[BackupProvider]:
        """Initialized providers in the fixed provider order."""
        return [
            self._states[kind].provider
            for kind in PROVIDER_ORDER
            if kind in self._states and self._states[kind].initialized
        ]

    @property
    def coalescer(self) -> ChangeCoalescer | None:
        return self._coalescer

    # Lifecycle

    async def start(self) -> None:
        """Initialize providers and the change coalescer."""
        self._warn_invalid_providers(self._settings)
        for kind in enabled_providers(self._settings):
            await self._init_provider(kind)

        if not self.providers:
            self._notify(NO_PROVIDERS_MESSAGE, NotificationLevel.WARNING)

        self._coalescer = ChangeCoalescer(
            self.process_changes,
            scheduler=self._scheduler,
            quiescence_window=self._settings.debounce_seconds,
        )
        logger.info(
            "Backup service started with providers: %s",
            ", ".join(p.name for p in self.providers) or "none",
        )

    async def shutdown(self) -> None:
        """Flush pending changes, then release providers."""
        if self._coalescer is not None:
            await self._coalescer.shutdown()
        for state in self._states.values():
            await state.provider.close()
        logger.info("Backup service stopped")

    async def _init_provider(self, kind: str) -> ProviderState:
        provider = self._provider_factory(kind)
        initialized = await provider.initialize(self._settings)
        state = ProviderState(name=kind, provider=provider, initialized=initialized)
        self._states[kind] = state
        if initialized:
            logger.info("%s provider ready: %s", provider.display_name or kind, provider.location)
        else:
            logger.warning("%s provider failed to initialize", kind)
        return state

    def _warn_invalid_providers(self, settings: Settings) -> None:
        for kind in PROVIDER_ORDER:
            if not is_provider_toggled(kind, settings):
                continue
            for error in validate_provider_config(kind, settings):
                logger.warning("Provider %s disabled: %s", kind, error)

    def _notify(self, message: str, level: NotificationLevel) -> None:
        try:
            self._sink.notify(message, level)
        except Exception:
            logger.exception("Notification failed: %s", message)

    def _require_providers(self) -> list[BackupProvider]:
        providers = self.providers
        if not providers:
            raise FatalInitializationError(NO_PROVIDERS_MESSAGE)
        return providers

    def _fatal(self, error: FatalInitializationError) -> None:
        self._notify(str(error), NotificationLevel.ERROR)

    # Automatic backups

    def on_host_change(self, event: ChangeEvent) -> None:
        """Hand a host change notification to the coalescer."""
        if self._coalescer is None:
            raise RuntimeError("Backup service not started")
        self._coalescer.on_change(event)

    async def process_changes(self, events: list[ChangeEvent]) -> None:
        """Coalescer callback: back up every document the events touched."""
        document_ids = await resolve_document_ids(events, self._store)
        if not document_ids:
            logger.debug("No documents affected by %d events", len(events))
            return

        logger.info("Processing %d modified documents", len(document_ids))
        try:
            summary = await self.orchestrator.run_pass(document_ids, self.providers)
        except FatalInitializationError as e:
            logger.warning("Automatic backup skipped: %s", e)
            return

        if summary.failed:
            self._notify(
                f"Automatic backup: {summary.failed} of {summary.total} documents failed",
                NotificationLevel.WARNING,
            )

    # Manual backups

    async def trigger_full_backup(self) -> RunSummary:
        """Back up every eligible document.

        Raises:
            FatalInitializationError: If no collection is open or no
                provider is enabled.
        """
        try:
            providers = self._require_providers()
            await self.builder.collection_name()
        except FatalInitializationError as e:
            self._fatal(e)
            raise

        documents = await self._store.list_all_documents()
        if not documents:
            self._notify("No documents found in the current collection", NotificationLevel.WARNING)
            return RunSummary()

        logger.info("Found %d documents to back up", len(documents))
        summary = await self.orchestrator.run_full([d.id for d in documents], providers)
        level = NotificationLevel.SUCCESS if not summary.failed else NotificationLevel.WARNING
        self._notify(summary.message(), level)
        return summary

    async def trigger_document_backup(self, document_id: str) -> DispatchResult | None:
        """Back up one document and report the three-way outcome.

        Returns:
            The dispatch result, or None if the document was skipped or
            could not be built.

        Raises:
            FatalInitializationError: If no collection is open or no
                provider is enabled.
        """
        summary = RunSummary()
        try:
            providers = self._require_providers()
            result = await self.orchestrator.backup_document(document_id, providers, summary)
        except FatalInitializationError as e:
            self._fatal(e)
            raise

        if result is None:
            if summary.skipped:
                self._notify(
                    f"Backup of {document_id} skipped (excluded or not found)",
                    NotificationLevel.INFO,
                )
            else:
                self._notify(f"Backup of {document_id} failed", NotificationLevel.ERROR)
            return None

        if result.outcome is DispatchOutcome.FULL:
            self._notify(f"Backup of {document_id} completed successfully", NotificationLevel.SUCCESS)
        elif result.outcome is DispatchOutcome.PARTIAL:
            self._notify(
                f"Backup of {document_id} partially completed "
                f"({result.success_count}/{result.total_count} providers)",
                NotificationLevel.WARNING,
            )
        else:
            self._notify(f"Backup of {document_id} failed", NotificationLevel.ERROR)
        return result

    async def archive(self) -> DispatchResult:
        """Store one zip bundle of every eligible document.

        Raises:
            FatalInitializationError: If no collection is open or no
                provider is enabled.
        """
        try:
            providers = self._require_providers()
            documents = await self._store.list_all_documents()
            artifact = await self.builder.build_archive(d.id for d in documents)
        except FatalInitializationError as e:
            self._fatal(e)
            raise

        result = await self.orchestrator.dispatch(artifact, providers)
        level = {
            DispatchOutcome.FULL: NotificationLevel.SUCCESS,
            DispatchOutcome.PARTIAL: NotificationLevel.WARNING,
            DispatchOutcome.FAILED: NotificationLevel.ERROR,
        }[result.outcome]
        self._notify(
            f"Archive stored on {result.success_count}/{result.total_count} providers",
            level,
        )
        return result

    # Sync

    async def sync_all(self) -> SyncSummary:
        """Reconcile every document with every provider.

        The catalog cache is cleared when the pass ends, whatever the outcome.

        Raises:
            FatalInitializationError: If no collection is open or no
                provider is enabled.
        """
        try:
            self._require_providers()
            await self.builder.collection_name()
        except FatalInitializationError as e:
            self._fatal(e)
            raise

        summary = SyncSummary()
        try:
            documents = await self._store.list_all_documents()
            logger.info("Syncing %d documents", len(documents))
            for document in documents:
                try:
                    result = await self.reconciler.reconcile(document)
                except Exception:
                    logger.exception("Error syncing %s", document.id)
                    result = DocumentSyncResult(
                        document_id=document.id,
                        results=[ProviderSyncResult("*", None, ok=False)],
                    )
                summary.add(result)
                if result.pulled:
                    self._notify(
                        f"Restored {document.name} from remote backup", NotificationLevel.INFO
                    )
        finally:
            self.catalog.invalidate()

        level = NotificationLevel.SUCCESS if not summary.failed else NotificationLevel.WARNING
        self._notify(summary.message(), level)
        return summary

    # Configuration

    async def apply_settings(self, settings: Settings) -> None:
        """Switch to new settings, re-initializing only changed providers."""
        previous = self._settings
        self._settings = settings
        self.builder.settings = settings
        self.reconciler.tolerance_ms = settings.tolerance_ms
        if isinstance(self._sink, Notifier):
            self._sink.desktop = settings.show_notifications

        self._warn_invalid_providers(settings)
        wanted = enabled_providers(settings)

        for kind in list(self._states):
            if kind not in wanted:
                state = self._states.pop(kind)
                await state.provider.close()
                logger.info("Provider %s disabled", kind)

        for kind in wanted:
            state = self._states.get(kind)
            if state is not None and (
                provider_fingerprint(kind, previous) == provider_fingerprint(kind, settings)
            ):
                continue
            if state is not None:
                await state.provider.close()
            # A fresh ProviderState starts with an empty catalog cache
            await self._init_provider(kind)
            logger.info("Provider %s re-initialized", kind)

        if self._coalescer is not None:
            self._coalescer.quiescence_window = settings.debounce_seconds

        if not self.providers:
            self._notify(NO_PROVIDERS_MESSAGE, NotificationLevel.WARNING)
