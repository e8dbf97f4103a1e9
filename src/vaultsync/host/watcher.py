"""Vault directory watcher feeding change events to the coalescer.

This module provides:
- VaultEventHandler: maps watchdog events to ChangeEvents
- VaultWatcher: owns the watchdog Observer for one vault

Watchdog calls handlers on its own thread; events are handed to the
event loop with call_soon_threadsafe so the coalescer only ever runs on
the loop thread. Debouncing is left to the coalescer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from vaultsync.core.types import ChangeEvent

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from vaultsync.host.vault import MarkdownVault

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class VaultEventHandler(FileSystemEventHandler):
    """Converts file events inside a vault into ChangeEvents."""

    def __init__(
        self,
        vault: MarkdownVault,
        callback: ChangeCallback,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        """Initialize the handler.

        Args:
            vault: Vault being watched (maps paths to document ids).
            callback: Receives each ChangeEvent on the loop thread.
            loop: Event loop running the callback.
        """
        super().__init__()
        self._vault = vault
        self._callback = callback
        self._loop = loop

    def _should_ignore(self, path: Path) -> bool:
        try:
            relative = path.relative_to(self._vault.root)
        except ValueError:
            return True
        return any(part.startswith(".") for part in relative.parts)

    def _emit(self, raw_path: str | bytes) -> None:
        path = Path(_decode(raw_path))
        if self._should_ignore(path):
            return

        document_id = self._vault.document_id_for_path(path)
        if document_id is None:
            return

        event = ChangeEvent.for_document(document_id)
        logger.debug("Watcher saw change of %s", document_id)
        try:
            self._loop.call_soon_threadsafe(self._callback, event)
        except RuntimeError:
            logger.debug("Event loop closed, dropping change of %s", document_id)

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Handle created, modified, deleted and moved events."""
        if isinstance(event, DirCreatedEvent | DirModifiedEvent | DirDeletedEvent | DirMovedEvent):
            return
        if event.event_type not in ("created", "modified", "deleted", "moved"):
            return

        self._emit(event.src_path)
        if event.event_type == "moved":
            self._emit(event.dest_path)


class VaultWatcher:
    """Watches a vault directory and reports document changes."""

    def __init__(
        self,
        vault: MarkdownVault,
        callback: ChangeCallback,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            vault: Vault to watch.
            callback: Receives ChangeEvents, typically ChangeCoalescer.on_change.
            loop: Loop to deliver events on (defaults to the running loop).
        """
        if not vault.root.is_dir():
            raise ValueError(f"Vault path must be a directory: {vault.root}")

        self._vault = vault
        self._handler = VaultEventHandler(
            vault, callback, loop or asyncio.get_running_loop()
        )
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def handler(self) -> VaultEventHandler:
        return self._handler

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return

        self._observer.schedule(self._handler, str(self._vault.root), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Watching %s", self._vault.root)

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return

        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> VaultWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
