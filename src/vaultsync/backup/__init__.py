"""Backup module - From host edits to stored artifacts.

Architecture:
    ChangeEvent → ChangeCoalescer → resolve_document_ids → ArtifactBuilder → BackupOrchestrator

Components:
- **ChangeCoalescer**: Buffers events until a quiescence window elapses
- **Scheduler**: Clock and timer source (AsyncioScheduler in production)
- **resolve_document_ids**: Maps raw change records to document ids
- **ArtifactBuilder**: Serializes a document to markdown plus metadata
- **BackupOrchestrator**: Stores an artifact on all providers concurrently
"""

from vaultsync.backup.artifact import (
    ArtifactBuilder,
    detect_tag_page,
    document_path,
    find_asset_references,
    is_system_page,
    render_markdown,
)
from vaultsync.backup.coalescer import ChangeCoalescer, CoalescerState
from vaultsync.backup.orchestrator import BackupOrchestrator
from vaultsync.backup.resolver import resolve_document_ids
from vaultsync.backup.scheduler import AsyncioScheduler, Scheduler, TimerHandle

__all__ = [
    "ArtifactBuilder",
    "AsyncioScheduler",
    "BackupOrchestrator",
    "ChangeCoalescer",
    "CoalescerState",
    "Scheduler",
    "TimerHandle",
    "detect_tag_page",
    "document_path",
    "find_asset_references",
    "is_system_page",
    "render_markdown",
    "resolve_document_ids",
]
