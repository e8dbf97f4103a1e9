"""Sync module - Reconciling local documents with remote backups.

Architecture:
    SyncReconciler → RemoteCatalog (cached listings) → decisions → push / pull

Components:
- **decisions**: Timestamp comparison with tolerance (decision table)
- **RemoteCatalog**: Per-pass memoized provider listings
- **SyncReconciler**: Push/pull of one document across providers
"""

from vaultsync.sync.catalog import RemoteCatalog
from vaultsync.sync.decisions import (
    ACTIONS,
    DEFAULT_TOLERANCE_MS,
    compare_timestamps,
    diff_with_remote,
    find_latest,
    latest_first,
)
from vaultsync.sync.reconciler import SyncReconciler

__all__ = [
    "ACTIONS",
    "DEFAULT_TOLERANCE_MS",
    "RemoteCatalog",
    "SyncReconciler",
    "compare_timestamps",
    "diff_with_remote",
    "find_latest",
    "latest_first",
]
