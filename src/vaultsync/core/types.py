"""Shared types and dataclasses for backup and sync operations.

This module provides:
- VaultSyncError and subclasses: the error taxonomy
- DocumentKind, DocumentInfo, Block: host document model
- ChangeEvent: tagged change notification from the host
- BackupMetadata, BackupArtifact: the unit stored by providers
- DispatchOutcome, DispatchResult: result of fanning one artifact out
- RunSummary, SyncSummary: aggregate counters for a pass
- SyncDecision, SyncAction and per-provider sync results
- ProviderState: per-provider bookkeeping owned by the service
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from vaultsync.providers.base import BackupProvider

FORMAT_VERSION = "1.0"


# =============================================================================
# Errors
# =============================================================================


class VaultSyncError(Exception):
    """Base exception for vaultsync errors."""


class ConfigurationError(VaultSyncError):
    """A provider is missing required configuration."""


class ProviderNotInitializedError(ConfigurationError):
    """A provider was used before a successful initialize()."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} provider not initialized")


class TransientProviderError(VaultSyncError):
    """A single provider call failed (network, auth, IO).

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class NotFoundError(VaultSyncError):
    """Document or remote object does not exist."""


class FilteredError(VaultSyncError):
    """Document is excluded from backup (tag page, system page, tag filter)."""


class FatalInitializationError(VaultSyncError):
    """A pass cannot start (no collection open, no providers enabled)."""


# =============================================================================
# Host document model
# =============================================================================


class DocumentKind(str, Enum):
    """Kind of backed-up object."""

    JOURNAL = "journal"
    PAGE = "page"
    ASSET = "asset"


@dataclass
class Block:
    """One outline block of a document."""

    content: str
    children: list[Block] = field(default_factory=list)
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentInfo:
    """A document as enumerated by the host.

    Attributes:
        id: Canonical identifier (lower-cased page name)
        name: Page name as displayed
        modified_at: Last local modification (aware, UTC)
        kind: Journal or page
        original_name: Name before normalisation, if the host keeps one
        journal_day: YYYYMMDD integer for journals
        properties: Page-level properties (front matter)
        has_file: Whether the page is backed by a file (may reference assets)
    """

    id: str
    name: str
    modified_at: datetime
    kind: DocumentKind = DocumentKind.PAGE
    original_name: str | None = None
    journal_day: int | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    has_file: bool = True


@dataclass(frozen=True)
class ChangeEvent:
    """A change notification from the host.

    Either names the affected document directly or carries the raw block
    records the host emitted; resolve_document_ids() turns both into ids.
    """

    affected_document_id: str | None = None
    raw_blocks: tuple[Mapping[str, Any], ...] = ()
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def for_document(cls, document_id: str) -> ChangeEvent:
        """Create an event that names its document directly."""
        return cls(affected_document_id=document_id)

    @classmethod
    def from_blocks(cls, blocks: list[Mapping[str, Any]]) -> ChangeEvent:
        """Create an event from a batch of raw host block records."""
        return cls(raw_blocks=tuple(blocks))


# =============================================================================
# Artifacts
# =============================================================================


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string with millisecond precision and Z suffix."""
    return to_iso(datetime.now(UTC))


def to_iso(moment: datetime) -> str:
    """Format an aware datetime the way metadata timestamps are stored."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    text = moment.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a metadata timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the value is not ISO-8601.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class BackupMetadata:
    """Metadata describing one stored backup.

    relative_path together with collection_name identifies the same logical
    object across all providers.
    """

    timestamp: str
    collection_name: str
    document_id: str
    kind: DocumentKind = DocumentKind.PAGE
    relative_path: str | None = None
    file_name: str | None = None
    size_bytes: int = 0
    format_version: str = FORMAT_VERSION
    journal_day: str | None = None
    storage_key: str | None = None  # Filled in by listings

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the manifest form (storage_key excluded)."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "formatVersion": self.format_version,
            "collectionName": self.collection_name,
            "documentId": self.document_id,
            "kind": self.kind.value,
            "relativePath": self.relative_path,
            "fileName": self.file_name,
            "sizeBytes": self.size_bytes,
        }
        if self.journal_day:
            data["journalDay"] = self.journal_day
        return data

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], storage_key: str | None = None
    ) -> BackupMetadata:
        """Create from a manifest dictionary."""
        return cls(
            timestamp=str(data["timestamp"]),
            collection_name=str(data.get("collectionName") or "unknown"),
            document_id=str(data.get("documentId") or ""),
            kind=DocumentKind(data.get("kind") or DocumentKind.PAGE.value),
            relative_path=data.get("relativePath"),
            file_name=data.get("fileName"),
            size_bytes=int(data.get("sizeBytes") or 0),
            format_version=str(data.get("formatVersion") or FORMAT_VERSION),
            journal_day=data.get("journalDay"),
            storage_key=storage_key,
        )


@dataclass(frozen=True)
class BackupArtifact:
    """Serialized payload plus metadata for one document, ready for storage."""

    document_id: str
    payload: bytes
    metadata: BackupMetadata

    def __repr__(self) -> str:
        """Human-readable representation (payload elided)."""
        return (
            f"BackupArtifact({self.document_id!r}, "
            f"path={self.metadata.relative_path!r}, "
            f"size={len(self.payload)})"
        )


# =============================================================================
# Dispatch and run accounting
# =============================================================================


class DispatchOutcome(str, Enum):
    """Three-way classification of a dispatch."""

    FULL = "full"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class DispatchResult:
    """Result of storing one artifact on every enabled provider."""

    success_count: int
    total_count: int
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def outcome(self) -> DispatchOutcome:
        """Classify the dispatch."""
        if self.total_count > 0 and self.success_count == self.total_count:
            return DispatchOutcome.FULL
        if self.success_count > 0:
            return DispatchOutcome.PARTIAL
        return DispatchOutcome.FAILED


@dataclass
class RunSummary:
    """Cumulative counters for a backup run or coalescing pass."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    assets: int = 0

    @property
    def total(self) -> int:
        """Number of documents seen."""
        return self.succeeded + self.failed + self.skipped

    def message(self) -> str:
        """Summary line shown to the user."""
        return (
            f"Backup completed: {self.succeeded} succeeded, "
            f"{self.failed} failed, {self.skipped} skipped"
        )


# =============================================================================
# Sync
# =============================================================================


class SyncDecision(IntEnum):
    """Comparison of a local document with its newest remote backup."""

    LOCAL_NEWER = auto()
    REMOTE_NEWER = auto()
    SAME = auto()
    REMOTE_MISSING = auto()


class SyncAction(IntEnum):
    """What the reconciler did for one (document, provider) pair."""

    NONE = auto()
    PUSH = auto()
    PULL = auto()


@dataclass
class ProviderSyncResult:
    """Outcome of reconciling one document against one provider."""

    provider: str
    decision: SyncDecision | None
    action: SyncAction = SyncAction.NONE
    ok: bool = True
    error: str | None = None


@dataclass
class DocumentSyncResult:
    """Outcome of reconciling one document against all providers."""

    document_id: str
    results: list[ProviderSyncResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def pushed(self) -> bool:
        return any(r.action == SyncAction.PUSH and r.ok for r in self.results)

    @property
    def pulled(self) -> bool:
        return any(r.action == SyncAction.PULL and r.ok for r in self.results)

    @property
    def failed(self) -> bool:
        return any(not r.ok for r in self.results)


@dataclass
class SyncSummary:
    """Counters for a full sync pass."""

    pushed: int = 0
    pulled: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, result: DocumentSyncResult) -> None:
        """Fold one document's result into the counters."""
        if result.skipped:
            self.skipped += 1
        elif result.failed:
            self.failed += 1
        elif result.pulled:
            self.pulled += 1
        elif result.pushed:
            self.pushed += 1
        else:
            self.unchanged += 1

    def message(self) -> str:
        """Summary line shown to the user."""
        return (
            f"Sync completed: {self.pushed} pushed, {self.pulled} pulled, "
            f"{self.unchanged} unchanged, {self.skipped} skipped, "
            f"{self.failed} failed"
        )


@dataclass
class ProviderState:
    """Per-provider bookkeeping.

    cached_catalog is None until the RemoteCatalog fetches it; it is reset
    on re-initialization and when a sync pass completes.
    """

    name: str
    provider: BackupProvider
    initialized: bool = False
    cached_catalog: list[BackupMetadata] | None = None
