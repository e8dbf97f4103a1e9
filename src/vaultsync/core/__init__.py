"""Core module - Shared configuration, data model and errors."""

from vaultsync.core.config import (
    LocalSettings,
    S3Settings,
    Settings,
    WebDAVSettings,
    enabled_providers,
    load_settings,
    parse_backup_tags,
    save_settings,
    should_backup,
    validate_provider_config,
)
from vaultsync.core.types import (
    BackupArtifact,
    BackupMetadata,
    Block,
    ChangeEvent,
    ConfigurationError,
    DispatchOutcome,
    DispatchResult,
    DocumentInfo,
    DocumentKind,
    FatalInitializationError,
    FilteredError,
    NotFoundError,
    ProviderState,
    RunSummary,
    SyncAction,
    SyncDecision,
    SyncSummary,
    TransientProviderError,
    VaultSyncError,
)

__all__ = [
    # Config
    "LocalSettings",
    "S3Settings",
    "Settings",
    "WebDAVSettings",
    "enabled_providers",
    "load_settings",
    "parse_backup_tags",
    "save_settings",
    "should_backup",
    "validate_provider_config",
    # Data model
    "BackupArtifact",
    "BackupMetadata",
    "Block",
    "ChangeEvent",
    "DispatchOutcome",
    "DispatchResult",
    "DocumentInfo",
    "DocumentKind",
    "ProviderState",
    "RunSummary",
    "SyncAction",
    "SyncDecision",
    "SyncSummary",
    # Errors
    "ConfigurationError",
    "FatalInitializationError",
    "FilteredError",
    "NotFoundError",
    "TransientProviderError",
    "VaultSyncError",
]
