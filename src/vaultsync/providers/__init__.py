"""Providers module - Storage backends for backups.

Variants:
- **LocalBackupProvider**: a local or mounted directory
- **S3BackupProvider**: S3-compatible object storage (boto3)
- **WebDAVBackupProvider**: WebDAV servers (httpx)

All variants share the key scheme in base.derive_key().
"""

from vaultsync.providers.base import (
    BackupProvider,
    content_type_for,
    derive_key,
    parse_key,
)
from vaultsync.providers.local import LocalBackupProvider
from vaultsync.providers.registry import PROVIDER_CLASSES, ProviderKind, create_provider
from vaultsync.providers.s3 import S3BackupProvider
from vaultsync.providers.webdav import WebDAVBackupProvider

__all__ = [
    "BackupProvider",
    "LocalBackupProvider",
    "PROVIDER_CLASSES",
    "ProviderKind",
    "S3BackupProvider",
    "WebDAVBackupProvider",
    "content_type_for",
    "create_provider",
    "derive_key",
    "parse_key",
]
