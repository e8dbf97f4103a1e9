"""Registry of provider variants.

The set of variants is closed: every ProviderKind maps to exactly one
BackupProvider subclass.
"""

from __future__ import annotations

from enum import Enum

from vaultsync.providers.base import BackupProvider
from vaultsync.providers.local import LocalBackupProvider
from vaultsync.providers.s3 import S3BackupProvider
from vaultsync.providers.webdav import WebDAVBackupProvider


class ProviderKind(str, Enum):
    """Tag of a provider variant, matching its settings section name."""

    S3 = "s3"
    WEBDAV = "webdav"
    LOCAL = "local"


PROVIDER_CLASSES: dict[ProviderKind, type[BackupProvider]] = {
    ProviderKind.S3: S3BackupProvider,
    ProviderKind.WEBDAV: WebDAVBackupProvider,
    ProviderKind.LOCAL: LocalBackupProvider,
}


def create_provider(kind: str | ProviderKind) -> BackupProvider:
    """Factory function to create an uninitialized provider.

    Args:
        kind: "s3", "webdav" or "local".

    Returns:
        New provider instance; call initialize() before use.

    Raises:
        ValueError: If the kind is unknown.
    """
    try:
        provider_kind = ProviderKind(kind)
    except ValueError:
        raise ValueError(f"Unknown provider kind: {kind}") from None
    return PROVIDER_CLASSES[provider_kind]()
