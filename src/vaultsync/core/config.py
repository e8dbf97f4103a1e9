"""Configuration classes for vaultsync.

This module provides:
- Settings: top-level configuration with one section per provider
- enabled_providers(): which providers are switched on and complete
- validate_provider_config(): human readable validation errors
- load_settings() / save_settings(): JSON persistence
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PROVIDER_ORDER = ("s3", "webdav", "local")
DEFAULT_PATH_PREFIX = "vaultsync-backup"


@dataclass
class S3Settings:
    """Configuration for an S3-compatible bucket.

    Attributes:
        enabled: Whether backups go to this bucket.
        bucket_name: Bucket name (required).
        region: AWS region.
        access_key_id: Access key (required).
        secret_access_key: Secret key (required).
        path_prefix: Key prefix inside the bucket.
        custom_endpoint: Endpoint URL for MinIO, R2 and similar services.
    """

    enabled: bool = False
    bucket_name: str = ""
    region: str = "us-east-1"
    access_key_id: str = ""
    secret_access_key: str = ""
    path_prefix: str = DEFAULT_PATH_PREFIX
    custom_endpoint: str = ""


@dataclass
class WebDAVSettings:
    """Configuration for a WebDAV server (Nextcloud, Synology, ...)."""

    enabled: bool = False
    url: str = ""
    username: str = ""
    password: str = ""
    path_prefix: str = DEFAULT_PATH_PREFIX

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.url = self.url.rstrip("/")


@dataclass
class LocalSettings:
    """Configuration for a local or mounted backup directory."""

    enabled: bool = False
    path: str = ""
    path_prefix: str = ""


def _section(cls: type, data: Any) -> Any:
    """Build a section dataclass from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Settings:
    """Top-level vaultsync configuration.

    Attributes:
        debounce_time: Quiescence window in seconds before an automatic backup.
        tolerance_ms: Timestamps closer than this are considered equal.
        backup_mode: "all" or "tagged".
        backup_tags: Comma separated tags used in "tagged" mode.
        show_notifications: Whether to show desktop notifications.
        collection_name: Overrides the collection name reported by the host.
    """

    debounce_time: float = 15.0
    tolerance_ms: int = 5000
    backup_mode: str = "all"
    backup_tags: str = ""
    show_notifications: bool = True
    collection_name: str | None = None
    s3: S3Settings = field(default_factory=S3Settings)
    webdav: WebDAVSettings = field(default_factory=WebDAVSettings)
    local: LocalSettings = field(default_factory=LocalSettings)

    def __post_init__(self) -> None:
        """Validate general settings."""
        if self.backup_mode not in ("all", "tagged"):
            raise ValueError(f"Invalid backup_mode: {self.backup_mode!r}")
        if self.debounce_time <= 0:
            raise ValueError("debounce_time must be positive")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a (possibly partial) dictionary."""
        general = {
            f.name: data[f.name]
            for f in fields(cls)
            if f.name in data and f.name not in PROVIDER_ORDER
        }
        return cls(
            **general,
            s3=_section(S3Settings, data.get("s3")),
            webdav=_section(WebDAVSettings, data.get("webdav")),
            local=_section(LocalSettings, data.get("local")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return asdict(self)

    @property
    def debounce_seconds(self) -> float:
        return float(self.debounce_time)


def parse_backup_tags(tags: str) -> list[str]:
    """Parse backup tags from a comma-separated string."""
    if not tags or not tags.strip():
        return []
    return [t.strip().lower() for t in tags.split(",") if t.strip()]


def should_backup(page_tags: list[str], settings: Settings) -> bool:
    """Check if a page with the given tags should be backed up."""
    if settings.backup_mode == "all":
        return True

    required = parse_backup_tags(settings.backup_tags)
    if not required:
        return True

    normalized = {t.lower() for t in page_tags}
    return any(tag in normalized for tag in required)


def validate_provider_config(kind: str, settings: Settings) -> list[str]:
    """Validate one provider section.

    Args:
        kind: "s3", "webdav" or "local".
        settings: Settings to check.

    Returns:
        List of validation errors, empty if valid.
    """
    errors: list[str] = []

    if kind == "s3":
        if not settings.s3.bucket_name:
            errors.append("S3: Bucket name is required")
        if not settings.s3.access_key_id:
            errors.append("S3: Access Key ID is required")
        if not settings.s3.secret_access_key:
            errors.append("S3: Secret Access Key is required")
    elif kind == "webdav":
        if not settings.webdav.url:
            errors.append("WebDAV: Server URL is required")
        if not settings.webdav.username:
            errors.append("WebDAV: Username is required")
        if not settings.webdav.password:
            errors.append("WebDAV: Password is required")
    elif kind == "local":
        if not settings.local.path:
            errors.append("Local: Backup path is required")
    else:
        errors.append(f"Unknown provider: {kind}")

    return errors


def is_provider_toggled(kind: str, settings: Settings) -> bool:
    """Check the enabled toggle of a provider section."""
    section = getattr(settings, kind, None)
    return bool(section is not None and section.enabled)


def enabled_providers(settings: Settings) -> list[str]:
    """Get providers that are switched on and fully configured.

    Returns:
        Provider kinds in the fixed order s3, webdav, local.
    """
    return [
        kind
        for kind in PROVIDER_ORDER
        if is_provider_toggled(kind, settings)
        and not validate_provider_config(kind, settings)
    ]


def provider_fingerprint(kind: str, settings: Settings) -> dict[str, Any]:
    """Get the provider section as a dict, for change detection."""
    return asdict(getattr(settings, kind))


def get_config_dir() -> Path:
    """Get the configuration directory for vaultsync.

    Returns:
        Path to ~/.vaultsync.
    """
    return Path.home() / ".vaultsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from a JSON file, falling back to defaults."""
    config_file = path or get_config_file()
    if config_file.exists():
        return Settings.from_dict(dict(json.loads(config_file.read_text())))
    logger.debug("No config file at %s, using defaults", config_file)
    return Settings()


def save_settings(settings: Settings, path: Path | None = None) -> None:
    """Save settings to a JSON file."""
    config_file = path or get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(settings.to_dict(), indent=2))
