"""Host module - The document source vaultsync backs up.

Components:
- **DocumentStore / NotificationSink**: Protocols the core consumes
- **MarkdownVault**: DocumentStore over a directory of markdown files
- **VaultWatcher**: watchdog observer turning file events into ChangeEvents
"""

from vaultsync.host.protocol import DocumentStore, NotificationLevel, NotificationSink
from vaultsync.host.vault import MarkdownVault, parse_front_matter, parse_outline
from vaultsync.host.watcher import VaultEventHandler, VaultWatcher

__all__ = [
    "DocumentStore",
    "MarkdownVault",
    "NotificationLevel",
    "NotificationSink",
    "VaultEventHandler",
    "VaultWatcher",
    "parse_front_matter",
    "parse_outline",
]
