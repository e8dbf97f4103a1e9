"""User-visible notifications for vaultsync.

This module provides:
- Notification: a message with a level
- send_notification(): native desktop notification (notify-send,
  osascript or a PowerShell toast)
- Notifier: the NotificationSink used by the service; always logs and
  optionally shows a desktop notification
"""

from __future__ import annotations

import logging
import platform
import subprocess
from dataclasses import dataclass

from vaultsync.host.protocol import NotificationLevel

logger = logging.getLogger(__name__)

APP_NAME = "vaultsync"

_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}

_TITLES = {
    NotificationLevel.INFO: APP_NAME,
    NotificationLevel.SUCCESS: f"{APP_NAME} - Backup",
    NotificationLevel.WARNING: f"{APP_NAME} - Warning",
    NotificationLevel.ERROR: f"{APP_NAME} - Error",
}

_TOAST_SCRIPT = """
[Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
$template = [Windows.UI.Notifications.ToastNotificationManager]::GetTemplateContent(1)
$lines = $template.GetElementsByTagName("text")
$lines.Item(0).AppendChild($template.CreateTextNode('{title}')) | Out-Null
$lines.Item(1).AppendChild($template.CreateTextNode('{message}')) | Out-Null
$toast = New-Object Windows.UI.Notifications.ToastNotification $template
[Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier('{app}').Show($toast)
"""


@dataclass
class Notification:
    """Represents a notification to display."""

    message: str
    level: NotificationLevel = NotificationLevel.INFO

    @property
    def title(self) -> str:
        return _TITLES[self.level]


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _powershell_quote(text: str) -> str:
    return text.replace("'", "''")


def notification_command(system: str, notification: Notification) -> list[str] | None:
    """Build the command showing a notification on a platform.

    Args:
        system: Value of platform.system().
        notification: What to show.

    Returns:
        The argv to run, or None if the platform has no notifier.
    """
    if system == "Linux":
        urgency = "critical" if notification.level is NotificationLevel.ERROR else "normal"
        return [
            "notify-send",
            "--urgency", urgency,
            "--app-name", APP_NAME,
            notification.title,
            notification.message,
        ]
    if system == "Darwin":
        script = (
            f"display notification {_applescript_quote(notification.message)} "
            f"with title {_applescript_quote(notification.title)}"
        )
        return ["osascript", "-e", script]
    if system == "Windows":
        script = _TOAST_SCRIPT.format(
            title=_powershell_quote(notification.title),
            message=_powershell_quote(notification.message),
            app=APP_NAME,
        )
        return ["powershell", "-ExecutionPolicy", "Bypass", "-Command", script]
    return None


def send_notification(notification: Notification) -> bool:
    """Send a desktop notification.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()
    command = notification_command(system, notification)
    if command is None:
        logger.debug("Notifications not supported on %s", system)
        return False

    try:
        # Started, not awaited: notify() is called from the event loop thread
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
    except FileNotFoundError:
        logger.debug("%s not found, desktop notifications unavailable", command[0])
        return False
    except OSError as e:
        logger.debug("Desktop notification failed: %s", e)
        return False
    return True


class Notifier:
    """NotificationSink that logs every message and mirrors it to the desktop.

    Args:
        desktop: Whether to show desktop notifications (show_notifications).
    """

    def __init__(self, desktop: bool = True) -> None:
        self.desktop = desktop

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        level = NotificationLevel(level)
        logger.log(_LOG_LEVELS[level], "%s", message)
        if self.desktop:
            send_notification(Notification(message=message, level=level))
