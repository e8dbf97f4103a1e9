"""Tests for notification system."""

from __future__ import annotations

import logging
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from vaultsync.host.protocol import NotificationLevel
from vaultsync.notifications import (
    Notification,
    Notifier,
    notification_command,
    send_notification,
)


class TestNotification:
    """Tests for Notification dataclass."""

    def test_default_level(self) -> None:
        """Should default to INFO."""
        notification = Notification(message="hello")
        assert notification.level is NotificationLevel.INFO
        assert notification.title == "vaultsync"

    def test_title_by_level(self) -> None:
        """Should title errors and warnings."""
        assert Notification("x", NotificationLevel.ERROR).title == "vaultsync - Error"
        assert Notification("x", NotificationLevel.WARNING).title == "vaultsync - Warning"


class TestSendNotification:
    """Tests for platform dispatch."""

    @patch("vaultsync.notifications.subprocess.Popen")
    @patch("vaultsync.notifications.platform.system", return_value="Linux")
    def test_linux(self, _system: MagicMock, mock_run: MagicMock) -> None:
        """Should call notify-send with critical urgency for errors."""
        assert send_notification(Notification("disk full", NotificationLevel.ERROR)) is True

        args = mock_run.call_args[0][0]
        assert args[0] == "notify-send"
        assert args[args.index("--urgency") + 1] == "critical"
        assert args[-1] == "disk full"

    @patch("vaultsync.notifications.subprocess.Popen")
    @patch("vaultsync.notifications.platform.system", return_value="Linux")
    def test_does_not_wait_for_notifier(self, _system: MagicMock, mock_popen: MagicMock) -> None:
        """Should start the notifier detached and return without waiting on it."""
        assert send_notification(Notification("x")) is True

        kwargs = mock_popen.call_args[1]
        assert kwargs["stdout"] is subprocess.DEVNULL
        assert kwargs["stderr"] is subprocess.DEVNULL
        mock_popen.return_value.wait.assert_not_called()
        mock_popen.return_value.communicate.assert_not_called()

    @patch("vaultsync.notifications.subprocess.Popen", side_effect=FileNotFoundError)
    @patch("vaultsync.notifications.platform.system", return_value="Linux")
    def test_linux_without_notify_send(self, _system: MagicMock, _run: MagicMock) -> None:
        """Should return False when notify-send is missing."""
        assert send_notification(Notification("x")) is False

    @patch("vaultsync.notifications.subprocess.Popen")
    @patch("vaultsync.notifications.platform.system", return_value="Darwin")
    def test_macos_escapes_quotes(self, _system: MagicMock, mock_run: MagicMock) -> None:
        """Should escape quotes in the AppleScript."""
        assert send_notification(Notification('say "hi"')) is True

        script = mock_run.call_args[0][0][2]
        assert 'display notification "say \\"hi\\""' in script

    @patch("vaultsync.notifications.subprocess.Popen", side_effect=PermissionError)
    @patch("vaultsync.notifications.platform.system", return_value="Darwin")
    def test_macos_failure(self, _system: MagicMock, _run: MagicMock) -> None:
        """Should return False when osascript cannot be started."""
        assert send_notification(Notification("x")) is False

    def test_windows_command(self) -> None:
        """Should build a PowerShell toast with quoted text."""
        command = notification_command("Windows", Notification("it's done"))

        assert command is not None
        assert command[0] == "powershell"
        assert "CreateTextNode('it''s done')" in command[-1]

    @patch("vaultsync.notifications.platform.system", return_value="Plan9")
    def test_unsupported_platform(self, _system: MagicMock) -> None:
        """Should return False on unknown platforms."""
        assert send_notification(Notification("x")) is False


class TestNotifier:
    """Tests for the Notifier sink."""

    @patch("vaultsync.notifications.send_notification")
    def test_logs_and_shows(
        self, mock_send: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Should log at the matching level and show a desktop notification."""
        with caplog.at_level(logging.INFO, logger="vaultsync"):
            Notifier().notify("Backup of note failed", NotificationLevel.ERROR)

        assert ("vaultsync.notifications", logging.ERROR, "Backup of note failed") in caplog.record_tuples
        (notification,) = mock_send.call_args[0]
        assert notification.level is NotificationLevel.ERROR

    @patch("vaultsync.notifications.send_notification")
    def test_desktop_disabled(self, mock_send: MagicMock) -> None:
        """Should only log when desktop notifications are off."""
        Notifier(desktop=False).notify("hello", NotificationLevel.SUCCESS)
        mock_send.assert_not_called()
