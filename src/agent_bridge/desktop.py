"""Local desktop notifications for task lifecycle events."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class Sound(str, Enum):
    """Audible cue per lifecycle event."""

    STARTED = "Tink"
    COMPLETED = "Glass"
    FAILED = "Basso"
    CANCELLED = "Funk"


@dataclass(slots=True)
class DesktopNotification:
    title: str
    message: str
    sound: Sound


class DesktopNotifier:
    """Fire-and-forget notification helper processes.

    Commands are spawned without blocking the caller; a daemon thread waits
    on each one so it is reaped. Any failure is logged at debug level and
    otherwise ignored.
    """

    def __init__(self, platform: str) -> None:
        self.platform = platform

    @classmethod
    def for_platform(cls, platform: str | None = None) -> DesktopNotifier | None:
        """Return a notifier if the platform has a notification facility."""

        current = platform or sys.platform
        if current == "darwin":
            return cls(current)
        if current.startswith("linux") and shutil.which("notify-send"):
            return cls(current)
        return None

    def notify(self, notification: DesktopNotification) -> None:
        for command in self.commands(notification):
            try:
                process = subprocess.Popen(  # noqa: S603
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as error:
                logger.debug("Desktop notification command %s failed: %s", command[0], error)
                continue
            threading.Thread(
                target=process.wait,
                name=f"reap-{command[0]}",
                daemon=True,
            ).start()

    def commands(self, notification: DesktopNotification) -> list[Sequence[str]]:
        message = _single_line(notification.message)
        if self.platform == "darwin":
            script = (
                f'display notification "{_escape_applescript(message)}" '
                f'with title "{_escape_applescript(notification.title)}"'
            )
            return [
                ["osascript", "-e", script],
                ["afplay", f"/System/Library/Sounds/{notification.sound.value}.aiff"],
            ]
        return [["notify-send", "--app-name=agent-bridge", notification.title, message]]


def _single_line(text: str) -> str:
    return text.replace("\r", " ").replace("\n", " ")


def _escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
