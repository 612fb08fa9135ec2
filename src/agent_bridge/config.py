"""Runtime configuration for the agent bridge."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_CLI_NAME = "claude"


@dataclass(slots=True)
class LauncherSettings:
    """Agent subprocess settings."""

    cli_name: str = DEFAULT_CLI_NAME
    sync_timeout_seconds: float = 1_800.0


@dataclass(slots=True)
class TaskSettings:
    """Background task lifecycle settings."""

    retention_seconds: float = 3_600.0
    cleanup_interval_seconds: float = 300.0
    watchdog_interval_seconds: float = 1.0
    watchdog_enabled: bool = True


@dataclass(slots=True)
class NotificationSettings:
    """Lifecycle notification channels."""

    desktop_enabled: bool = True
    events_enabled: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    debug: bool = False
    launcher: LauncherSettings = field(default_factory=LauncherSettings)
    tasks: TaskSettings = field(default_factory=TaskSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        return cls(
            debug=_env_bool("AGENT_BRIDGE_DEBUG", default=_env_bool("MCP_CLAUDE_DEBUG", False)),
            launcher=LauncherSettings(
                cli_name=os.getenv(
                    "AGENT_BRIDGE_CLI_NAME",
                    os.getenv("CLAUDE_CLI_NAME", DEFAULT_CLI_NAME),
                ).strip(),
                sync_timeout_seconds=float(
                    os.getenv("AGENT_BRIDGE_SYNC_TIMEOUT_SECONDS", "1800"),
                ),
            ),
            tasks=TaskSettings(
                retention_seconds=float(
                    os.getenv("AGENT_BRIDGE_TASK_RETENTION_SECONDS", "3600"),
                ),
                cleanup_interval_seconds=float(
                    os.getenv("AGENT_BRIDGE_CLEANUP_INTERVAL_SECONDS", "300"),
                ),
                watchdog_interval_seconds=float(
                    os.getenv("AGENT_BRIDGE_WATCHDOG_INTERVAL_SECONDS", "1.0"),
                ),
                watchdog_enabled=_env_bool("AGENT_BRIDGE_WATCHDOG", default=True),
            ),
            notifications=NotificationSettings(
                desktop_enabled=_env_bool(
                    "AGENT_BRIDGE_NOTIFICATIONS",
                    default=_env_bool("MCP_NOTIFICATIONS", True),
                ),
                events_enabled=_env_bool("AGENT_BRIDGE_EVENTS", default=True),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for unusable values."""

        if not self.launcher.cli_name:
            raise ValueError("AGENT_BRIDGE_CLI_NAME must not be empty.")
        if self.launcher.sync_timeout_seconds <= 0:
            raise ValueError("AGENT_BRIDGE_SYNC_TIMEOUT_SECONDS must be > 0.")
        if self.tasks.retention_seconds < 0:
            raise ValueError("AGENT_BRIDGE_TASK_RETENTION_SECONDS must be >= 0.")
        if self.tasks.cleanup_interval_seconds <= 0:
            raise ValueError("AGENT_BRIDGE_CLEANUP_INTERVAL_SECONDS must be > 0.")
        if self.tasks.watchdog_interval_seconds <= 0:
            raise ValueError("AGENT_BRIDGE_WATCHDOG_INTERVAL_SECONDS must be > 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
