"""Controllers for agent-bridge CLI commands."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from agent_bridge.config import Settings
from agent_bridge.errors import ValidationError
from agent_bridge.launcher import AgentLauncher, LaunchRequest
from agent_bridge.server import serve
from agent_bridge.service import InvocationOutcome
from agent_bridge.validation import (
    resolve_working_directory,
    validate_continuation_token,
    validate_message,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the MCP stdio server."""

    cli_name: str | None = None
    debug: bool = False
    notifications: bool = True


@dataclass(slots=True)
class AskCommand:
    """CLI input for one blocking agent invocation."""

    message: str
    working_directory: Path | None = None
    previous_response_id: str | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    timeout_seconds: float | None = None
    cli_name: str | None = None


@dataclass(slots=True)
class WhichCommand:
    cli_name: str | None = None


class BridgeCliController:
    """Coordinates serve, ask and which CLI operations."""

    def serve(self, command: ServeCommand) -> None:
        settings = _settings(command.cli_name)
        settings.debug = settings.debug or command.debug
        if not command.notifications:
            settings.notifications.desktop_enabled = False
        settings.validate()
        logger.debug("Serving with %s", settings)
        serve(settings)

    def ask(self, command: AskCommand) -> list[str]:
        settings = _settings(command.cli_name)
        if command.timeout_seconds is not None:
            settings.launcher.sync_timeout_seconds = command.timeout_seconds
        settings.validate()

        message = validate_message(command.message)
        token = (
            validate_continuation_token(command.previous_response_id)
            if command.previous_response_id is not None
            else None
        )
        # Resumed conversations run where they were started.
        if token and command.working_directory is not None:
            raise ValidationError("Working directory cannot be overridden when resuming")
        working_directory = (
            None if token else resolve_working_directory(command.working_directory)
        )
        launcher = AgentLauncher(
            cli_name=settings.launcher.cli_name,
            sync_timeout_seconds=settings.launcher.sync_timeout_seconds,
        )
        request = LaunchRequest(
            message=message,
            continuation_token=token,
            working_directory=working_directory,
            system_prompt=command.system_prompt or None,
            append_system_prompt=command.append_system_prompt or None,
        )
        result = asyncio.run(launcher.run_blocking(request))
        return InvocationOutcome(result=result).render().splitlines()

    def which(self, command: WhichCommand) -> list[str]:
        settings = _settings(command.cli_name)
        launcher = AgentLauncher(cli_name=settings.launcher.cli_name)
        return [launcher.cli_path]


def _settings(cli_name: str | None) -> Settings:
    settings = Settings.from_env()
    if cli_name:
        settings.launcher.cli_name = cli_name
    return settings
