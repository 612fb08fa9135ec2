"""Launch request model and agent command-line construction."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from agent_bridge.config import DEFAULT_CLI_NAME

logger = logging.getLogger(__name__)


class LaunchMode(str, Enum):
    """How the caller waits for the agent."""

    BLOCKING = "blocking"
    STREAMING = "streaming"


@dataclass(slots=True)
class LaunchRequest:
    """Inputs required to execute one agent invocation."""

    message: str
    mode: LaunchMode = LaunchMode.BLOCKING
    continuation_token: str | None = None
    working_directory: Path | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None


def build_agent_args(request: LaunchRequest) -> list[str]:
    """Argument vector after the binary: non-interactive, permission checks off."""

    args = ["-p", request.message]
    if request.mode is LaunchMode.STREAMING:
        args.extend(["--output-format", "stream-json", "--verbose"])
    else:
        args.extend(["--output-format", "json"])
    if request.continuation_token:
        args.extend(["--resume", request.continuation_token])
    if request.system_prompt:
        args.extend(["--system-prompt", request.system_prompt])
    if request.append_system_prompt:
        args.extend(["--append-system-prompt", request.append_system_prompt])
    args.append("--dangerously-skip-permissions")
    return args


def resolve_cli_path(cli_name: str, *, home: Path | None = None) -> str:
    """Find the agent binary: absolute override, per-user install, then PATH."""

    if os.path.isabs(cli_name):
        logger.debug("Using absolute agent path: %s", cli_name)
        return cli_name

    if cli_name == DEFAULT_CLI_NAME:
        local_install = (home or Path.home()) / ".claude" / "local" / "claude"
        if local_install.exists():
            logger.debug("Found local agent CLI at: %s", local_install)
            return str(local_install)

    found = shutil.which(cli_name)
    logger.debug("PATH lookup for %s: %s", cli_name, found or "not found")
    return found or cli_name
