"""Caller input validation performed before any side effect."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from agent_bridge.errors import ValidationError

logger = logging.getLogger(__name__)


def validate_message(message: object) -> str:
    """Return the message unchanged if it is a non-empty string."""

    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message must be a non-empty string")
    return message


def validate_task_id(task_id: object) -> str:
    if not isinstance(task_id, str) or not task_id.strip():
        raise ValidationError("Task ID must be a non-empty string")
    return task_id.strip()


def validate_continuation_token(token: object) -> str:
    if not isinstance(token, str) or not token.strip():
        raise ValidationError(
            "previousResponseId is required to resume a conversation",
        )
    return token.strip()


def resolve_working_directory(
    working_directory: str | os.PathLike[str] | None,
    *,
    cwd: Path | None = None,
) -> Path:
    """Resolve the directory the agent runs in.

    ``None`` and empty strings mean the host's current directory. Anything
    else is resolved to an absolute path which must exist, be a directory and
    be readable.
    """

    base = cwd or Path.cwd()
    if working_directory is None or str(working_directory).strip() == "":
        return base

    candidate = Path(working_directory).expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    resolved = candidate.resolve()

    if not resolved.is_relative_to(base.resolve()):
        logger.debug("Working directory %s is outside %s", resolved, base)
    if not resolved.exists():
        raise ValidationError(f"Working directory does not exist: {resolved}")
    if not resolved.is_dir():
        raise ValidationError(f"Working directory is not a directory: {resolved}")
    if not os.access(resolved, os.R_OK | os.X_OK):
        raise ValidationError(f"Working directory is not accessible: {resolved}")

    logger.debug("Using working directory: %s", resolved)
    return resolved
