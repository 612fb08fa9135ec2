"""Error taxonomy shared by launcher, registry and protocol surface."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for failures reported back to callers."""

    kind = "Bridge"


class ValidationError(BridgeError, ValueError):
    """Malformed caller input, raised before any subprocess is spawned."""

    kind = "Validation"


class ExecutionError(BridgeError):
    """Agent subprocess failed to spawn, exited non-zero, timed out or produced garbage."""

    kind = "Execution"

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class TaskNotFoundError(BridgeError, LookupError):
    """Lookup against an unknown or expired task id."""

    kind = "Not found"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class InvalidTransitionError(BridgeError):
    """Registry update that would break the task state machine."""

    kind = "State"


def describe_error(error: BaseException) -> str:
    """Render a caller-facing error line naming the failure kind."""

    kind = error.kind if isinstance(error, BridgeError) else "Unexpected"
    return f"{kind} error: {error}"
