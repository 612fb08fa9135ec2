"""Use-case services behind the remotely callable operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from agent_bridge.launcher import AgentLauncher, LaunchRequest
from agent_bridge.tasks.models import AgentResult, TaskState, utc_now
from agent_bridge.tasks.registry import TaskRegistry
from agent_bridge.validation import (
    resolve_working_directory,
    validate_continuation_token,
    validate_message,
    validate_task_id,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StartRequest:
    """Fresh conversation."""

    message: str
    working_directory: str | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    run_async: bool = True


@dataclass(slots=True)
class ResumeRequest:
    """Continuation of an earlier conversation; always runs where that one ran."""

    message: str
    continuation_token: str | None
    run_async: bool = True


@dataclass(slots=True)
class InvocationOutcome:
    """Either a background task id or a finished blocking result."""

    task_id: str | None = None
    result: AgentResult | None = None

    def render(self) -> str:
        if self.result is not None:
            if not self.result.session_id:
                return self.result.result
            return f"{self.result.result}\n\nResponse ID: {self.result.session_id}"
        return f"Task started successfully. Use status with task ID: {self.task_id}"


@dataclass(slots=True)
class TaskStatusView:
    """Caller-facing snapshot of one task."""

    task_id: str
    state: TaskState
    elapsed_seconds: float
    working_directory: Path
    created_at: datetime
    updated_at: datetime
    result: AgentResult | None = None
    error: str | None = None

    def render(self) -> str:
        lines = [
            f"Task {self.task_id}:",
            f"Status: {self.state.value}",
            f"Elapsed: {format_elapsed(self.elapsed_seconds)}",
            f"Working Directory: {self.working_directory}",
            f"Created: {self.created_at.isoformat()}",
            f"Updated: {self.updated_at.isoformat()}",
        ]
        if self.state is TaskState.COMPLETED and self.result is not None:
            lines.extend(
                [
                    "",
                    f"Result: {self.result.result}",
                    f"Response ID: {self.result.session_id}",
                    f"Cost: ${self.result.cost_usd:g}",
                    f"Duration: {self.result.duration_ms}ms",
                ],
            )
            if self.result.is_error:
                lines.append(f"Agent Error: {self.result.subtype}")
        elif self.state is TaskState.FAILED and self.error:
            lines.extend(["", f"Error: {self.error}"])
        return "\n".join(lines)


@dataclass(slots=True)
class CancelOutcome:
    task_id: str
    cancelled: bool

    def render(self) -> str:
        if self.cancelled:
            return f"Task {self.task_id} cancelled successfully"
        return (
            f"Task {self.task_id} could not be cancelled "
            "(may not exist, already finished or not started yet)"
        )


class BridgeService:
    """Coordinates input validation, the task registry and the launcher."""

    def __init__(
        self,
        *,
        registry: TaskRegistry,
        launcher: AgentLauncher,
        clock: Callable[[], datetime] = utc_now,
        cwd: Path | None = None,
    ) -> None:
        self.registry = registry
        self.launcher = launcher
        self._clock = clock
        self._cwd = cwd
        self._background: set[asyncio.Task[None]] = set()

    async def start(self, request: StartRequest) -> InvocationOutcome:
        message = validate_message(request.message)
        working_directory = resolve_working_directory(request.working_directory, cwd=self._cwd)
        launch = LaunchRequest(
            message=message,
            working_directory=working_directory,
            system_prompt=request.system_prompt or None,
            append_system_prompt=request.append_system_prompt or None,
        )
        return await self._invoke(launch, run_async=request.run_async)

    async def resume(self, request: ResumeRequest) -> InvocationOutcome:
        message = validate_message(request.message)
        token = validate_continuation_token(request.continuation_token)
        launch = LaunchRequest(message=message, continuation_token=token)
        return await self._invoke(launch, run_async=request.run_async)

    def status(self, task_id: str) -> TaskStatusView:
        task = self.registry.get_task_or_raise(validate_task_id(task_id))
        return TaskStatusView(
            task_id=task.id,
            state=task.state,
            elapsed_seconds=task.elapsed_seconds(self._clock()),
            working_directory=task.working_directory or self._cwd or Path.cwd(),
            created_at=task.created_at,
            updated_at=task.updated_at,
            result=task.result,
            error=task.error,
        )

    def cancel(self, task_id: str) -> CancelOutcome:
        normalized = validate_task_id(task_id)
        return CancelOutcome(task_id=normalized, cancelled=self.registry.cancel_task(normalized))

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background runs to settle, e.g. after the registry was destroyed."""

        pending = set(self._background)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()

    async def _invoke(self, launch: LaunchRequest, *, run_async: bool) -> InvocationOutcome:
        if not run_async:
            return InvocationOutcome(result=await self.launcher.run_blocking(launch))

        task_id = self.registry.create_task(
            launch.message,
            continuation_token=launch.continuation_token,
            working_directory=launch.working_directory,
        )
        background = asyncio.get_running_loop().create_task(
            self._run_background(task_id, launch),
            name=f"agent-task-{task_id}",
        )
        self._background.add(background)
        background.add_done_callback(self._background.discard)
        return InvocationOutcome(task_id=task_id)

    async def _run_background(self, task_id: str, launch: LaunchRequest) -> None:
        try:
            await self.launcher.run_streaming(self.registry, task_id, launch)
        except Exception as error:
            logger.exception("Async execution error for task %s", task_id)
            self.registry.update_task(
                task_id,
                state=TaskState.FAILED,
                error=f"Unexpected launcher error: {error}",
            )


def format_elapsed(seconds: float) -> str:
    whole = int(seconds)
    minutes, remainder = divmod(whole, 60)
    if minutes > 0:
        return f"{minutes}m {remainder}s"
    return f"{remainder}s"
