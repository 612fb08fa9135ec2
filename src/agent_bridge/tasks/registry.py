"""In-memory task registry: identity, state machine and garbage collection."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from agent_bridge.errors import InvalidTransitionError, TaskNotFoundError
from agent_bridge.tasks.models import (
    ALLOWED_TRANSITIONS,
    AgentResult,
    ProcessHandle,
    Task,
    TaskState,
    TaskStats,
    utc_now,
)
from agent_bridge.tasks.notifier import Notifier

logger = logging.getLogger(__name__)

USER_CANCEL_REASON = "user_request"
SHUTDOWN_CANCEL_REASON = "shutdown"


@dataclass(slots=True)
class _Transition:
    """Registry mutation waiting to be announced once the lock is released."""

    task: Task
    previous_state: TaskState

    @property
    def started(self) -> bool:
        return self.previous_state is TaskState.PENDING and self.task.state is TaskState.RUNNING

    @property
    def finished(self) -> bool:
        return not self.previous_state.is_terminal and self.task.state.is_terminal


class TaskRegistry:
    """Owns every task record and is the only place task state changes.

    Active and terminal records live in separate maps; a transition into a
    terminal state moves the record between them under the same lock
    acquisition. Notifications go out after the lock is released, so a
    listener always observes the already-applied state.
    """

    def __init__(
        self,
        *,
        notifier: Notifier | None = None,
        retention_seconds: float = 3_600.0,
        cleanup_interval_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.notifier = notifier or Notifier()
        self.retention_seconds = retention_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._active: dict[str, Task] = {}
        self._finished: dict[str, Task] = {}
        self._lock = threading.RLock()
        self._cleanup_task: asyncio.Task[None] | None = None

    def create_task(
        self,
        input_message: str,
        continuation_token: str | None = None,
        working_directory: Path | None = None,
    ) -> str:
        """Insert a pending task and return its id without waiting on any work."""

        with self._lock:
            task_id = str(uuid4())
            while task_id in self._active or task_id in self._finished:
                task_id = str(uuid4())
            now = self._clock()
            task = Task(
                id=task_id,
                input_message=input_message,
                continuation_token=continuation_token,
                working_directory=working_directory,
                state=TaskState.PENDING,
                created_at=now,
                updated_at=now,
            )
            self._active[task_id] = task
            snapshot = replace(task)

        logger.debug("Created task %s", task_id)
        self.notifier.task_created(snapshot)
        return task_id

    def get_task(self, task_id: str) -> Task | None:
        """Return a detached copy of the task, or ``None`` if unknown or purged."""

        with self._lock:
            task = self._active.get(task_id) or self._finished.get(task_id)
            if task is None:
                logger.debug("Task %s not found", task_id)
                return None
            return replace(task)

    def get_task_or_raise(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def update_task(
        self,
        task_id: str,
        *,
        state: TaskState | None = None,
        result: AgentResult | None = None,
        error: str | None = None,
        process: ProcessHandle | None = None,
    ) -> bool:
        """Merge fields into an active task.

        Returns ``False`` without touching anything when the task is unknown or
        already terminal; a late exit event for a cancelled task lands here.
        """

        with self._lock:
            transition = self._apply(
                task_id,
                state=state,
                result=result,
                error=error,
                process=process,
            )
        if transition is None:
            return False
        self._announce(transition)
        return True

    def cancel_task(
        self,
        task_id: str,
        *,
        reason: str = USER_CANCEL_REASON,
        details: str | None = None,
    ) -> bool:
        """Signal the task's process group and mark it cancelled.

        Only tasks that already hold a process handle can be cancelled; a task
        still waiting for its spawn is left alone and ``False`` is returned.
        The signal is not awaited.
        """

        with self._lock:
            task = self._active.get(task_id)
            if task is None or task.process is None:
                logger.debug("Cannot cancel task %s - not active or no process yet", task_id)
                return False
            terminate_process_group(task.process)
            transition = self._apply(task_id, state=TaskState.CANCELLED)

        if transition is None:
            return False
        logger.info("Cancelled task %s (%s)", task_id, reason)
        self._announce(transition)
        self.notifier.task_cancelled(transition.task, reason=reason, details=details)
        return True

    def cancel_all(self, *, reason: str, details: str | None = None) -> int:
        """Cancel every active task, with or without a live process."""

        transitions: list[_Transition] = []
        with self._lock:
            for task_id, task in list(self._active.items()):
                if task.process is not None:
                    terminate_process_group(task.process)
                transition = self._apply(task_id, state=TaskState.CANCELLED)
                if transition is not None:
                    transitions.append(transition)

        for transition in transitions:
            self._announce(transition)
            self.notifier.task_cancelled(transition.task, reason=reason, details=details)
        if transitions:
            logger.info("Cancelled %d active task(s): %s", len(transitions), reason)
        return len(transitions)

    def get_stats(self) -> TaskStats:
        with self._lock:
            active = len(self._active)
            completed = len(self._finished)
        return TaskStats(active=active, completed=completed, total=active + completed)

    def cleanup(self) -> int:
        """Purge terminal tasks last updated before the retention window."""

        cutoff = self._clock() - timedelta(seconds=self.retention_seconds)
        with self._lock:
            expired = [
                task_id for task_id, task in self._finished.items() if task.updated_at < cutoff
            ]
            for task_id in expired:
                del self._finished[task_id]
        if expired:
            logger.debug("Cleaned up %d old task(s)", len(expired))
        return len(expired)

    def start(self) -> None:
        """Schedule the periodic cleanup sweep on the running event loop."""

        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(),
            name="task-registry-cleanup",
        )

    def destroy(self) -> None:
        """Stop timers and cancel everything still active."""

        logger.debug("Destroying task registry")
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        cancelled = self.cancel_all(reason=SHUTDOWN_CANCEL_REASON)
        logger.debug("Task registry destroyed, cancelled %d active task(s)", cancelled)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                self.cleanup()
            except Exception:
                logger.exception("Task cleanup sweep failed")

    def _apply(
        self,
        task_id: str,
        *,
        state: TaskState | None = None,
        result: AgentResult | None = None,
        error: str | None = None,
        process: ProcessHandle | None = None,
    ) -> _Transition | None:
        task = self._active.get(task_id)
        if task is None:
            if task_id in self._finished:
                logger.debug("Ignoring update for task %s, already terminal", task_id)
            else:
                logger.warning("Attempted to update non-existent task %s", task_id)
            return None

        previous = task.state
        target = state or previous
        if target is not previous and target not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"Task {task_id}: {previous.value} -> {target.value} is not allowed",
            )
        if result is not None and target is not TaskState.COMPLETED:
            raise InvalidTransitionError(f"Task {task_id}: result requires completed state")
        if error is not None and target is not TaskState.FAILED:
            raise InvalidTransitionError(f"Task {task_id}: error requires failed state")

        task.state = target
        task.updated_at = self._clock()
        if process is not None:
            task.process = process
        if result is not None:
            task.result = result
        if error is not None:
            task.error = error

        if target.is_terminal:
            task.process = None
            del self._active[task_id]
            self._finished[task_id] = task

        logger.debug("Updated task %s: %s -> %s", task_id, previous.value, target.value)
        return _Transition(task=replace(task), previous_state=previous)

    def _announce(self, transition: _Transition) -> None:
        self.notifier.task_updated(transition.task, transition.previous_state)
        if transition.started:
            self.notifier.task_started(transition.task)
        if transition.finished:
            self.notifier.task_completed(transition.task)


def terminate_process_group(handle: ProcessHandle) -> None:
    """Send SIGTERM to the handle's whole process group, or to the process alone."""

    try:
        signal_process_group(handle.pid, signal.SIGTERM)
        logger.debug("Sent SIGTERM to process group %s", handle.pid)
    except OSError as error:
        logger.debug(
            "Process group kill failed for %s, falling back to single process: %s",
            handle.pid,
            error,
        )
        try:
            handle.terminate()
        except OSError as terminate_error:
            logger.debug("Process %s already gone: %s", handle.pid, terminate_error)


def signal_process_group(pid: int, signum: int) -> None:
    killpg = getattr(os, "killpg", None)
    if killpg is None:
        raise OSError("Process groups are not supported on this platform")
    if pid <= 1:
        raise OSError(f"Refusing to signal process group {pid}")
    killpg(pid, signum)
