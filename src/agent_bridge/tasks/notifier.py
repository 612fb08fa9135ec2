"""Best-effort propagation of task lifecycle events.

Two independent channels are supported: a structured event sink provided by
the hosting transport, and local desktop notifications. Neither channel may
ever fail task processing, so every delivery swallows its own errors and logs
them at debug level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from agent_bridge.desktop import DesktopNotification, DesktopNotifier, Sound
from agent_bridge.tasks.models import Task, TaskState, utc_now

logger = logging.getLogger(__name__)

INPUT_PREVIEW_CHARS = 100
DESKTOP_START_PREVIEW_CHARS = 50
DESKTOP_RESULT_PREVIEW_CHARS = 60


class TaskEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class TaskEvent:
    """Structured lifecycle event sent toward the caller's transport."""

    kind: TaskEventKind
    task_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utc_now)

    @property
    def method(self) -> str:
        return f"task/{self.kind.value}"


class EventSink(Protocol):
    """Capability implemented by transports that can push unsolicited events."""

    def emit(self, event: TaskEvent) -> None:
        """Deliver one event; must not block."""


class Notifier:
    """Fans task lifecycle events out to the configured channels."""

    def __init__(
        self,
        *,
        event_sink: EventSink | None = None,
        desktop: DesktopNotifier | None = None,
    ) -> None:
        self.event_sink = event_sink
        self.desktop = desktop

    def task_created(self, task: Task) -> None:
        self._emit(
            TaskEvent(
                kind=TaskEventKind.CREATED,
                task_id=task.id,
                payload={
                    "message": preview(task.input_message, INPUT_PREVIEW_CHARS),
                    "previousResponseId": task.continuation_token,
                    "workingDirectory": _path_text(task),
                    "createdAt": task.created_at.isoformat(),
                },
            ),
        )

    def task_updated(self, task: Task, previous_state: TaskState) -> None:
        payload: dict[str, Any] = {
            "status": task.state.value,
            "previousStatus": previous_state.value,
            "updatedAt": task.updated_at.isoformat(),
        }
        if task.result is not None:
            payload["result"] = preview(task.result.result, INPUT_PREVIEW_CHARS)
        if task.error:
            payload["error"] = task.error
        self._emit(TaskEvent(kind=TaskEventKind.UPDATED, task_id=task.id, payload=payload))

    def task_started(self, task: Task) -> None:
        self._emit(
            TaskEvent(
                kind=TaskEventKind.STARTED,
                task_id=task.id,
                payload={
                    "message": preview(task.input_message, INPUT_PREVIEW_CHARS),
                    "workingDirectory": _path_text(task),
                    "startedAt": task.updated_at.isoformat(),
                },
            ),
        )
        self._desktop(
            DesktopNotification(
                title="Agent Task Started",
                message=f"Started: {preview(task.input_message, DESKTOP_START_PREVIEW_CHARS)}",
                sound=Sound.STARTED,
            ),
        )

    def task_completed(self, task: Task) -> None:
        """Terminal transition: completed, failed or cancelled."""

        payload: dict[str, Any] = {
            "status": task.state.value,
            "completedAt": task.updated_at.isoformat(),
        }
        if task.result is not None:
            payload.update(
                {
                    "result": task.result.result,
                    "responseId": task.result.session_id,
                    "cost": task.result.cost_usd,
                    "duration": task.result.duration_ms,
                    "isError": task.result.is_error,
                    "subtype": task.result.subtype,
                },
            )
        if task.error:
            payload["error"] = task.error
        self._emit(TaskEvent(kind=TaskEventKind.COMPLETED, task_id=task.id, payload=payload))

        notification = _terminal_notification(task)
        if notification is not None:
            self._desktop(notification)

    def task_cancelled(self, task: Task, *, reason: str, details: str | None = None) -> None:
        payload: dict[str, Any] = {
            "reason": reason,
            "cancelledAt": task.updated_at.isoformat(),
        }
        if details:
            payload["details"] = details
        self._emit(TaskEvent(kind=TaskEventKind.CANCELLED, task_id=task.id, payload=payload))

    def _emit(self, event: TaskEvent) -> None:
        if self.event_sink is None:
            logger.debug("No event sink, dropping %s for task %s", event.method, event.task_id)
            return
        try:
            self.event_sink.emit(event)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to emit %s for task %s", event.method, event.task_id, exc_info=True)

    def _desktop(self, notification: DesktopNotification) -> None:
        if self.desktop is None:
            return
        try:
            self.desktop.notify(notification)
        except Exception:  # noqa: BLE001
            logger.debug("Desktop notification failed: %s", notification.title, exc_info=True)


def preview(text: str, limit: int) -> str:
    """Truncate to ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _terminal_notification(task: Task) -> DesktopNotification | None:
    if task.state is TaskState.COMPLETED:
        text = task.result.result if task.result and task.result.result else "Task completed"
        return DesktopNotification(
            title="Agent Task Completed",
            message=preview(text, DESKTOP_RESULT_PREVIEW_CHARS),
            sound=Sound.COMPLETED,
        )
    if task.state is TaskState.FAILED:
        return DesktopNotification(
            title="Agent Task Failed",
            message=preview(task.error or "Task failed", DESKTOP_RESULT_PREVIEW_CHARS),
            sound=Sound.FAILED,
        )
    if task.state is TaskState.CANCELLED:
        return DesktopNotification(
            title="Agent Task Cancelled",
            message="Task cancelled",
            sound=Sound.CANCELLED,
        )
    return None


def _path_text(task: Task) -> str | None:
    return str(task.working_directory) if task.working_directory is not None else None
