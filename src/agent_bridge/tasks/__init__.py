"""Background task lifecycle: registry, notifications and parent watchdog."""

from agent_bridge.tasks.models import AgentResult, Task, TaskState, TaskStats
from agent_bridge.tasks.notifier import EventSink, Notifier, TaskEvent, TaskEventKind
from agent_bridge.tasks.registry import TaskRegistry
from agent_bridge.tasks.watchdog import PARENT_EXIT_REASON, ParentWatchdog

__all__ = [
    "PARENT_EXIT_REASON",
    "AgentResult",
    "EventSink",
    "Notifier",
    "ParentWatchdog",
    "Task",
    "TaskEvent",
    "TaskEventKind",
    "TaskRegistry",
    "TaskState",
    "TaskStats",
]
