"""Domain models for background agent tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class TaskState(str, Enum):
    """In-memory task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED})

ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.RUNNING, TaskState.FAILED, TaskState.CANCELLED}),
    TaskState.RUNNING: frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED}),
    TaskState.COMPLETED: frozenset(),
    TaskState.FAILED: frozenset(),
    TaskState.CANCELLED: frozenset(),
}


class ProcessHandle(Protocol):
    """The slice of a child process the registry needs for cancellation."""

    @property
    def pid(self) -> int: ...

    def terminate(self) -> None: ...


@dataclass(slots=True)
class AgentResult:
    """Normalized final answer of one agent invocation."""

    result: str
    session_id: str | None = None
    cost_usd: float = 0.0
    duration_ms: int = 0
    is_error: bool = False
    subtype: str = "success"
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AgentResult:
        """Build from the agent's JSON result object, keeping it verbatim in ``raw``."""

        session_id = payload.get("session_id")
        return cls(
            result=_as_text(payload.get("result")),
            session_id=str(session_id) if session_id else None,
            cost_usd=_as_float(payload.get("cost_usd", payload.get("total_cost_usd"))),
            duration_ms=int(_as_float(payload.get("duration_ms"))),
            is_error=bool(payload.get("is_error", False)),
            subtype=str(payload.get("subtype") or "success"),
            raw=dict(payload),
        )


@dataclass(slots=True)
class Task:
    """One unit of asynchronous agent work."""

    id: str
    input_message: str
    continuation_token: str | None
    working_directory: Path | None
    state: TaskState
    created_at: datetime
    updated_at: datetime
    result: AgentResult | None = None
    error: str | None = None
    process: ProcessHandle | None = None

    def elapsed_seconds(self, now: datetime) -> float:
        """Seconds since creation; frozen once the task is terminal."""

        end = self.updated_at if self.state.is_terminal else now
        return max(0.0, (end - self.created_at).total_seconds())


@dataclass(slots=True)
class TaskStats:
    """Point-in-time registry counts."""

    active: int
    completed: int
    total: int


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_float(value: object) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0
