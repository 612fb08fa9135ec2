"""Shared test fixtures."""

from __future__ import annotations

import stat
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from agent_bridge.launcher import echo_agent
from agent_bridge.tasks.notifier import TaskEvent


@pytest.fixture()
def echo_cli(tmp_path: Path) -> Path:
    """Executable that behaves like the agent CLI, backed by the echo agent script."""

    script = tmp_path / "echo-agent"
    script.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{echo_agent.__file__}" "$@"\n',
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture()
def echo_case(monkeypatch):
    """Select the echo agent behaviour for the current test."""

    def _select(case: str, **env: str) -> None:
        monkeypatch.setenv("AGENT_BRIDGE_ECHO_CASE", case)
        for name, value in env.items():
            monkeypatch.setenv(f"AGENT_BRIDGE_ECHO_{name.upper()}", value)

    return _select


@pytest.fixture()
def no_group_signals(monkeypatch):
    """Route group signals away from real pids; returns the recorded calls."""

    calls: list[tuple[int, int]] = []

    def _record(pid: int, signum: int) -> None:
        calls.append((pid, signum))

    monkeypatch.setattr("agent_bridge.tasks.registry.signal_process_group", _record)
    return calls


@dataclass
class FakeProcess:
    pid: int = 424242
    terminated: int = 0

    def terminate(self) -> None:
        self.terminated += 1


@dataclass
class RecordingSink:
    events: list[TaskEvent] = field(default_factory=list)

    def emit(self, event: TaskEvent) -> None:
        self.events.append(event)

    def methods(self, task_id: str | None = None) -> list[str]:
        return [
            event.method for event in self.events if task_id is None or event.task_id == task_id
        ]


@dataclass
class FakeClock:
    now: datetime = field(default_factory=lambda: datetime(2026, 1, 1, 12, 0, tzinfo=UTC))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_process():
    def _make(pid: int = 424242) -> FakeProcess:
        return FakeProcess(pid=pid)

    return _make
