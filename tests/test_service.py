from __future__ import annotations

import asyncio
from pathlib import Path

import allure
import pytest

from agent_bridge.errors import TaskNotFoundError, ValidationError
from agent_bridge.launcher import AgentLauncher
from agent_bridge.service import (
    BridgeService,
    CancelOutcome,
    InvocationOutcome,
    ResumeRequest,
    StartRequest,
    TaskStatusView,
    format_elapsed,
)
from agent_bridge.tasks.models import AgentResult, TaskState
from agent_bridge.tasks.registry import TaskRegistry

pytestmark = [
    allure.epic("Agent Bridge"),
    allure.feature("Bridge Operations"),
]


def _service(echo_cli: Path, tmp_path: Path, **kwargs) -> BridgeService:
    return BridgeService(
        registry=kwargs.pop("registry", None) or TaskRegistry(),
        launcher=AgentLauncher(cli_name=str(echo_cli)),
        cwd=tmp_path,
        **kwargs,
    )


def test_blocking_start_returns_answer_and_response_id(
    echo_cli: Path,
    echo_case,
    tmp_path: Path,
) -> None:
    echo_case("json", answer="4", session="abc-123")
    service = _service(echo_cli, tmp_path)

    outcome = asyncio.run(service.start(StartRequest(message="What is 2+2?", run_async=False)))

    assert outcome.render() == "4\n\nResponse ID: abc-123"
    assert service.registry.get_stats().total == 0


def test_async_start_then_status_reports_result(
    echo_cli: Path,
    echo_case,
    tmp_path: Path,
) -> None:
    echo_case("json", answer="4", session="abc-123")
    service = _service(echo_cli, tmp_path)

    async def scenario() -> InvocationOutcome:
        outcome = await service.start(StartRequest(message="What is 2+2?"))
        await service.drain(timeout=30)
        return outcome

    outcome = asyncio.run(scenario())

    assert outcome.task_id is not None
    assert outcome.render() == (
        f"Task started successfully. Use status with task ID: {outcome.task_id}"
    )
    rendered = service.status(outcome.task_id).render()
    assert rendered.startswith(f"Task {outcome.task_id}:\nStatus: completed\nElapsed: ")
    assert f"Working Directory: {tmp_path}" in rendered
    assert "Result: 4" in rendered
    assert "Response ID: abc-123" in rendered
    assert "Cost: $0.01" in rendered
    assert "Duration: 500ms" in rendered


def test_async_resume_continues_conversation(echo_cli: Path, echo_case, tmp_path: Path) -> None:
    echo_case("json", answer="12")
    service = _service(echo_cli, tmp_path)

    async def scenario() -> str:
        outcome = await service.resume(
            ResumeRequest(message="And times 3?", continuation_token="abc-123"),
        )
        await service.drain(timeout=30)
        assert outcome.task_id is not None
        return outcome.task_id

    task_id = asyncio.run(scenario())

    task = service.registry.get_task_or_raise(task_id)
    assert task.state is TaskState.COMPLETED
    assert task.continuation_token == "abc-123"
    assert task.result is not None
    assert task.result.result == "12"
    assert task.result.session_id == "abc-123"


def test_async_failure_is_visible_in_status(echo_cli: Path, echo_case, tmp_path: Path) -> None:
    echo_case("fail")
    service = _service(echo_cli, tmp_path)

    async def scenario() -> str:
        outcome = await service.start(StartRequest(message="break things"))
        await service.drain(timeout=30)
        assert outcome.task_id is not None
        return outcome.task_id

    task_id = asyncio.run(scenario())

    rendered = service.status(task_id).render()
    assert "Status: failed" in rendered
    assert "Error: Agent failed with exit code 2: permission denied" in rendered


def test_resume_without_token_creates_no_task(echo_cli: Path, tmp_path: Path) -> None:
    service = _service(echo_cli, tmp_path)

    with pytest.raises(ValidationError, match="previousResponseId is required"):
        asyncio.run(service.resume(ResumeRequest(message="continue", continuation_token=None)))

    assert service.registry.get_stats().total == 0


def test_invalid_working_directory_creates_no_task(echo_cli: Path, tmp_path: Path) -> None:
    service = _service(echo_cli, tmp_path)

    with pytest.raises(ValidationError, match="does not exist"):
        asyncio.run(
            service.start(StartRequest(message="hi", working_directory=str(tmp_path / "nope"))),
        )

    assert service.registry.get_stats().total == 0


def test_status_of_unknown_task(echo_cli: Path, tmp_path: Path) -> None:
    service = _service(echo_cli, tmp_path)

    with pytest.raises(TaskNotFoundError):
        service.status("missing")


def test_status_elapsed_increases_while_running(
    echo_cli: Path,
    tmp_path: Path,
    clock,
    make_process,
) -> None:
    registry = TaskRegistry(clock=clock)
    service = _service(echo_cli, tmp_path, registry=registry, clock=clock)
    task_id = registry.create_task("long job")
    registry.update_task(task_id, state=TaskState.RUNNING, process=make_process())

    clock.advance(2)
    first = service.status(task_id)
    clock.advance(63)
    second = service.status(task_id)

    assert first.state is TaskState.RUNNING
    assert second.elapsed_seconds > first.elapsed_seconds
    assert "Elapsed: 1m 5s" in second.render()


def test_cancel_outcomes(echo_cli: Path, tmp_path: Path, make_process, no_group_signals) -> None:
    service = _service(echo_cli, tmp_path)
    task_id = service.registry.create_task("long job")
    service.registry.update_task(task_id, state=TaskState.RUNNING, process=make_process())

    assert service.cancel(task_id).render() == f"Task {task_id} cancelled successfully"
    assert "could not be cancelled" in service.cancel(task_id).render()
    assert service.cancel("missing") == CancelOutcome(task_id="missing", cancelled=False)
    with pytest.raises(ValidationError):
        service.cancel("  ")


def test_unexpected_launcher_crash_fails_task(tmp_path: Path) -> None:
    class CrashingLauncher:
        async def run_streaming(self, registry, task_id, request) -> None:
            raise RuntimeError("launcher exploded")

    registry = TaskRegistry()
    service = BridgeService(registry=registry, launcher=CrashingLauncher(), cwd=tmp_path)

    async def scenario() -> str:
        outcome = await service.start(StartRequest(message="hi"))
        await service.drain(timeout=5)
        assert outcome.task_id is not None
        return outcome.task_id

    task = registry.get_task_or_raise(asyncio.run(scenario()))

    assert task.state is TaskState.FAILED
    assert task.error == "Unexpected launcher error: launcher exploded"


def test_status_render_flags_agent_reported_error(clock) -> None:
    result = AgentResult.from_payload(
        {
            "result": "gave up",
            "session_id": "abc-123",
            "is_error": True,
            "subtype": "error_max_turns",
        },
    )
    view = TaskStatusView(
        task_id="task-1",
        state=TaskState.COMPLETED,
        elapsed_seconds=3,
        working_directory=Path("/work"),
        created_at=clock.now,
        updated_at=clock.now,
        result=result,
    )

    rendered = view.render()

    assert "Result: gave up" in rendered
    assert rendered.endswith("Agent Error: error_max_turns")


def test_blocking_outcome_render_without_session() -> None:
    outcome = InvocationOutcome(result=AgentResult(result="hello"))

    assert outcome.render() == "hello"


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (59.9, "59s"), (60, "1m 0s"), (125, "2m 5s")],
)
def test_format_elapsed(seconds: float, expected: str) -> None:
    assert format_elapsed(seconds) == expected
