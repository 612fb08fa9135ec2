"""Subprocess launcher for the coding agent CLI."""

from __future__ import annotations

import asyncio
import codecs
import logging
import shlex
import signal
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from functools import cached_property
from pathlib import Path

from agent_bridge.config import DEFAULT_CLI_NAME
from agent_bridge.errors import ExecutionError
from agent_bridge.launcher.base import (
    LaunchMode,
    LaunchRequest,
    build_agent_args,
    resolve_cli_path,
)
from agent_bridge.launcher.output_parser import (
    OutputParseError,
    StreamResultTracker,
    finalize_stream_output,
    parse_agent_output,
)
from agent_bridge.tasks.models import AgentResult, ProcessHandle, TaskState
from agent_bridge.tasks.registry import (
    TaskRegistry,
    signal_process_group,
    terminate_process_group,
)

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024
REAP_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True, frozen=True)
class ProcessStarted:
    process: ProcessHandle


@dataclass(slots=True, frozen=True)
class StdoutChunk:
    text: str


@dataclass(slots=True, frozen=True)
class StderrChunk:
    text: str


@dataclass(slots=True, frozen=True)
class ProcessExited:
    exit_code: int


@dataclass(slots=True, frozen=True)
class SpawnFailed:
    error: OSError


ProcessEvent = ProcessStarted | StdoutChunk | StderrChunk | ProcessExited | SpawnFailed


@dataclass(slots=True)
class StreamingRun:
    """Folds the process events of one streaming invocation into registry updates.

    Output chunks only accumulate locally; lifecycle events (start, exit,
    spawn failure) each become exactly one ``update_task`` call.
    """

    registry: TaskRegistry
    task_id: str
    tracker: StreamResultTracker = field(default_factory=StreamResultTracker)
    stdout_parts: list[str] = field(default_factory=list)
    stderr_parts: list[str] = field(default_factory=list)

    @property
    def stdout(self) -> str:
        return "".join(self.stdout_parts)

    @property
    def stderr(self) -> str:
        return "".join(self.stderr_parts)

    def apply(self, event: ProcessEvent) -> bool:
        """Apply one event; ``False`` means the registry refused the update."""

        if isinstance(event, StdoutChunk):
            logger.debug("Task %s stdout: %s", self.task_id, event.text)
            self.stdout_parts.append(event.text)
            self.tracker.feed(event.text)
            return True
        if isinstance(event, StderrChunk):
            logger.debug("Task %s stderr: %s", self.task_id, event.text)
            self.stderr_parts.append(event.text)
            return True
        if isinstance(event, ProcessStarted):
            return self.registry.update_task(
                self.task_id,
                state=TaskState.RUNNING,
                process=event.process,
            )
        if isinstance(event, SpawnFailed):
            return self.registry.update_task(
                self.task_id,
                state=TaskState.FAILED,
                error=f"Failed to spawn agent process: {event.error}",
            )
        return self._finish(event.exit_code)

    def _finish(self, exit_code: int) -> bool:
        logger.debug("Task %s process exited with code %s", self.task_id, exit_code)
        if exit_code != 0:
            return self.registry.update_task(
                self.task_id,
                state=TaskState.FAILED,
                error=f"Agent failed with exit code {exit_code}: {self.stderr}",
            )
        try:
            result = finalize_stream_output(self.tracker, self.stdout, self.stderr)
        except OutputParseError as error:
            return self.registry.update_task(
                self.task_id,
                state=TaskState.FAILED,
                error=f"Failed to parse agent response: {error}\nOutput: {self.stdout}",
            )
        return self.registry.update_task(self.task_id, state=TaskState.COMPLETED, result=result)


class AgentLauncher:
    """Turns one request into one agent subprocess and back into one result."""

    def __init__(
        self,
        *,
        cli_name: str = DEFAULT_CLI_NAME,
        sync_timeout_seconds: float = 1_800.0,
        home: Path | None = None,
    ) -> None:
        self.cli_name = cli_name
        self.sync_timeout_seconds = sync_timeout_seconds
        self._home = home

    @cached_property
    def cli_path(self) -> str:
        """Agent binary, resolved once per launcher."""

        return resolve_cli_path(self.cli_name, home=self._home)

    def command(self, request: LaunchRequest) -> list[str]:
        return [self.cli_path, *build_agent_args(request)]

    async def run_blocking(self, request: LaunchRequest) -> AgentResult:
        """Run to completion and return the parsed result, or raise ``ExecutionError``."""

        request = replace(request, mode=LaunchMode.BLOCKING)
        argv = self.command(request)
        logger.debug("Executing sync: %s", shlex.join(argv))
        try:
            process = await _spawn(argv, request.working_directory)
        except OSError as error:
            raise ExecutionError(f"Failed to spawn agent process: {error}") from error

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=self.sync_timeout_seconds,
            )
        except TimeoutError:
            logger.error("Agent execution timed out, killing process group %s", process.pid)
            await _kill_and_reap(process)
            raise ExecutionError(
                f"Agent execution timed out after {_format_duration(self.sync_timeout_seconds)}",
            ) from None
        except asyncio.CancelledError:
            await _kill_and_reap(process)
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        exit_code = process.returncode
        logger.debug("Process closed with code %s\nSTDOUT: %s\nSTDERR: %s", exit_code, stdout, stderr)

        if exit_code != 0:
            raise ExecutionError(
                f"Agent failed with exit code {exit_code}: {stderr}",
                exit_code=exit_code,
                stderr=stderr,
            )
        return parse_agent_output(stdout, stderr)

    async def run_streaming(
        self,
        registry: TaskRegistry,
        task_id: str,
        request: LaunchRequest,
    ) -> None:
        """Drive one background task; every outcome lands in the registry."""

        request = replace(request, mode=LaunchMode.STREAMING)
        run = StreamingRun(registry=registry, task_id=task_id)
        argv = self.command(request)
        logger.debug("Executing async task %s: %s", task_id, shlex.join(argv))
        try:
            process = await _spawn(argv, request.working_directory)
        except OSError as error:
            logger.error("Failed to spawn agent for task %s: %s", task_id, error)
            run.apply(SpawnFailed(error))
            return

        if not run.apply(ProcessStarted(process)):
            logger.info("Task %s was cancelled before its process started, terminating", task_id)
            terminate_process_group(process)
            await process.wait()
            return

        try:
            stderr_pump = asyncio.create_task(_pump(process.stderr, StderrChunk, run.apply))
            await _pump(process.stdout, StdoutChunk, run.apply)
            await stderr_pump
            exit_code = await process.wait()
        except asyncio.CancelledError:
            await _kill_and_reap(process)
            raise
        run.apply(ProcessExited(exit_code))


async def _spawn(argv: list[str], working_directory: Path | None) -> asyncio.subprocess.Process:
    # Own session so cancellation can signal grandchildren through the group.
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=working_directory,
        start_new_session=True,
    )


async def _pump(
    stream: asyncio.StreamReader | None,
    event_type: Callable[[str], StdoutChunk | StderrChunk],
    apply: Callable[[ProcessEvent], bool],
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while chunk := await stream.read(READ_CHUNK_BYTES):
        text = decoder.decode(chunk)
        if text:
            apply(event_type(text))
    tail = decoder.decode(b"", final=True)
    if tail:
        apply(event_type(tail))


async def _kill_and_reap(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        signal_process_group(process.pid, signal.SIGKILL)
    except OSError:
        try:
            process.kill()
        except ProcessLookupError:
            return
    try:
        await asyncio.wait_for(process.wait(), timeout=REAP_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.warning("Process %s did not exit after SIGKILL", process.pid)


def _format_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"
