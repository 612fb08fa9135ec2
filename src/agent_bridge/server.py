"""MCP server exposing the agent as start/resume/status/cancel tools."""

import asyncio
import logging
import signal
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import Annotated, Any

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from agent_bridge import __version__
from agent_bridge.config import Settings
from agent_bridge.desktop import DesktopNotifier
from agent_bridge.errors import BridgeError, describe_error
from agent_bridge.launcher import AgentLauncher
from agent_bridge.service import BridgeService, ResumeRequest, StartRequest
from agent_bridge.tasks.notifier import EventSink, Notifier, TaskEvent
from agent_bridge.tasks.registry import TaskRegistry
from agent_bridge.tasks.watchdog import ParentWatchdog, exit_host

logger = logging.getLogger(__name__)

SERVER_DISPLAY_NAME = "Agent Bridge MCP Server"

MESSAGE_DESCRIPTION = (
    "The message to send to the agent. Be specific about what you want, mention file "
    "paths, state the desired output format and any constraints. @-mentions such as "
    "'@src/auth.py' include file contents directly."
)
RESUME_MESSAGE_DESCRIPTION = (
    "The follow-up message. The agent remembers the earlier conversation, so refer to "
    "previous answers naturally and build on them incrementally."
)
ASYNC_DESCRIPTION = (
    "When true (default) return a task ID immediately and run in the background; "
    "poll it with the status tool. When false, wait for the answer."
)


class McpEventSink:
    """Forwards task events to the connected client as MCP log notifications.

    The session is captured from the most recent tool call. Without one the
    event is only written to the debug log.
    """

    def __init__(self) -> None:
        self._session: Any | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inflight: set[asyncio.Future[Any]] = set()

    def bind(self, ctx: Context) -> None:
        try:
            session = ctx.session
        except ValueError:
            logger.debug("Tool called outside of an MCP request, keeping previous session")
            return
        self._session = session
        self._loop = asyncio.get_running_loop()

    def emit(self, event: TaskEvent) -> None:
        data = {"taskId": event.task_id, **event.payload, "emittedAt": event.emitted_at.isoformat()}
        if self._session is None or self._loop is None or self._loop.is_closed():
            logger.debug("MCP client not connected, %s: %s", event.method, data)
            return

        coroutine = self._session.send_log_message(level="info", data=data, logger=event.method)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            future: asyncio.Future[Any] = self._loop.create_task(coroutine)
        else:
            future = asyncio.wrap_future(
                asyncio.run_coroutine_threadsafe(coroutine, self._loop),
                loop=self._loop,
            )
        self._inflight.add(future)
        future.add_done_callback(self._delivered)

    def _delivered(self, future: asyncio.Future[Any]) -> None:
        self._inflight.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.debug("Failed to send MCP notification: %s", error)


@dataclass(slots=True)
class BridgeRuntime:
    """Everything one server process owns, wired explicitly."""

    settings: Settings
    registry: TaskRegistry
    service: BridgeService
    event_sink: McpEventSink
    watchdog: ParentWatchdog | None = None
    _opened: bool = field(default=False, init=False)

    @classmethod
    def build(cls, settings: Settings) -> "BridgeRuntime":
        event_sink = McpEventSink()
        sink: EventSink | None = event_sink if settings.notifications.events_enabled else None
        desktop = DesktopNotifier.for_platform() if settings.notifications.desktop_enabled else None
        registry = TaskRegistry(
            notifier=Notifier(event_sink=sink, desktop=desktop),
            retention_seconds=settings.tasks.retention_seconds,
            cleanup_interval_seconds=settings.tasks.cleanup_interval_seconds,
        )
        launcher = AgentLauncher(
            cli_name=settings.launcher.cli_name,
            sync_timeout_seconds=settings.launcher.sync_timeout_seconds,
        )
        watchdog = (
            ParentWatchdog(
                registry=registry,
                interval_seconds=settings.tasks.watchdog_interval_seconds,
            )
            if settings.tasks.watchdog_enabled
            else None
        )
        logger.debug("Agent CLI resolved to %s", launcher.cli_path)
        return cls(
            settings=settings,
            registry=registry,
            service=BridgeService(registry=registry, launcher=launcher),
            event_sink=event_sink,
            watchdog=watchdog,
        )

    def open(self) -> None:
        """Start periodic timers; needs a running event loop."""

        if self._opened:
            return
        self.registry.start()
        if self.watchdog is not None:
            self.watchdog.start()
        self._opened = True
        logger.info("%s v%s started", SERVER_DISPLAY_NAME, __version__)

    async def close(self) -> None:
        if self.watchdog is not None:
            self.watchdog.stop()
        logger.info("Shutting down, active tasks: %d", self.registry.get_stats().active)
        self.registry.destroy()
        await self.service.drain(timeout=5.0)
        self._opened = False


def create_server(runtime: BridgeRuntime) -> FastMCP:
    """Build the MCP server with its tools bound to ``runtime``."""

    @asynccontextmanager
    async def lifespan(_: FastMCP) -> AsyncIterator[BridgeRuntime]:
        runtime.open()
        try:
            yield runtime
        finally:
            await runtime.close()

    server = FastMCP(SERVER_DISPLAY_NAME, lifespan=lifespan)
    register_tools(server, runtime)
    return server


def register_tools(server: FastMCP, runtime: BridgeRuntime) -> None:
    service = runtime.service
    sink = runtime.event_sink

    @server.tool(name="start", description="Start a new agent conversation (async by default).")
    async def start(
        message: Annotated[str, Field(description=MESSAGE_DESCRIPTION)],
        ctx: Context,
        working_directory: Annotated[
            str | None,
            Field(description="Directory to run the agent in, absolute or relative to the server."),
        ] = None,
        system_prompt: Annotated[
            str | None,
            Field(description="Replaces the agent's default system prompt."),
        ] = None,
        append_system_prompt: Annotated[
            str | None,
            Field(description="Appended to the agent's default system prompt."),
        ] = None,
        run_async: Annotated[bool, Field(description=ASYNC_DESCRIPTION)] = True,
    ) -> str:
        sink.bind(ctx)
        try:
            outcome = await service.start(
                StartRequest(
                    message=message,
                    working_directory=working_directory,
                    system_prompt=system_prompt,
                    append_system_prompt=append_system_prompt,
                    run_async=run_async,
                ),
            )
        except BridgeError as error:
            raise ToolError(describe_error(error)) from error
        return outcome.render()

    @server.tool(
        name="resume",
        description=(
            "Continue an earlier conversation by its Response ID. The working directory "
            "of the original conversation is always reused."
        ),
    )
    async def resume(
        message: Annotated[str, Field(description=RESUME_MESSAGE_DESCRIPTION)],
        previous_response_id: Annotated[
            str,
            Field(description="Response ID returned by an earlier start/resume call."),
        ],
        ctx: Context,
        run_async: Annotated[bool, Field(description=ASYNC_DESCRIPTION)] = True,
    ) -> str:
        sink.bind(ctx)
        try:
            outcome = await service.resume(
                ResumeRequest(
                    message=message,
                    continuation_token=previous_response_id,
                    run_async=run_async,
                ),
            )
        except BridgeError as error:
            raise ToolError(describe_error(error)) from error
        return outcome.render()

    @server.tool(
        name="status",
        description="Get the current status of a running or completed task by ID.",
    )
    async def status(
        task_id: Annotated[str, Field(description="The task ID to check status for")],
        ctx: Context,
    ) -> str:
        sink.bind(ctx)
        try:
            return service.status(task_id).render()
        except BridgeError as error:
            raise ToolError(f"Error checking task status: {describe_error(error)}") from error

    @server.tool(name="cancel", description="Cancel a running task by ID.")
    async def cancel(
        task_id: Annotated[str, Field(description="The task ID to cancel")],
        ctx: Context,
    ) -> str:
        sink.bind(ctx)
        try:
            return service.cancel(task_id).render()
        except BridgeError as error:
            return f"Error cancelling task: {describe_error(error)}"


@contextmanager
def shutdown_on_signals(runtime: BridgeRuntime) -> Iterator[None]:
    """Destroy the registry and exit cleanly on SIGTERM/SIGHUP."""

    handled = [sig for sig in (signal.SIGTERM, getattr(signal, "SIGHUP", None)) if sig is not None]
    originals = {sig: signal.getsignal(sig) for sig in handled}

    def _handler(signum: int, _: object | None) -> None:
        name = signal.Signals(signum).name
        logger.info("Received %s, active tasks: %d", name, runtime.registry.get_stats().active)
        runtime.registry.destroy()
        exit_host(0)

    try:
        for sig in handled:
            signal.signal(sig, _handler)
        yield
    finally:
        for sig, original in originals.items():
            signal.signal(sig, original)


def serve(settings: Settings) -> None:
    """Run the MCP server over stdio until the client disconnects."""

    runtime = BridgeRuntime.build(settings)
    server = create_server(runtime)
    with shutdown_on_signals(runtime):
        server.run(transport="stdio")
