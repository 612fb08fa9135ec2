"""Parent liveness watchdog.

When the process that launched the bridge disappears without a clean shutdown
(killed rather than terminated), nothing would ever cancel the agent
subprocesses still running on its behalf. The watchdog probes the parent once
per interval and, on loss, cancels all outstanding work and exits the host.

The parent pid is recorded once at construction. Under a subreaper the host
is reparented to a live process other than init, so a changed ``getppid()``
counts as parent loss too.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable

from agent_bridge.tasks.registry import TaskRegistry

logger = logging.getLogger(__name__)

PARENT_EXIT_REASON = "parent_process_exit"


def probe_process(pid: int) -> None:
    """Raise ``OSError`` if ``pid`` does not refer to a live, signalable process."""

    os.kill(pid, 0)


def exit_host(code: int) -> None:
    """Terminate the host immediately, flushing log handlers first."""

    logging.shutdown()
    os._exit(code)


class ParentWatchdog:
    """Periodically verifies that the parent process is still alive."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: TaskRegistry,
        interval_seconds: float = 1.0,
        parent_pid: Callable[[], int] = os.getppid,
        probe: Callable[[int], None] = probe_process,
        on_exit: Callable[[int], None] = exit_host,
    ) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._parent_pid = parent_pid
        self.recorded_parent_pid = parent_pid()
        self._probe = probe
        self._on_exit = on_exit
        self._task: asyncio.Task[None] | None = None

    def check_parent(self) -> str | None:
        """Return why the parent counts as gone, or ``None`` if it is alive."""

        recorded = self.recorded_parent_pid
        current = self._parent_pid()
        if recorded <= 1 or current <= 1:
            return "Parent process no longer exists"
        if current != recorded:
            return f"Parent process {recorded} was replaced by {current}"
        try:
            self._probe(recorded)
        except OSError as error:
            return f"Parent process check failed: {error}"
        return None

    def shutdown_due_to_parent_exit(self, details: str) -> None:
        logger.info("Shutting down due to parent exit: %s", details)
        self.registry.cancel_all(reason=PARENT_EXIT_REASON, details=details)
        self.registry.destroy()
        self._on_exit(0)

    def tick(self) -> bool:
        """Run one probe; returns ``True`` if shutdown was triggered."""

        details = self.check_parent()
        if details is None:
            return False
        self.shutdown_due_to_parent_exit(details)
        return True

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name="parent-watchdog",
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            if self.tick():
                return
