"""Agent stdout parsing: single JSON object, stream-json events or plain text."""

from __future__ import annotations

import json
import re
from typing import Any

from agent_bridge.tasks.models import AgentResult

RESPONSE_ID_PATTERN = re.compile(r"Response ID: ([\w-]+)")
RESULT_EVENT_TYPE = "result"


class OutputParseError(ValueError):
    """Agent output could not be turned into a result by any strategy."""


def parse_agent_output(stdout: str, stderr: str) -> AgentResult:
    """Parse blocking-mode output.

    One JSON object on stdout is the result. Anything else is treated as a
    plain-text answer, never as an error. Empty stdout is an empty answer.
    """

    payload = _try_load_dict(stdout.strip())
    if payload is not None:
        return AgentResult.from_payload(payload)
    return plain_text_result(stdout, stderr)


def plain_text_result(stdout: str, stderr: str) -> AgentResult:
    """Synthesize a result from free text, recovering the response id from stderr."""

    match = RESPONSE_ID_PATTERN.search(stderr)
    return AgentResult(
        result=stdout.strip(),
        session_id=match.group(1) if match else None,
        raw={"stdout_parser": "plain_text"},
    )


class StreamResultTracker:
    """Incremental line-delimited JSON parser keeping the latest result event.

    Chunks may end mid-line; the unfinished tail is buffered until the next
    chunk or :meth:`flush`. Lines that are not JSON objects are dropped.
    """

    def __init__(self) -> None:
        self._pending = ""
        self.last_result: dict[str, Any] | None = None
        self.result_events = 0

    def feed(self, chunk: str) -> None:
        self._pending += chunk
        *complete, self._pending = self._pending.split("\n")
        for line in complete:
            self.feed_line(line)

    def feed_line(self, line: str) -> None:
        payload = _try_load_dict(line.strip())
        if payload is None or payload.get("type") != RESULT_EVENT_TYPE:
            return
        self.last_result = payload
        self.result_events += 1

    def flush(self) -> None:
        tail, self._pending = self._pending, ""
        if tail.strip():
            self.feed_line(tail)


def finalize_stream_output(tracker: StreamResultTracker, stdout: str, stderr: str) -> AgentResult:
    """Pick the final streaming result once the process has exited cleanly."""

    tracker.flush()
    if tracker.last_result is not None:
        return AgentResult.from_payload(tracker.last_result)

    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        raise OutputParseError("No valid output lines found")
    payload = _try_load_dict(lines[-1].strip())
    if payload is not None:
        return AgentResult.from_payload(payload)
    return plain_text_result(stdout, stderr)


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
