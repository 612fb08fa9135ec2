"""Deterministic stand-in for the agent CLI, used by launcher integration tests.

Accepts the same flags the launcher passes to the real agent and behaves
according to ``AGENT_BRIDGE_ECHO_CASE``. It has no dependency on the
``agent_bridge`` package so it can be executed as a plain script.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time

DEFAULT_SESSION_ID = "echo-session-1"


def main(argv: list[str] | None = None) -> int:
    """Emit output shaped by the selected echo case."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", dest="message", required=True)
    parser.add_argument("--output-format", default="text")
    parser.add_argument("--resume", default=None)
    parser.add_argument("--system-prompt", default=None)
    parser.add_argument("--append-system-prompt", default=None)
    args, _ = parser.parse_known_args(argv)

    case = os.getenv("AGENT_BRIDGE_ECHO_CASE", "json").strip().lower()
    answer = os.getenv("AGENT_BRIDGE_ECHO_ANSWER") or f"echo: {args.message}"
    session_id = args.resume or os.getenv("AGENT_BRIDGE_ECHO_SESSION", DEFAULT_SESSION_ID)
    streaming = args.output_format == "stream-json"

    if case == "cwd":
        answer = os.getcwd()
    elif case == "args":
        answer = json.dumps(sys.argv[1:] if argv is None else argv)

    return _dispatch_case(case=case, answer=answer, session_id=session_id, streaming=streaming)


def _dispatch_case(  # noqa: PLR0911
    *,
    case: str,
    answer: str,
    session_id: str,
    streaming: bool,
) -> int:
    if case == "fail":
        print("permission denied", file=sys.stderr)
        return 2

    if case == "empty":
        return 0

    if case == "plain":
        print(answer)
        print(f"Response ID: {session_id}", file=sys.stderr)
        return 0

    if case == "stream":
        _emit({"type": "system", "subtype": "init", "session_id": session_id})
        for index in (1, 2):
            _emit(_result(f"interim {index}", session_id))
        print('{"type": "assistant", "message": ', flush=True)
        _emit(_result(answer, session_id))
        return 0

    if case == "stream_plain":
        print("thinking...", flush=True)
        print(answer, flush=True)
        print(f"Response ID: {session_id}", file=sys.stderr)
        return 0

    if case == "sleep":
        if streaming:
            _emit({"type": "system", "subtype": "init", "session_id": session_id})
        time.sleep(float(os.getenv("AGENT_BRIDGE_ECHO_SLEEP", "30")))
        _emit(_result(answer, session_id))
        return 0

    if streaming:
        _emit({"type": "system", "subtype": "init", "session_id": session_id})
        _emit({"type": "assistant", "message": {"content": [{"type": "text", "text": answer}]}})
    _emit(_result(answer, session_id))
    return 0


def _result(answer: str, session_id: str) -> dict[str, object]:
    return {
        "type": "result",
        "subtype": "success",
        "result": answer,
        "session_id": session_id,
        "cost_usd": 0.01,
        "duration_ms": 500,
        "is_error": False,
    }


def _emit(payload: dict[str, object]) -> None:
    print(json.dumps(payload, ensure_ascii=False), flush=True)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
