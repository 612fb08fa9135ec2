"""Agent subprocess launcher."""

from agent_bridge.launcher.base import LaunchMode, LaunchRequest, build_agent_args, resolve_cli_path
from agent_bridge.launcher.cli_launcher import AgentLauncher, StreamingRun

__all__ = [
    "AgentLauncher",
    "LaunchMode",
    "LaunchRequest",
    "StreamingRun",
    "build_agent_args",
    "resolve_cli_path",
]
