"""CLI entrypoint for agent-bridge."""

import logging
import os
import sys
from pathlib import Path

import rich_click as click

from agent_bridge import __version__
from agent_bridge.controllers import AskCommand, BridgeCliController, ServeCommand, WhichCommand
from agent_bridge.errors import BridgeError, describe_error

click.rich_click.USE_MARKDOWN = True
BRIDGE_CONTROLLER = BridgeCliController()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEBUG_ENV_VARS = ("AGENT_BRIDGE_DEBUG", "MCP_CLAUDE_DEBUG")


@click.group()
@click.version_option(version=__version__, prog_name="agent-bridge")
def agent_bridge() -> None:
    """Expose a coding agent CLI as MCP tools."""


@agent_bridge.command("serve")
@click.option("--cli-name", default=None, help="Agent binary name or absolute path.")
@click.option("--debug", is_flag=True, default=False, help="Verbose logging on stderr.")
@click.option(
    "--no-notifications",
    is_flag=True,
    default=False,
    help="Disable desktop notifications.",
)
def serve(cli_name: str | None, debug: bool, no_notifications: bool) -> None:
    """Run the MCP server over stdio.

    Tools: `start`, `resume`, `status`, `cancel`.
    """

    _configure_logging(debug)
    try:
        BRIDGE_CONTROLLER.serve(
            ServeCommand(
                cli_name=cli_name,
                debug=debug,
                notifications=not no_notifications,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error


@agent_bridge.command("ask")
@click.argument("message")
@click.option(
    "--working-directory",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory to run the agent in.",
)
@click.option(
    "--resume",
    "previous_response_id",
    default=None,
    help="Response ID of the conversation to continue.",
)
@click.option("--system-prompt", default=None, help="Replace the default system prompt.")
@click.option("--append-system-prompt", default=None, help="Append to the default system prompt.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds before the agent is killed.",
)
@click.option("--cli-name", default=None, help="Agent binary name or absolute path.")
@click.option("--debug", is_flag=True, default=False, help="Verbose logging on stderr.")
def ask(  # noqa: PLR0913
    message: str,
    working_directory: Path | None,
    previous_response_id: str | None,
    system_prompt: str | None,
    append_system_prompt: str | None,
    timeout_seconds: float | None,
    cli_name: str | None,
    debug: bool,
) -> None:
    """Send one message and wait for the answer."""

    _configure_logging(debug)
    try:
        lines = BRIDGE_CONTROLLER.ask(
            AskCommand(
                message=message,
                working_directory=working_directory,
                previous_response_id=previous_response_id,
                system_prompt=system_prompt,
                append_system_prompt=append_system_prompt,
                timeout_seconds=timeout_seconds,
                cli_name=cli_name,
            ),
        )
    except BridgeError as error:
        raise click.ClickException(describe_error(error)) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@agent_bridge.command("which")
@click.option("--cli-name", default=None, help="Agent binary name or absolute path.")
def which(cli_name: str | None) -> None:
    """Print the agent binary that would be launched."""

    try:
        lines = BRIDGE_CONTROLLER.which(WhichCommand(cli_name=cli_name))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _configure_logging(debug: bool) -> None:
    # stdout carries the protocol stream.
    enabled = debug or any(
        os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"} for name in DEBUG_ENV_VARS
    )
    logging.basicConfig(
        level=logging.DEBUG if enabled else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_bridge()
