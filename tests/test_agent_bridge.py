from __future__ import annotations

import logging
from pathlib import Path

import allure
import click
import pytest
from click.testing import CliRunner

from agent_bridge import __version__
from agent_bridge.main import agent_bridge

pytestmark = [
    allure.epic("Agent Bridge"),
    allure.feature("CLI"),
]


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_version():
    assert __version__


def test_version_option():
    runner = CliRunner()
    result = runner.invoke(agent_bridge, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_commands():
    result = CliRunner().invoke(agent_bridge, ["--help"])

    assert result.exit_code == 0
    for command in ("serve", "ask", "which"):
        assert command in result.output


def test_which_prints_absolute_override(echo_cli: Path):
    result = CliRunner().invoke(agent_bridge, ["which", "--cli-name", str(echo_cli)])

    assert result.exit_code == 0
    assert result.output.strip() == str(echo_cli)


def test_ask_prints_answer_and_response_id(echo_cli: Path, echo_case, monkeypatch):
    echo_case("json", answer="4", session="abc-123")
    monkeypatch.setenv("AGENT_BRIDGE_CLI_NAME", str(echo_cli))

    result = CliRunner().invoke(agent_bridge, ["ask", "What is 2+2?"])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines()[:3] == ["4", "", "Response ID: abc-123"]


def test_ask_resume_passes_token(echo_cli: Path, echo_case):
    echo_case("json", answer="12")

    result = CliRunner().invoke(
        agent_bridge,
        ["ask", "And times 3?", "--resume", "abc-123", "--cli-name", str(echo_cli)],
    )

    assert result.exit_code == 0, result.output
    assert "Response ID: abc-123" in result.output


def test_ask_reports_agent_failure(echo_cli: Path, echo_case):
    echo_case("fail")

    message = _invoke_failing(["ask", "hi", "--cli-name", str(echo_cli)])

    assert "Execution error: Agent failed with exit code 2" in message


def test_ask_rejects_blank_resume_token(echo_cli: Path):
    message = _invoke_failing(["ask", "continue", "--resume", " ", "--cli-name", str(echo_cli)])

    assert message.startswith("Validation error: previousResponseId is required")


def test_ask_rejects_working_directory_with_resume(echo_cli: Path, tmp_path: Path):
    message = _invoke_failing(
        [
            "ask",
            "continue",
            "--resume",
            "abc-123",
            "--working-directory",
            str(tmp_path),
            "--cli-name",
            str(echo_cli),
        ],
    )

    assert message == (
        "Validation error: Working directory cannot be overridden when resuming"
    )


def test_ask_rejects_missing_working_directory(echo_cli: Path, tmp_path: Path):
    message = _invoke_failing(
        [
            "ask",
            "hi",
            "--working-directory",
            str(tmp_path / "missing"),
            "--cli-name",
            str(echo_cli),
        ],
    )

    assert "Working directory does not exist" in message


def test_ask_timeout_option(echo_cli: Path, echo_case):
    echo_case("sleep", sleep="30")

    message = _invoke_failing(["ask", "slow", "--timeout", "0.5", "--cli-name", str(echo_cli)])

    assert message == "Execution error: Agent execution timed out after 0.5 seconds"


def test_serve_passes_overrides_to_server(monkeypatch):
    captured = []
    monkeypatch.setattr("agent_bridge.controllers.serve", captured.append)
    monkeypatch.delenv("AGENT_BRIDGE_NOTIFICATIONS", raising=False)
    monkeypatch.delenv("MCP_NOTIFICATIONS", raising=False)

    result = CliRunner().invoke(
        agent_bridge,
        ["serve", "--cli-name", "/opt/agent/claude", "--debug", "--no-notifications"],
    )

    assert result.exit_code == 0, result.output
    [settings] = captured
    assert settings.launcher.cli_name == "/opt/agent/claude"
    assert settings.debug is True
    assert settings.notifications.desktop_enabled is False


def test_serve_rejects_invalid_environment(monkeypatch):
    monkeypatch.setattr("agent_bridge.controllers.serve", lambda settings: None)
    monkeypatch.setenv("AGENT_BRIDGE_WATCHDOG", "sometimes")

    message = _invoke_failing(["serve"])

    assert "AGENT_BRIDGE_WATCHDOG" in message


def _invoke_failing(args: list[str]) -> str:
    result = CliRunner().invoke(agent_bridge, args, standalone_mode=False)

    assert result.exit_code == 1
    assert isinstance(result.exception, click.ClickException)
    return result.exception.message
