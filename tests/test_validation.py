from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from agent_bridge.errors import ValidationError, describe_error
from agent_bridge.validation import (
    resolve_working_directory,
    validate_continuation_token,
    validate_message,
    validate_task_id,
)

pytestmark = [
    allure.epic("Agent Bridge"),
    allure.feature("Input Validation"),
]


@pytest.mark.parametrize("message", ["", "   ", "\n\t", None, 42])
def test_validate_message_rejects_blank_and_non_strings(message: object) -> None:
    with pytest.raises(ValidationError, match="non-empty string"):
        validate_message(message)


def test_validate_message_returns_text_unchanged() -> None:
    assert validate_message("  What is 2+2?  ") == "  What is 2+2?  "


def test_validate_task_id_strips() -> None:
    assert validate_task_id(" abc ") == "abc"
    with pytest.raises(ValidationError):
        validate_task_id("")


@pytest.mark.parametrize("token", [None, "", "  "])
def test_resume_requires_continuation_token(token: object) -> None:
    with pytest.raises(ValidationError, match="previousResponseId is required"):
        validate_continuation_token(token)


def test_validation_error_description() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_message("")

    assert describe_error(excinfo.value) == "Validation error: Message must be a non-empty string"


def test_working_directory_defaults_to_cwd(tmp_path: Path) -> None:
    assert resolve_working_directory(None, cwd=tmp_path) == tmp_path
    assert resolve_working_directory("", cwd=tmp_path) == tmp_path


def test_relative_working_directory_resolves_against_cwd(tmp_path: Path) -> None:
    (tmp_path / "project").mkdir()

    resolved = resolve_working_directory("project", cwd=tmp_path)

    assert resolved == (tmp_path / "project").resolve()
    assert resolved.is_absolute()


def test_working_directory_outside_cwd_is_allowed(tmp_path: Path) -> None:
    inside = tmp_path / "host"
    outside = tmp_path / "elsewhere"
    inside.mkdir()
    outside.mkdir()

    assert resolve_working_directory(str(outside), cwd=inside) == outside.resolve()


def test_missing_working_directory_is_rejected(tmp_path: Path) -> None:
    missing = tmp_path / "nope"

    with pytest.raises(ValidationError, match="does not exist") as excinfo:
        resolve_working_directory(str(missing))

    assert str(missing) in str(excinfo.value)


def test_file_is_not_a_working_directory(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(ValidationError, match="not a directory"):
        resolve_working_directory(target)


@pytest.mark.skipif(
    not hasattr(os, "geteuid") or os.geteuid() == 0,
    reason="permission bits are not enforced for root",
)
def test_unreadable_working_directory_is_rejected(tmp_path: Path) -> None:
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0)
    try:
        with pytest.raises(ValidationError, match="not accessible"):
            resolve_working_directory(locked)
    finally:
        locked.chmod(0o755)
