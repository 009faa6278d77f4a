"""Fixtures for CLI interface tests."""

from __future__ import annotations

import json
import os
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from waypoint.cli import cli


@pytest.fixture
def cli_in_project(tmp_path: Path, cli_runner: CliRunner) -> Generator[tuple[CliRunner, Path], None, None]:
    """Initialize a waypoint project in tmp_path and return (runner, project_root)."""
    original_cwd = os.getcwd()
    os.chdir(str(tmp_path))
    result = cli_runner.invoke(cli, ["init"])
    assert result.exit_code == 0
    yield cli_runner, tmp_path
    os.chdir(original_cwd)


def _invoke_json(runner: CliRunner, args: list[str]) -> Any:
    """Run a command that must succeed and return its parsed JSON output."""
    result = runner.invoke(cli, args)
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def _create_workflow(runner: CliRunner, issue_number: int, branch: str | None = None) -> str:
    data = _invoke_json(runner, ["workflow", "create", str(issue_number), branch or f"feat/{issue_number}"])
    return data["id"]
