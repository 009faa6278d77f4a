"""CLI tests for milestone commands."""

from __future__ import annotations

from pathlib import Path

from click.testing import CliRunner

from tests.cli.conftest import _invoke_json
from waypoint.cli import cli


class TestMilestoneCommands:
    def test_create_and_show(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        ms = _invoke_json(runner, ["milestone", "create", "Sprint 7", "--number", "7"])
        assert ms["name"] == "Sprint 7"
        assert ms["github_milestone_number"] == 7
        assert ms["phase"] == "planning"
        data = _invoke_json(runner, ["milestone", "show", ms["id"]])
        assert data["milestone"]["id"] == ms["id"]
        assert data["baseline"] is None
        assert data["workflows"] == []

    def test_find_by_name(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        ms = _invoke_json(runner, ["milestone", "create", "Sprint 7"])
        assert _invoke_json(runner, ["milestone", "find", "Sprint 7"])["milestone"]["id"] == ms["id"]
        result = runner.invoke(cli, ["milestone", "find", "Sprint 8"])
        assert result.exit_code == 1
        assert "No milestone named" in result.output

    def test_empty_name_rejected(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["milestone", "create", ""])
        assert result.exit_code == 1
        assert "cannot be empty" in result.output

    def test_transitions(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        ms_id = _invoke_json(runner, ["milestone", "create", "M"])["id"]
        _invoke_json(runner, ["milestone", "set-phase", ms_id, "execute"])
        _invoke_json(runner, ["milestone", "set-status", ms_id, "completed"])
        data = _invoke_json(runner, ["milestone", "show", ms_id])
        assert data["milestone"]["phase"] == "execute"
        assert data["milestone"]["status"] == "completed"
        assert _invoke_json(runner, ["milestone", "list-active"]) == []

    def test_invalid_phase(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        ms_id = _invoke_json(runner, ["milestone", "create", "M"])["id"]
        result = runner.invoke(cli, ["milestone", "set-phase", ms_id, "implement"])
        assert result.exit_code == 1
        assert "Invalid milestone phase" in result.output

    def test_baseline_replaced(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        ms_id = _invoke_json(runner, ["milestone", "create", "M"])["id"]
        _invoke_json(runner, ["milestone", "baseline", ms_id, "--lint-warnings", "5"])
        data = _invoke_json(runner, ["milestone", "baseline", ms_id, "--lint-warnings", "2", "--typecheck-errors", "1"])
        assert data["lint_warnings"] == 2
        assert data["typecheck_errors"] == 1

    def test_baseline_missing_milestone(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["milestone", "baseline", "milestone-nope"])
        assert result.exit_code == 1
        assert "No milestone found" in result.output

    def test_delete(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        ms_id = _invoke_json(runner, ["milestone", "create", "M"])["id"]
        assert _invoke_json(runner, ["milestone", "delete", ms_id])["deleted"] is True
        result = runner.invoke(cli, ["milestone", "show", ms_id])
        assert result.exit_code == 1
