"""CLI commands for milestones: create, show, transitions, baselines."""

from __future__ import annotations

import click

from waypoint.cli_common import emit, fail, get_db
from waypoint.db_base import WaypointError
from waypoint.types.records import BaselineInput


@click.group("milestone")
def milestone() -> None:
    """Create and update milestones."""


@milestone.command("create")
@click.argument("name")
@click.option("--number", "github_milestone_number", default=None, type=int, help="Tracker milestone number")
def create(name: str, github_milestone_number: int | None) -> None:
    """Create a milestone."""
    with get_db() as db:
        try:
            ms = db.create_milestone(name, github_milestone_number)
        except ValueError as e:
            fail(f"Error: {e}")
        emit(ms.to_dict())


@milestone.command("show")
@click.argument("milestone_id")
def show(milestone_id: str) -> None:
    """Show a milestone with its baseline and workflows."""
    with get_db() as db:
        checkpoint = db.get_milestone(milestone_id)
        if checkpoint is None:
            fail(f"Not found: {milestone_id}")
        emit(checkpoint.to_dict())


@milestone.command("find")
@click.argument("name")
def find(name: str) -> None:
    """Show the most recent milestone with this name."""
    with get_db() as db:
        checkpoint = db.find_milestone_by_name(name)
        if checkpoint is None:
            fail(f"No milestone named {name!r}")
        emit(checkpoint.to_dict())


@milestone.command("set-phase")
@click.argument("milestone_id")
@click.argument("phase")
def set_phase(milestone_id: str, phase: str) -> None:
    """Move a milestone to another phase."""
    with get_db() as db:
        try:
            db.set_milestone_phase(milestone_id, phase)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"milestone_id": milestone_id, "phase": phase})


@milestone.command("set-status")
@click.argument("milestone_id")
@click.argument("status")
def set_status(milestone_id: str, status: str) -> None:
    """Change a milestone's status."""
    with get_db() as db:
        try:
            db.set_milestone_status(milestone_id, status)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"milestone_id": milestone_id, "status": status})


@milestone.command("baseline")
@click.argument("milestone_id")
@click.option("--lint-exit-code", default=0, type=int)
@click.option("--lint-warnings", default=0, type=int)
@click.option("--lint-errors", default=0, type=int)
@click.option("--typecheck-exit-code", default=0, type=int)
@click.option("--typecheck-errors", default=0, type=int)
def baseline(
    milestone_id: str,
    lint_exit_code: int,
    lint_warnings: int,
    lint_errors: int,
    typecheck_exit_code: int,
    typecheck_errors: int,
) -> None:
    """Replace the milestone's quality baseline."""
    data: BaselineInput = {
        "lint_exit_code": lint_exit_code,
        "lint_warnings": lint_warnings,
        "lint_errors": lint_errors,
        "typecheck_exit_code": typecheck_exit_code,
        "typecheck_errors": typecheck_errors,
    }
    with get_db() as db:
        try:
            db.save_baseline(milestone_id, data)
        except WaypointError as e:
            fail(f"Error: {e}")
        emit(db.get_baseline(milestone_id))


@milestone.command("list-active")
def list_active() -> None:
    """List running and paused milestones."""
    with get_db() as db:
        emit([ms.to_dict() for ms in db.list_active_milestones()])


@milestone.command("delete")
@click.argument("milestone_id")
def delete(milestone_id: str) -> None:
    """Delete a milestone. Linked workflows are kept."""
    with get_db() as db:
        emit({"milestone_id": milestone_id, "deleted": db.delete_milestone(milestone_id)})


def register(cli: click.Group) -> None:
    """Register milestone commands with the CLI group."""
    cli.add_command(milestone)
