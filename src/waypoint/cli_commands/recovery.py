"""CLI commands for task recovery."""

from __future__ import annotations

import click

from waypoint.cli_common import emit, fail, get_db


@click.group("recover")
def recover() -> None:
    """Rebuild task checklists from checkpoints."""


@recover.command("issue")
@click.argument("issue_number", type=int)
@click.option("--archetype", default=None, help="Force gated or phased instead of the stored or inferred shape")
def issue(issue_number: int, archetype: str | None) -> None:
    """Recover the checklist for an issue's latest workflow."""
    with get_db() as db:
        try:
            plan = db.recover_tasks_by_issue(issue_number, archetype)
        except ValueError as e:
            fail(f"Error: {e}")
        if plan is None:
            fail(f"No workflow for issue #{issue_number}")
        emit(plan)


@recover.command("milestone")
@click.argument("name")
def milestone(name: str) -> None:
    """Recover the wave checklist for a milestone."""
    with get_db() as db:
        plan = db.recover_tasks_by_milestone(name)
        if plan is None:
            fail(f"No milestone named {name!r}")
        emit(plan)


def register(cli: click.Group) -> None:
    """Register recovery commands with the CLI group."""
    cli.add_command(recover)
