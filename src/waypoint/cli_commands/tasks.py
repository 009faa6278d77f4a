"""CLI commands for task snapshots and progress."""

from __future__ import annotations

import click

from waypoint.cli_common import emit, fail, get_db, parse_metadata
from waypoint.db_base import WaypointError


@click.group("task")
def task() -> None:
    """Record task snapshots and inspect progress."""


@task.command("log")
@click.argument("workflow_id")
@click.argument("task_id")
@click.argument("subject")
@click.argument("status")
@click.option("--phase", default="implement", help="Workflow phase the task belongs to")
@click.option("--parent", "parent_task_id", default=None, help="Parent task id")
@click.option("--metadata", default=None, help="JSON object attached to the snapshot")
def log(workflow_id: str, task_id: str, subject: str, status: str, phase: str, parent_task_id: str | None, metadata: str | None) -> None:
    """Append a task snapshot."""
    payload = parse_metadata(metadata)
    with get_db() as db:
        try:
            seq = db.log_task_snapshot(workflow_id, phase, task_id, subject, status, payload, parent_task_id)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"task_id": task_id, "seq": seq, "status": status})


@task.command("children")
@click.argument("task_id")
def children(task_id: str) -> None:
    """List a task's current children."""
    with get_db() as db:
        emit(db.get_child_tasks(task_id))


@task.command("progress")
@click.argument("task_id")
def progress(task_id: str) -> None:
    """Show rolled-up completion for a task."""
    with get_db() as db:
        emit(db.get_task_progress(task_id))


@task.command("tree")
@click.option("--workflow", "workflow_id", default=None, help="Only tasks of this workflow")
def tree(workflow_id: str | None) -> None:
    """Show the task tree with progress."""
    with get_db() as db:
        emit(db.get_task_tree(workflow_id))


def register(cli: click.Group) -> None:
    """Register task commands with the CLI group."""
    cli.add_command(task)
