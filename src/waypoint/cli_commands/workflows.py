"""CLI commands for workflows: create, show, transitions, action/commit logs, links, cleanup."""

from __future__ import annotations

import click

from waypoint.cli_common import emit, fail, get_db, parse_metadata
from waypoint.db_base import WaypointError


@click.group("workflow")
def workflow() -> None:
    """Create and update workflow checkpoints."""


@workflow.command("create")
@click.argument("issue_number", type=int)
@click.argument("branch")
@click.option("--worktree", default=None, help="Worktree path for the workflow")
@click.option("--archetype", default=None, help="Workflow shape: gated or phased (default: infer from actions)")
def create(issue_number: int, branch: str, worktree: str | None, archetype: str | None) -> None:
    """Start a workflow for an issue."""
    with get_db() as db:
        try:
            wf = db.create_workflow(issue_number, branch, worktree, archetype=archetype)
        except ValueError as e:
            fail(f"Error: {e}")
        emit(wf.to_dict())


@workflow.command("show")
@click.argument("workflow_id")
def show(workflow_id: str) -> None:
    """Show a workflow with its actions and commits."""
    with get_db() as db:
        checkpoint = db.load_workflow(workflow_id)
        if checkpoint is None:
            fail(f"Not found: {workflow_id}")
        emit(checkpoint.to_dict())


@workflow.command("find")
@click.argument("issue_number", type=int)
def find(issue_number: int) -> None:
    """Show the most recent workflow for an issue."""
    with get_db() as db:
        checkpoint = db.find_by_issue(issue_number)
        if checkpoint is None:
            fail(f"No workflow for issue #{issue_number}")
        emit(checkpoint.to_dict())


@workflow.command("set-phase")
@click.argument("workflow_id")
@click.argument("phase")
def set_phase(workflow_id: str, phase: str) -> None:
    """Move a workflow to another phase."""
    with get_db() as db:
        try:
            db.set_phase(workflow_id, phase)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"workflow_id": workflow_id, "phase": phase})


@workflow.command("set-status")
@click.argument("workflow_id")
@click.argument("status")
def set_status(workflow_id: str, status: str) -> None:
    """Change a workflow's status."""
    with get_db() as db:
        try:
            db.set_status(workflow_id, status)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"workflow_id": workflow_id, "status": status})


@workflow.command("retry")
@click.argument("workflow_id")
def retry(workflow_id: str) -> None:
    """Increment the retry counter."""
    with get_db() as db:
        try:
            count = db.increment_retry(workflow_id)
        except WaypointError as e:
            fail(f"Error: {e}")
        emit({"workflow_id": workflow_id, "retry_count": count})


@workflow.command("log-action")
@click.argument("workflow_id")
@click.argument("action")
@click.argument("result")
@click.option("--metadata", default=None, help="JSON object attached to the action")
@click.option("--safe", is_flag=True, help="Never fail: record <action>_failed instead")
def log_action(workflow_id: str, action: str, result: str, metadata: str | None, safe: bool) -> None:
    """Append an action to a workflow's log."""
    payload = parse_metadata(metadata)
    with get_db() as db:
        if safe:
            emit({"workflow_id": workflow_id, "action": action, "logged": db.log_action_safe(workflow_id, action, result, payload)})
            return
        try:
            action_id = db.log_action(workflow_id, action, result, payload)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"id": action_id, "workflow_id": workflow_id, "action": action, "result": result})


@workflow.command("log-commit")
@click.argument("workflow_id")
@click.argument("sha")
@click.argument("message")
def log_commit(workflow_id: str, sha: str, message: str) -> None:
    """Record a commit made by a workflow."""
    with get_db() as db:
        try:
            commit_id = db.log_commit(workflow_id, sha, message)
        except WaypointError as e:
            fail(f"Error: {e}")
        emit({"id": commit_id, "workflow_id": workflow_id, "sha": sha})


@workflow.command("list-active")
def list_active() -> None:
    """List running and paused workflows."""
    with get_db() as db:
        emit([wf.to_dict() for wf in db.list_active()])


@workflow.command("delete")
@click.argument("workflow_id")
def delete(workflow_id: str) -> None:
    """Delete a workflow and its history."""
    with get_db() as db:
        emit({"workflow_id": workflow_id, "deleted": db.delete_workflow(workflow_id)})


@workflow.command("link")
@click.argument("workflow_id")
@click.argument("milestone_id")
@click.option("--wave", "wave_number", default=None, type=int, help="Wave number (default: 1)")
def link(workflow_id: str, milestone_id: str, wave_number: int | None) -> None:
    """Attach a workflow to a milestone wave."""
    with get_db() as db:
        try:
            db.link_workflow_to_milestone(workflow_id, milestone_id, wave_number)
        except (WaypointError, ValueError) as e:
            fail(f"Error: {e}")
        emit({"workflow_id": workflow_id, "milestone_id": milestone_id, "wave_number": wave_number or 1})


@workflow.command("list")
@click.argument("milestone_id")
def list_for_milestone(milestone_id: str) -> None:
    """List workflows linked to a milestone, in wave order."""
    with get_db() as db:
        emit([wf.to_dict() for wf in db.list_milestone_workflows(milestone_id)])


@workflow.command("cleanup")
@click.option("--hours", default=None, type=float, help="Inactivity threshold (default: from config)")
def cleanup(hours: float | None) -> None:
    """Fail running workflows that have gone stale."""
    with get_db() as db:
        emit({"cleaned": db.cleanup_stale_workflows(hours)})


def register(cli: click.Group) -> None:
    """Register workflow commands with the CLI group."""
    cli.add_command(workflow)
