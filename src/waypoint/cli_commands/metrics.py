"""CLI commands for metrics."""

from __future__ import annotations

import click

from waypoint.cli_common import emit, get_db


@click.group("metrics")
def metrics() -> None:
    """Show session, graph query and task metrics."""


@metrics.command("summary")
def summary() -> None:
    """Totals and averages across recorded sessions."""
    with get_db() as db:
        emit(db.get_metrics_summary())


@metrics.command("sessions")
@click.option("--issue", "issue_number", default=None, type=int, help="Only sessions for this issue")
def sessions(issue_number: int | None) -> None:
    """Recent session context metrics (at most 100)."""
    with get_db() as db:
        emit(db.get_context_metrics(issue_number))


@metrics.command("graph")
@click.option("--session", "session_id", default=None, help="Only queries from this session")
@click.option("--workflow", "workflow_id", default=None, help="Only queries against this workflow")
@click.option("--type", "query_type", default=None, help="Only queries of this type")
@click.option("--summary", "show_summary", is_flag=True, help="Show counts and averages instead of rows")
def graph(session_id: str | None, workflow_id: str | None, query_type: str | None, show_summary: bool) -> None:
    """Recent graph queries (at most 100), or their summary."""
    with get_db() as db:
        if show_summary:
            emit(db.get_graph_query_summary())
        else:
            emit(db.get_graph_queries(session_id=session_id, workflow_id=workflow_id, query_type=query_type))


@metrics.command("tasks")
@click.option("--workflow", "workflow_id", default=None, help="Only tasks of this workflow")
def tasks(workflow_id: str | None) -> None:
    """Task counts by status and phase."""
    with get_db() as db:
        emit(db.get_task_metrics(workflow_id))


def register(cli: click.Group) -> None:
    """Register metrics commands with the CLI group."""
    cli.add_command(metrics)
