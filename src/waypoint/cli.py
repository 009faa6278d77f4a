"""CLI for the waypoint checkpoint store.

Convention-based: discovers .waypoint/ by walking up from cwd. Every command
prints JSON; not-found and validation errors go to stderr with exit code 1.

Usage:
    waypoint init                                   # Initialize .waypoint/ in cwd
    waypoint workflow create 42 feat/42-login       # Start a workflow for issue #42
    waypoint workflow log-action <id> gate-1 success
    waypoint milestone create "Sprint 7"
    waypoint workflow link <workflow-id> <milestone-id> --wave 2
    waypoint recover issue 42                       # Rebuild the checklist for #42
    waypoint recover milestone "Sprint 7"
    waypoint task tree --workflow <id>
    waypoint metrics summary
"""

from __future__ import annotations

from pathlib import Path

import click

from waypoint import __version__
from waypoint.cli_commands import metrics as metrics_cmds
from waypoint.cli_commands import milestones as milestone_cmds
from waypoint.cli_commands import recovery as recovery_cmds
from waypoint.cli_commands import tasks as task_cmds
from waypoint.cli_commands import workflows as workflow_cmds
from waypoint.cli_common import emit
from waypoint.core import (
    CONFIG_FILENAME,
    DB_FILENAME,
    WAYPOINT_DIR_NAME,
    WaypointDB,
    read_config,
    write_config,
)


@click.group()
@click.version_option(version=__version__, prog_name="waypoint")
def cli() -> None:
    """Waypoint — workflow checkpoints and task recovery."""


@cli.command()
@click.option("--stale-hours", default=None, type=int, help="Hours before a running workflow counts as stale (default: 24)")
@click.option("--lenient-metadata", is_flag=True, help="Store unserializable metadata as null instead of rejecting the write")
def init(stale_hours: int | None, lenient_metadata: bool) -> None:
    """Initialize .waypoint/ in the current directory."""
    cwd = Path.cwd()
    waypoint_dir = cwd / WAYPOINT_DIR_NAME
    created = not waypoint_dir.exists()

    if created:
        waypoint_dir.mkdir()
        config = read_config(waypoint_dir)
        if stale_hours is not None:
            config["stale_threshold_hours"] = stale_hours
        config["strict_metadata"] = not lenient_metadata
        write_config(waypoint_dir, config)
    else:
        config = read_config(waypoint_dir)

    with WaypointDB(waypoint_dir / DB_FILENAME) as db:
        db.initialize()
        schema_version = db.get_schema_version()

    emit(
        {
            "initialized": created,
            "path": str(waypoint_dir),
            "database": str(waypoint_dir / DB_FILENAME),
            "config": str(waypoint_dir / CONFIG_FILENAME),
            "schema_version": schema_version,
            "settings": config,
        }
    )


workflow_cmds.register(cli)
milestone_cmds.register(cli)
recovery_cmds.register(cli)
task_cmds.register(cli)
metrics_cmds.register(cli)


if __name__ == "__main__":
    cli()
