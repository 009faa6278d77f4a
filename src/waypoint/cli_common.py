"""Shared CLI helpers.

Provides ``get_db()``, ``emit()`` and ``fail()`` so that ``cli.py`` and the
``cli_commands/*.py`` modules can use them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import Any, NoReturn

import click

from waypoint.core import (
    DB_FILENAME,
    DEFAULT_STALE_THRESHOLD_HOURS,
    WAYPOINT_DIR_NAME,
    WaypointDB,
    find_waypoint_root,
    read_config,
)
from waypoint.logging import setup_logging


def get_db() -> WaypointDB:
    """Discover .waypoint/ and return an initialized WaypointDB."""
    try:
        waypoint_dir = find_waypoint_root()
    except FileNotFoundError:
        click.echo(f"No {WAYPOINT_DIR_NAME}/ found. Run 'waypoint init' first.", err=True)
        sys.exit(1)
    setup_logging(waypoint_dir)
    config = read_config(waypoint_dir)
    db = WaypointDB(
        waypoint_dir / DB_FILENAME,
        strict_metadata=bool(config.get("strict_metadata", True)),
        stale_threshold_hours=config.get("stale_threshold_hours", DEFAULT_STALE_THRESHOLD_HOURS),
    )
    db.initialize()
    return db


def emit(data: Any) -> None:
    """Print *data* as indented JSON."""
    click.echo(json_mod.dumps(data, indent=2, default=str))


def fail(message: str) -> NoReturn:
    click.echo(message, err=True)
    sys.exit(1)


def parse_metadata(raw: str | None) -> dict[str, Any] | None:
    """Parse a ``--metadata`` JSON object argument."""
    if raw is None:
        return None
    try:
        value = json_mod.loads(raw)
    except json_mod.JSONDecodeError as exc:
        fail(f"Invalid --metadata JSON: {exc}")
    if not isinstance(value, dict):
        fail("--metadata must be a JSON object")
    return value
