"""Shared pytest fixtures for waypoint tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tests._db_factory import make_db
from waypoint.core import DB_FILENAME, WAYPOINT_DIR_NAME, WaypointDB, write_config


@pytest.fixture
def db(tmp_path: Path) -> Generator[WaypointDB, None, None]:
    """Fresh WaypointDB for each test."""
    d = make_db(tmp_path)
    yield d
    d.close()


@pytest.fixture
def lenient_db(tmp_path: Path) -> Generator[WaypointDB, None, None]:
    """WaypointDB that stores unserializable metadata as NULL instead of rejecting it."""
    d = make_db(tmp_path, strict_metadata=False)
    yield d
    d.close()


@pytest.fixture
def waypoint_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a waypoint project (.waypoint/ with config + db).

    Returns the project root (parent of .waypoint/).
    """
    waypoint_dir = tmp_path / WAYPOINT_DIR_NAME
    waypoint_dir.mkdir()
    write_config(waypoint_dir, {"version": 1, "stale_threshold_hours": 24, "strict_metadata": True})
    with WaypointDB(waypoint_dir / DB_FILENAME) as d:
        d.initialize()
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
