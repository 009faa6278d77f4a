"""Fixtures for core DB tests."""

from __future__ import annotations

import pytest

from waypoint.core import Milestone, WaypointDB, Workflow


@pytest.fixture
def workflow(db: WaypointDB) -> Workflow:
    """A running workflow for issue #42."""
    return db.create_workflow(42, "feat/42-login", "/tmp/wt-42")


@pytest.fixture
def milestone(db: WaypointDB) -> Milestone:
    return db.create_milestone("Sprint 7", 7)
