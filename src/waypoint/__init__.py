"""Waypoint — durable workflow checkpoints and task recovery for long-running automation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("waypoint")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from waypoint.core import CheckpointData, Milestone, MilestoneCheckpoint, WaypointDB, Workflow

__all__ = ["CheckpointData", "Milestone", "MilestoneCheckpoint", "WaypointDB", "Workflow", "__version__"]
