"""Shared utilities, errors, vocabularies, and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

ISSUE_PHASES: tuple[str, ...] = ("research", "implement", "review", "finalize")
MILESTONE_PHASES: tuple[str, ...] = ("planning", "execute", "review", "merge", "cleanup")
WORKFLOW_PHASES: tuple[str, ...] = (*ISSUE_PHASES, "planning", "execute", "merge", "cleanup")
WORKFLOW_STATUSES: tuple[str, ...] = ("running", "paused", "completed", "failed")
ACTIVE_STATUSES: tuple[str, ...] = ("running", "paused")
ACTION_RESULTS: tuple[str, ...] = ("success", "failed", "pending")
TASK_STATUSES: tuple[str, ...] = ("pending", "in_progress", "completed")
ARCHETYPES: tuple[str, ...] = ("gated", "phased")


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _is_fk_violation(exc: sqlite3.IntegrityError) -> bool:
    return "FOREIGN KEY constraint failed" in str(exc)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class WaypointError(Exception):
    """Base class for errors raised by the waypoint store."""


class WorkflowNotFoundError(WaypointError, KeyError):
    """A mutation targeted a workflow id that does not exist."""

    def __init__(self, workflow_id: str, operation: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(
            f"Failed to {operation}: No workflow found with ID {workflow_id!r}. "
            "The workflow may have been deleted or the ID is incorrect."
        )

    def __str__(self) -> str:
        # KeyError.__str__ repr-quotes the message
        return str(self.args[0])


class MilestoneNotFoundError(WaypointError, KeyError):
    """A mutation targeted a milestone id that does not exist."""

    def __init__(self, milestone_id: str, operation: str) -> None:
        self.milestone_id = milestone_id
        super().__init__(
            f"Failed to {operation}: No milestone found with ID {milestone_id!r}. "
            "The milestone may have been deleted or the ID is incorrect."
        )

    def __str__(self) -> str:
        return str(self.args[0])


class ParentRecordError(WaypointError, ValueError):
    """A write referenced a parent row (workflow or milestone) that does not exist."""


class MetadataError(WaypointError, ValueError):
    """Metadata could not be stored without losing information."""


class DBMixinProtocol(Protocol):
    """Shared attributes that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn etc.
    without ``type: ignore`` on every call. Actual implementations are
    provided by WaypointDB at composition time.
    """

    db_path: Path
    strict_metadata: bool
    _conn: sqlite3.Connection | None

    @property
    def conn(self) -> sqlite3.Connection: ...
