"""Core database operations for the waypoint checkpoint store.

Single source of truth for all SQLite operations. The CLI and any
orchestrator import from this module. No daemon — just direct SQLite with WAL mode.

Covers workflow checkpoints (actions and commits), milestones with wave
links and quality baselines, task snapshots, task recovery and context metrics.

Convention-based discovery: each project has a `.waypoint/` directory containing
`waypoint.db` (SQLite) and `config.json` (stale threshold, metadata strictness).
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from waypoint.db_metrics import MetricsMixin
from waypoint.db_milestones import MilestonesMixin
from waypoint.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from waypoint.db_tasks import TaskSnapshotsMixin
from waypoint.db_workflows import WorkflowsMixin
from waypoint.recovery import RecoveryMixin
from waypoint.types.core import MilestoneDict, ProjectConfig, WorkflowDict
from waypoint.types.records import (
    ActionRecord,
    BaselineRecord,
    CheckpointDict,
    CommitRecord,
    MilestoneCheckpointDict,
)

logger = logging.getLogger(__name__)

WAYPOINT_DIR_NAME = ".waypoint"
DB_FILENAME = "waypoint.db"
CONFIG_FILENAME = "config.json"
DEFAULT_STALE_THRESHOLD_HOURS = 24


def _default_config() -> ProjectConfig:
    return ProjectConfig(version=1, stale_threshold_hours=DEFAULT_STALE_THRESHOLD_HOURS, strict_metadata=True)


def find_waypoint_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .waypoint/ directory.

    Returns the .waypoint/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / WAYPOINT_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {WAYPOINT_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


_CONFIG_CHECKS: dict[str, Callable[[Any], bool]] = {
    "version": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "stale_threshold_hours": lambda v: isinstance(v, int | float) and not isinstance(v, bool) and v > 0,
    "strict_metadata": lambda v: isinstance(v, bool),
}


def read_config(waypoint_dir: Path) -> ProjectConfig:
    """Read .waypoint/config.json. Returns defaults if missing or corrupt.

    Keys missing from the file, or holding a value of the wrong type, fall
    back to their defaults.
    """
    config = _default_config()
    config_path = waypoint_dir / CONFIG_FILENAME
    if not config_path.exists():
        return config
    try:
        loaded = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return config
    if not isinstance(loaded, dict):
        logger.warning("Ignoring %s: expected a JSON object", config_path)
        return config
    for key, value in loaded.items():
        check = _CONFIG_CHECKS.get(key)
        if check is not None and not check(value):
            logger.warning("Ignoring %s in %s: invalid value %r, using default", key, config_path, value)
            continue
        config[key] = value  # type: ignore[literal-required]
    return config


def write_config(waypoint_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .waypoint/config.json."""
    config_path = waypoint_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:40].rstrip("-") or "untitled"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class Workflow:
    id: str
    issue_number: int
    branch: str
    worktree: str | None = None
    phase: str = "research"
    status: str = "running"
    retry_count: int = 0
    archetype: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> WorkflowDict:
        return {
            "id": self.id,
            "issue_number": self.issue_number,
            "branch": self.branch,
            "worktree": self.worktree,
            "phase": self.phase,  # type: ignore[typeddict-item]
            "status": self.status,  # type: ignore[typeddict-item]
            "retry_count": self.retry_count,
            "archetype": self.archetype,  # type: ignore[typeddict-item]
            "created_at": self.created_at,  # type: ignore[typeddict-item]
            "updated_at": self.updated_at,  # type: ignore[typeddict-item]
        }


@dataclass
class Milestone:
    id: str
    name: str
    github_milestone_number: int | None = None
    phase: str = "planning"
    status: str = "running"
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> MilestoneDict:
        return {
            "id": self.id,
            "name": self.name,
            "github_milestone_number": self.github_milestone_number,
            "phase": self.phase,  # type: ignore[typeddict-item]
            "status": self.status,  # type: ignore[typeddict-item]
            "created_at": self.created_at,  # type: ignore[typeddict-item]
            "updated_at": self.updated_at,  # type: ignore[typeddict-item]
        }


@dataclass
class CheckpointData:
    """A workflow with its action and commit history in canonical order."""

    workflow: Workflow
    actions: list[ActionRecord] = field(default_factory=list)
    commits: list[CommitRecord] = field(default_factory=list)

    def to_dict(self) -> CheckpointDict:
        return {
            "workflow": self.workflow.to_dict(),
            "actions": list(self.actions),
            "commits": list(self.commits),
        }


@dataclass
class MilestoneCheckpoint:
    """A milestone with its baseline, linked workflows and wave assignments."""

    milestone: Milestone
    baseline: BaselineRecord | None = None
    workflows: list[Workflow] = field(default_factory=list)
    waves: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> MilestoneCheckpointDict:
        return {
            "milestone": self.milestone.to_dict(),
            "baseline": self.baseline,
            "workflows": [w.to_dict() for w in self.workflows],
            "waves": dict(self.waves),
        }


# ---------------------------------------------------------------------------
# WaypointDB — the core
# ---------------------------------------------------------------------------


class WaypointDB(WorkflowsMixin, MilestonesMixin, TaskSnapshotsMixin, MetricsMixin, RecoveryMixin):
    """Direct SQLite operations for workflow checkpoints. Each instance owns one connection."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        strict_metadata: bool = True,
        stale_threshold_hours: float = DEFAULT_STALE_THRESHOLD_HOURS,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.strict_metadata = strict_metadata
        self.stale_threshold_hours = stale_threshold_hours
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> WaypointDB:
        """Create a WaypointDB by discovering .waypoint/ from project_path (or cwd)."""
        waypoint_dir = find_waypoint_root(project_path)
        config = read_config(waypoint_dir)
        db = cls(
            waypoint_dir / DB_FILENAME,
            strict_metadata=bool(config.get("strict_metadata", True)),
            stale_threshold_hours=config.get("stale_threshold_hours", DEFAULT_STALE_THRESHOLD_HOURS),
        )
        db.initialize()
        return db

    def __enter__(self) -> WaypointDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables (if new) or migrate (if existing).

        A fresh database (user_version == 0) gets SCHEMA_SQL and is stamped
        with CURRENT_SCHEMA_VERSION. An existing database runs any pending
        migrations; one newer than this release is refused with ValueError.
        """
        current_version = self.get_schema_version()

        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version != CURRENT_SCHEMA_VERSION:
            from waypoint.migrations import apply_pending_migrations

            apply_pending_migrations(self.conn, CURRENT_SCHEMA_VERSION)

        self.conn.commit()

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _generate_unique_id(self, table: str, prefix: str) -> str:
        """Generate ``<prefix>-<10 hex>`` unique within *table*.

        *table* is always a hardcoded literal at the call site (never user input).
        """
        for _ in range(10):
            candidate = f"{prefix}-{uuid.uuid4().hex[:10]}"
            if self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"{prefix}-{uuid.uuid4().hex[:16]}"

    def _milestone_id_prefix(self, name: str) -> str:
        return f"milestone-{_slugify(name)}"

    # -- Row builders ---------------------------------------------------------

    def _build_workflow(self, row: sqlite3.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            issue_number=row["issue_number"],
            branch=row["branch"],
            worktree=row["worktree"],
            phase=row["phase"],
            status=row["status"],
            retry_count=row["retry_count"],
            archetype=row["archetype"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _build_milestone(self, row: sqlite3.Row) -> Milestone:
        return Milestone(
            id=row["id"],
            name=row["name"],
            github_milestone_number=row["github_milestone_number"],
            phase=row["phase"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
