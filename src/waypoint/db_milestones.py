"""MilestonesMixin — milestone CRUD, wave assignments, and quality baselines."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from waypoint.db_base import (
    ACTIVE_STATUSES,
    MILESTONE_PHASES,
    WORKFLOW_STATUSES,
    DBMixinProtocol,
    MilestoneNotFoundError,
    ParentRecordError,
    _is_fk_violation,
    _now_iso,
)
from waypoint.types.records import BaselineInput, BaselineRecord
from waypoint.validation import require_choice

if TYPE_CHECKING:
    from waypoint.core import Milestone, MilestoneCheckpoint, Workflow

logger = logging.getLogger(__name__)

_BASELINE_COUNTERS = ("lint_exit_code", "lint_warnings", "lint_errors", "typecheck_exit_code", "typecheck_errors")


class MilestonesMixin(DBMixinProtocol):
    """Milestones group workflows into dependency-ordered waves.

    Inherits ``DBMixinProtocol`` for type-safe access to ``self.conn``.
    """

    if TYPE_CHECKING:

        def _generate_unique_id(self, table: str, prefix: str) -> str: ...

        def _milestone_id_prefix(self, name: str) -> str: ...

        def _build_milestone(self, row: sqlite3.Row) -> Milestone: ...

        def list_milestone_workflows(self, milestone_id: str) -> list[Workflow]: ...

    def create_milestone(self, name: str, github_milestone_number: int | None = None) -> Milestone:
        """Create a milestone in phase ``planning``, status ``running``."""
        from waypoint.core import Milestone

        if not isinstance(name, str) or not name.strip():
            msg = "Milestone name cannot be empty"
            raise ValueError(msg)
        now = _now_iso()
        milestone = Milestone(
            id=self._generate_unique_id("milestones", self._milestone_id_prefix(name)),
            name=name,
            github_milestone_number=github_milestone_number,
            created_at=now,
            updated_at=now,
        )
        try:
            self.conn.execute(
                "INSERT INTO milestones (id, name, github_milestone_number, phase, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    milestone.id,
                    milestone.name,
                    milestone.github_milestone_number,
                    milestone.phase,
                    milestone.status,
                    milestone.created_at,
                    milestone.updated_at,
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        logger.info("Created milestone %s (%s)", milestone.id, name, extra={"milestone_id": milestone.id})
        return milestone

    def get_milestone(self, milestone_id: str) -> MilestoneCheckpoint | None:
        """Load a milestone with its baseline, linked workflows and wave map."""
        from waypoint.core import MilestoneCheckpoint

        row = self.conn.execute("SELECT * FROM milestones WHERE id = ?", (milestone_id,)).fetchone()
        if row is None:
            return None
        waves = {
            r["workflow_id"]: r["wave"]
            for r in self.conn.execute(
                "SELECT workflow_id, COALESCE(wave_number, 1) AS wave FROM milestone_workflows WHERE milestone_id = ?",
                (milestone_id,),
            )
        }
        return MilestoneCheckpoint(
            milestone=self._build_milestone(row),
            baseline=self.get_baseline(milestone_id),
            workflows=self.list_milestone_workflows(milestone_id),
            waves=waves,
        )

    def find_milestone_by_name(self, name: str) -> MilestoneCheckpoint | None:
        """Load the most recently created milestone called *name*."""
        row = self.conn.execute(
            "SELECT id FROM milestones WHERE name = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (name,),
        ).fetchone()
        if row is None:
            return None
        return self.get_milestone(row["id"])

    def _update_milestone_field(self, milestone_id: str, column: str, value: str, operation: str) -> None:
        try:
            cursor = self.conn.execute(
                f"UPDATE milestones SET {column} = ?, updated_at = ? WHERE id = ?",
                (value, _now_iso(), milestone_id),
            )
            if cursor.rowcount == 0:
                raise MilestoneNotFoundError(milestone_id, operation)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def set_milestone_phase(self, milestone_id: str, phase: str) -> None:
        require_choice(phase, MILESTONE_PHASES, "milestone phase")
        self._update_milestone_field(milestone_id, "phase", phase, "set milestone phase")

    def set_milestone_status(self, milestone_id: str, status: str) -> None:
        require_choice(status, WORKFLOW_STATUSES, "milestone status")
        self._update_milestone_field(milestone_id, "status", status, "set milestone status")

    # -- Baselines ------------------------------------------------------------

    def save_baseline(self, milestone_id: str, data: BaselineInput) -> None:
        """Replace the milestone's quality baseline.

        The delete and insert run in one transaction: on any failure the
        previous baseline is left untouched.
        """
        values = [int(data.get(name, 0)) for name in _BASELINE_COUNTERS]  # type: ignore[call-overload]
        captured_at = data.get("captured_at") or _now_iso()
        try:
            self.conn.execute("DELETE FROM baselines WHERE milestone_id = ?", (milestone_id,))
            self.conn.execute(
                f"INSERT INTO baselines (milestone_id, captured_at, {', '.join(_BASELINE_COUNTERS)}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (milestone_id, captured_at, *values),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            if _is_fk_violation(exc):
                msg = f"Failed to save baseline: No milestone found with ID {milestone_id!r}. Create the milestone first."
                raise ParentRecordError(msg) from exc
            raise
        except Exception:
            self.conn.rollback()
            raise

    def get_baseline(self, milestone_id: str) -> BaselineRecord | None:
        row = self.conn.execute("SELECT * FROM baselines WHERE milestone_id = ?", (milestone_id,)).fetchone()
        if row is None:
            return None
        return dict(row)  # type: ignore[return-value]

    # -- Listing and lifecycle ------------------------------------------------

    def list_active_milestones(self) -> list[Milestone]:
        """Running or paused milestones, most recently updated first."""
        placeholders = ",".join("?" * len(ACTIVE_STATUSES))
        rows = self.conn.execute(
            f"SELECT * FROM milestones WHERE status IN ({placeholders}) ORDER BY updated_at DESC, rowid DESC",
            ACTIVE_STATUSES,
        ).fetchall()
        return [self._build_milestone(r) for r in rows]

    def delete_milestone(self, milestone_id: str) -> bool:
        """Delete a milestone, its links and its baseline. Linked workflows survive."""
        try:
            cursor = self.conn.execute("DELETE FROM milestones WHERE id = ?", (milestone_id,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cursor.rowcount > 0
