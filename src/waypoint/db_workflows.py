"""WorkflowsMixin — workflow checkpoints, action and commit logs, milestone links.

All methods access ``self.conn`` and the row builders via Python's MRO when
composed into ``WaypointDB``.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from waypoint.db_base import (
    ACTION_RESULTS,
    ACTIVE_STATUSES,
    ARCHETYPES,
    WORKFLOW_PHASES,
    WORKFLOW_STATUSES,
    DBMixinProtocol,
    ParentRecordError,
    WorkflowNotFoundError,
    _is_fk_violation,
    _now_iso,
)
from waypoint.payloads import (
    FAILURE_SUFFIX,
    STALE_CLEANUP_ACTION,
    decode_metadata,
    encode_metadata,
    failure_payload,
    stale_cleanup_payload,
)
from waypoint.types.records import ActionRecord, CommitRecord
from waypoint.validation import require_choice, validate_wave_number

if TYPE_CHECKING:
    from waypoint.core import CheckpointData, Workflow

logger = logging.getLogger(__name__)


class WorkflowsMixin(DBMixinProtocol):
    """Workflow CRUD plus the append-only action and commit logs.

    Inherits ``DBMixinProtocol`` for type-safe access to ``self.conn``.
    """

    if TYPE_CHECKING:
        stale_threshold_hours: float

        def _generate_unique_id(self, table: str, prefix: str) -> str: ...

        def _build_workflow(self, row: sqlite3.Row) -> Workflow: ...

    # -- CRUD -----------------------------------------------------------------

    def create_workflow(
        self,
        issue_number: int,
        branch: str,
        worktree: str | None = None,
        *,
        archetype: str | None = None,
    ) -> Workflow:
        """Create a workflow for *issue_number* in phase ``research``, status ``running``."""
        from waypoint.core import Workflow

        if archetype is not None:
            require_choice(archetype, ARCHETYPES, "archetype")
        now = _now_iso()
        workflow = Workflow(
            id=self._generate_unique_id("workflows", f"workflow-{issue_number}"),
            issue_number=issue_number,
            branch=branch,
            worktree=worktree,
            archetype=archetype,
            created_at=now,
            updated_at=now,
        )
        try:
            self.conn.execute(
                "INSERT INTO workflows (id, issue_number, branch, worktree, phase, status, retry_count, archetype, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    workflow.id,
                    workflow.issue_number,
                    workflow.branch,
                    workflow.worktree,
                    workflow.phase,
                    workflow.status,
                    workflow.retry_count,
                    workflow.archetype,
                    workflow.created_at,
                    workflow.updated_at,
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        logger.info("Created workflow %s for issue #%d", workflow.id, issue_number, extra={"workflow_id": workflow.id})
        return workflow

    def save_workflow(self, workflow: Workflow) -> None:
        """Persist phase, status, retry count, worktree and archetype.

        Refreshes ``updated_at`` on the passed object as well as the row.
        """
        require_choice(workflow.phase, WORKFLOW_PHASES, "phase")
        require_choice(workflow.status, WORKFLOW_STATUSES, "status")
        if workflow.archetype is not None:
            require_choice(workflow.archetype, ARCHETYPES, "archetype")
        now = _now_iso()
        try:
            cursor = self.conn.execute(
                "UPDATE workflows SET phase = ?, status = ?, retry_count = ?, worktree = ?, archetype = ?, updated_at = ? WHERE id = ?",
                (workflow.phase, workflow.status, workflow.retry_count, workflow.worktree, workflow.archetype, now, workflow.id),
            )
            if cursor.rowcount == 0:
                raise WorkflowNotFoundError(workflow.id, "save workflow")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        workflow.updated_at = now

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = self.conn.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,)).fetchone()
        if row is None:
            return None
        return self._build_workflow(row)

    def load_workflow(self, workflow_id: str) -> CheckpointData | None:
        """Load a workflow with its actions and commits, oldest first."""
        from waypoint.core import CheckpointData

        workflow = self.get_workflow(workflow_id)
        if workflow is None:
            return None
        return CheckpointData(
            workflow=workflow,
            actions=self.get_actions(workflow_id),
            commits=self.get_commits(workflow_id),
        )

    def find_by_issue(self, issue_number: int) -> CheckpointData | None:
        """Load the most recently created workflow for *issue_number*."""
        row = self.conn.execute(
            "SELECT id FROM workflows WHERE issue_number = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (issue_number,),
        ).fetchone()
        if row is None:
            return None
        return self.load_workflow(row["id"])

    def get_actions(self, workflow_id: str) -> list[ActionRecord]:
        rows = self.conn.execute(
            "SELECT * FROM actions WHERE workflow_id = ? ORDER BY created_at ASC, id ASC",
            (workflow_id,),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "workflow_id": r["workflow_id"],
                "action": r["action"],
                "result": r["result"],
                "metadata": decode_metadata(r["metadata"], f"action {r['id']} ({r['action']})"),
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    def get_commits(self, workflow_id: str) -> list[CommitRecord]:
        rows = self.conn.execute(
            "SELECT id, workflow_id, sha, message, created_at FROM commits WHERE workflow_id = ? ORDER BY created_at ASC, id ASC",
            (workflow_id,),
        ).fetchall()
        return [dict(r) for r in rows]  # type: ignore[misc]

    # -- Field updates --------------------------------------------------------

    def _update_workflow_field(self, workflow_id: str, column: str, value: str, operation: str) -> None:
        # column is always a hardcoded literal at the call site
        try:
            cursor = self.conn.execute(
                f"UPDATE workflows SET {column} = ?, updated_at = ? WHERE id = ?",
                (value, _now_iso(), workflow_id),
            )
            if cursor.rowcount == 0:
                raise WorkflowNotFoundError(workflow_id, operation)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def set_phase(self, workflow_id: str, phase: str) -> None:
        require_choice(phase, WORKFLOW_PHASES, "phase")
        self._update_workflow_field(workflow_id, "phase", phase, "set phase")

    def set_status(self, workflow_id: str, status: str) -> None:
        require_choice(status, WORKFLOW_STATUSES, "status")
        self._update_workflow_field(workflow_id, "status", status, "set status")

    def set_archetype(self, workflow_id: str, archetype: str) -> None:
        require_choice(archetype, ARCHETYPES, "archetype")
        self._update_workflow_field(workflow_id, "archetype", archetype, "set archetype")

    def increment_retry(self, workflow_id: str) -> int:
        """Atomically bump ``retry_count`` and return the new value."""
        try:
            row = self.conn.execute(
                "UPDATE workflows SET retry_count = retry_count + 1, updated_at = ? WHERE id = ? RETURNING retry_count",
                (_now_iso(), workflow_id),
            ).fetchone()
            if row is None:
                raise WorkflowNotFoundError(workflow_id, "increment retry")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return int(row["retry_count"])

    # -- Append-only logs -----------------------------------------------------

    def log_action(self, workflow_id: str, action: str, result: str, metadata: dict[str, Any] | None = None) -> int:
        """Append an action to the workflow's log and return its id.

        Raises ParentRecordError when the workflow does not exist and
        MetadataError when strict metadata checking rejects *metadata*.
        """
        require_choice(result, ACTION_RESULTS, "result")
        encoded = encode_metadata(action, metadata, strict=self.strict_metadata)
        try:
            cursor = self.conn.execute(
                "INSERT INTO actions (workflow_id, action, result, metadata, created_at) VALUES (?, ?, ?, ?, ?)",
                (workflow_id, action, result, encoded, _now_iso()),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            if _is_fk_violation(exc):
                msg = f"Failed to log action: No workflow found with ID {workflow_id!r}. Create the workflow first."
                raise ParentRecordError(msg) from exc
            raise
        except Exception:
            self.conn.rollback()
            raise
        action_id: int = cursor.lastrowid  # type: ignore[assignment]
        return action_id

    def log_action_safe(self, workflow_id: str, action: str, result: str, metadata: dict[str, Any] | None = None) -> bool:
        """Like log_action() but never raises.

        On failure the error is logged and ``<action>_failed`` is recorded in
        its place (without the original metadata). Returns True only when the
        original action was stored.
        """
        try:
            self.log_action(workflow_id, action, result, metadata)
            return True
        except Exception as exc:
            logger.error(
                "Failed to log action",
                extra={"workflow_id": workflow_id, "action": action, "context": "log_action_safe", "error": str(exc)},
            )
            try:
                self.log_action(workflow_id, f"{action}{FAILURE_SUFFIX}", "failed", dict(failure_payload(action, result, metadata, exc)))
            except Exception as nested:
                logger.critical(
                    "Failed to log failure action (double failure)",
                    extra={
                        "workflow_id": workflow_id,
                        "action": action,
                        "context": "log_action_safe.nested_failure",
                        "error": str(nested),
                    },
                )
            return False

    def log_commit(self, workflow_id: str, sha: str, message: str) -> int:
        """Append a commit to the workflow's log and return its id."""
        try:
            cursor = self.conn.execute(
                "INSERT INTO commits (workflow_id, sha, message, created_at) VALUES (?, ?, ?, ?)",
                (workflow_id, sha, message, _now_iso()),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            if _is_fk_violation(exc):
                msg = f"Failed to log commit: No workflow found with ID {workflow_id!r}. Create the workflow first."
                raise ParentRecordError(msg) from exc
            raise
        except Exception:
            self.conn.rollback()
            raise
        commit_id: int = cursor.lastrowid  # type: ignore[assignment]
        return commit_id

    # -- Listing and lifecycle ------------------------------------------------

    def list_active(self) -> list[Workflow]:
        """Running or paused workflows, most recently updated first."""
        placeholders = ",".join("?" * len(ACTIVE_STATUSES))
        rows = self.conn.execute(
            f"SELECT * FROM workflows WHERE status IN ({placeholders}) ORDER BY updated_at DESC, rowid DESC",
            ACTIVE_STATUSES,
        ).fetchall()
        return [self._build_workflow(r) for r in rows]

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and everything that references it. Idempotent."""
        try:
            cursor = self.conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cursor.rowcount > 0

    def cleanup_stale_workflows(self, threshold_hours: float | None = None) -> int:
        """Mark running workflows idle for longer than *threshold_hours* as failed.

        Each stale workflow is handled on its own; a failure is logged and the
        rest are still processed. Returns the number cleaned up.
        """
        hours = self.stale_threshold_hours if threshold_hours is None else threshold_hours
        cutoff = (datetime.now(UTC) - timedelta(hours=hours)).isoformat()
        stale = self.conn.execute(
            "SELECT id, issue_number, updated_at FROM workflows WHERE status = 'running' AND updated_at < ?",
            (cutoff,),
        ).fetchall()

        cleaned = 0
        for row in stale:
            workflow_id = row["id"]
            try:
                self.set_status(workflow_id, "failed")
                self.log_action(workflow_id, STALE_CLEANUP_ACTION, "failed", dict(stale_cleanup_payload(hours, row["updated_at"])))
            except Exception as exc:
                logger.warning(
                    "Failed to clean up stale workflow",
                    extra={"workflow_id": workflow_id, "context": "cleanup_stale_workflows", "error": str(exc)},
                )
                continue
            cleaned += 1
            logger.info(
                "Marked stale workflow %s (issue #%d) as failed",
                workflow_id,
                row["issue_number"],
                extra={"workflow_id": workflow_id, "context": "cleanup_stale_workflows"},
            )
        return cleaned

    # -- Milestone links ------------------------------------------------------

    def link_workflow_to_milestone(self, workflow_id: str, milestone_id: str, wave_number: int | None = None) -> None:
        """Attach a workflow to a milestone. Re-linking updates the wave number."""
        wave, err = validate_wave_number(wave_number)
        if err is not None:
            raise ValueError(err)
        try:
            self.conn.execute(
                "INSERT INTO milestone_workflows (milestone_id, workflow_id, wave_number) VALUES (?, ?, ?) "
                "ON CONFLICT(milestone_id, workflow_id) DO UPDATE SET wave_number = excluded.wave_number",
                (milestone_id, workflow_id, wave),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            if _is_fk_violation(exc):
                msg = (
                    f"Failed to link workflow to milestone: Either workflow {workflow_id!r} "
                    f"or milestone {milestone_id!r} does not exist. Create them first before linking."
                )
                raise ParentRecordError(msg) from exc
            raise
        except Exception:
            self.conn.rollback()
            raise

    def list_milestone_workflows(self, milestone_id: str) -> list[Workflow]:
        """Workflows linked to a milestone, by wave (NULL as 1) then creation."""
        rows = self.conn.execute(
            "SELECT w.* FROM workflows w JOIN milestone_workflows mw ON w.id = mw.workflow_id "
            "WHERE mw.milestone_id = ? ORDER BY COALESCE(mw.wave_number, 1) ASC, w.created_at ASC, w.rowid ASC",
            (milestone_id,),
        ).fetchall()
        return [self._build_workflow(r) for r in rows]
