"""TaskSnapshotsMixin — task snapshot log and recursive progress aggregation.

Snapshots are append-only. The authoritative state of a task is its snapshot
with the highest ``seq``; ``parent_task_id`` on that snapshot places the task
in the tree. Parent links are not validated, so every walk carries a visited
set and terminates on cycles and self-references.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from waypoint.db_base import TASK_STATUSES, DBMixinProtocol, ParentRecordError, _is_fk_violation, _now_iso
from waypoint.payloads import decode_metadata, encode_metadata
from waypoint.types.tasks import TaskProgress, TaskSnapshotRecord, TaskTreeNode
from waypoint.validation import require_choice

logger = logging.getLogger(__name__)

_LATEST_PER_TASK = "seq IN (SELECT MAX(seq) FROM task_snapshots GROUP BY task_id)"


def _percentage(completed: int, total: int) -> int:
    """completed/total as a whole percentage, rounded half up."""
    if total == 0:
        return 0
    return (completed * 200 + total) // (2 * total)


def _progress(total: int, completed: int, in_progress: int, pending: int) -> TaskProgress:
    return {
        "total": total,
        "completed": completed,
        "in_progress": in_progress,
        "pending": pending,
        "percentage": _percentage(completed, total),
    }


def _leaf_progress(status: str) -> TaskProgress:
    return _progress(1, int(status == "completed"), int(status == "in_progress"), int(status == "pending"))


def _sum_progress(parts: list[TaskProgress]) -> TaskProgress:
    return _progress(
        sum(p["total"] for p in parts),
        sum(p["completed"] for p in parts),
        sum(p["in_progress"] for p in parts),
        sum(p["pending"] for p in parts),
    )


def _build_snapshot(row: sqlite3.Row) -> TaskSnapshotRecord:
    return {
        "id": row["id"],
        "seq": row["seq"],
        "workflow_id": row["workflow_id"],
        "phase": row["phase"],
        "task_id": row["task_id"],
        "subject": row["subject"],
        "status": row["status"],
        "metadata": decode_metadata(row["metadata"], f"task {row['task_id']} (seq {row['seq']})"),
        "parent_task_id": row["parent_task_id"],
        "captured_at": row["captured_at"],
    }


class TaskSnapshotsMixin(DBMixinProtocol):
    """Task snapshot writes, latest-state reads and progress rollups.

    Inherits ``DBMixinProtocol`` for type-safe access to ``self.conn``.
    """

    def log_task_snapshot(
        self,
        workflow_id: str,
        phase: str,
        task_id: str,
        subject: str,
        status: str,
        metadata: dict[str, Any] | None = None,
        parent_task_id: str | None = None,
    ) -> int:
        """Append a snapshot and return its sequence number."""
        require_choice(status, TASK_STATUSES, "task status")
        encoded = encode_metadata("task_snapshot", metadata, strict=self.strict_metadata)
        try:
            row = self.conn.execute(
                "INSERT INTO task_snapshots "
                "(seq, workflow_id, phase, task_id, subject, status, metadata, parent_task_id, captured_at) "
                "SELECT COALESCE(MAX(seq), 0) + 1, ?, ?, ?, ?, ?, ?, ?, ? FROM task_snapshots "
                "RETURNING seq",
                (workflow_id, phase, task_id, subject, status, encoded, parent_task_id, _now_iso()),
            ).fetchone()
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            if _is_fk_violation(exc):
                msg = f"Failed to log task snapshot: No workflow found with ID {workflow_id!r}. Create the workflow first."
                raise ParentRecordError(msg) from exc
            raise
        except Exception:
            self.conn.rollback()
            raise
        return int(row["seq"])

    def get_task_snapshots(self, workflow_id: str) -> list[TaskSnapshotRecord]:
        """Every snapshot recorded for a workflow, in insertion order."""
        rows = self.conn.execute("SELECT * FROM task_snapshots WHERE workflow_id = ? ORDER BY seq", (workflow_id,)).fetchall()
        return [_build_snapshot(r) for r in rows]

    def get_latest_snapshot(self, task_id: str) -> TaskSnapshotRecord | None:
        row = self.conn.execute("SELECT * FROM task_snapshots WHERE task_id = ? ORDER BY seq DESC LIMIT 1", (task_id,)).fetchone()
        return _build_snapshot(row) if row is not None else None

    def _latest_snapshots(self, workflow_id: str | None = None) -> list[TaskSnapshotRecord]:
        if workflow_id is None:
            rows = self.conn.execute(f"SELECT * FROM task_snapshots WHERE {_LATEST_PER_TASK} ORDER BY seq").fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT * FROM task_snapshots WHERE {_LATEST_PER_TASK} AND workflow_id = ? ORDER BY seq",
                (workflow_id,),
            ).fetchall()
        return [_build_snapshot(r) for r in rows]

    def get_child_tasks(self, parent_task_id: str) -> list[TaskSnapshotRecord]:
        """Tasks whose latest snapshot names *parent_task_id* as parent."""
        rows = self.conn.execute(
            f"SELECT * FROM task_snapshots WHERE {_LATEST_PER_TASK} AND parent_task_id = ? ORDER BY seq",
            (parent_task_id,),
        ).fetchall()
        return [_build_snapshot(r) for r in rows]

    def get_task_progress(self, task_id: str, visited: set[str] | None = None) -> TaskProgress:
        """Roll up completion for *task_id* and its descendants.

        A leaf counts its own latest status. A task with children counts only
        its children. A task already visited contributes nothing, so a cycle
        in the parent links terminates with a zero total. An unknown task
        yields all zeros.
        """
        if visited is None:
            visited = set()
        if task_id in visited:
            return _progress(0, 0, 0, 0)
        visited.add(task_id)

        children = self.get_child_tasks(task_id)
        if children:
            return _sum_progress([self.get_task_progress(c["task_id"], visited) for c in children])

        latest = self.get_latest_snapshot(task_id)
        if latest is None:
            return _progress(0, 0, 0, 0)
        return _leaf_progress(latest["status"])

    def get_task_tree(self, workflow_id: str | None = None) -> list[TaskTreeNode]:
        """Assemble every root task (no parent) with its subtree and progress.

        Latest snapshots are loaded once; the tree is built in memory.
        """
        latest = self._latest_snapshots(workflow_id)
        children_of: dict[str, list[TaskSnapshotRecord]] = {}
        for snap in latest:
            if snap["parent_task_id"] is not None:
                children_of.setdefault(snap["parent_task_id"], []).append(snap)

        visited: set[str] = set()

        def build(snap: TaskSnapshotRecord) -> TaskTreeNode:
            visited.add(snap["task_id"])
            children = children_of.get(snap["task_id"], [])
            subtree = [build(child) for child in children if child["task_id"] not in visited]
            progress = _sum_progress([node["progress"] for node in subtree]) if children else _leaf_progress(snap["status"])
            return {"task": snap, "children": subtree, "progress": progress}

        return [build(snap) for snap in latest if snap["parent_task_id"] is None]
