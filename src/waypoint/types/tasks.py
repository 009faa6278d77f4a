"""TypedDicts for db_tasks.py return types."""

from __future__ import annotations

from typing import Any, TypedDict

from waypoint.types.core import ISOTimestamp, TaskStatus


class TaskSnapshotRecord(TypedDict):
    """Row from the task_snapshots table, metadata decoded."""

    id: int
    seq: int
    workflow_id: str
    phase: str
    task_id: str
    subject: str
    status: TaskStatus
    metadata: dict[str, Any] | None
    parent_task_id: str | None
    captured_at: ISOTimestamp


class TaskProgress(TypedDict):
    total: int
    completed: int
    in_progress: int
    pending: int
    percentage: int


class TaskTreeNode(TypedDict):
    task: TaskSnapshotRecord
    children: list[TaskTreeNode]
    progress: TaskProgress
