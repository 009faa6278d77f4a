"""TypedDicts for rows read back from the append-only logs and baselines."""

from __future__ import annotations

from typing import Any, TypedDict

from waypoint.types.core import ActionResult, ISOTimestamp, MilestoneDict, WorkflowDict


class ActionRecord(TypedDict):
    """Row from the actions table, metadata decoded."""

    id: int
    workflow_id: str
    action: str
    result: ActionResult
    metadata: dict[str, Any] | None
    created_at: ISOTimestamp


class CommitRecord(TypedDict):
    id: int
    workflow_id: str
    sha: str
    message: str
    created_at: ISOTimestamp


class BaselineInput(TypedDict, total=False):
    """Caller-supplied baseline values for ``save_baseline()``.

    ``captured_at`` defaults to the current time when omitted.
    """

    captured_at: str
    lint_exit_code: int
    lint_warnings: int
    lint_errors: int
    typecheck_exit_code: int
    typecheck_errors: int


class BaselineRecord(TypedDict):
    id: int
    milestone_id: str
    captured_at: ISOTimestamp
    lint_exit_code: int
    lint_warnings: int
    lint_errors: int
    typecheck_exit_code: int
    typecheck_errors: int


class CheckpointDict(TypedDict):
    """Serialized form of ``CheckpointData``."""

    workflow: WorkflowDict
    actions: list[ActionRecord]
    commits: list[CommitRecord]


class MilestoneCheckpointDict(TypedDict):
    """Serialized form of ``MilestoneCheckpoint``."""

    milestone: MilestoneDict
    baseline: BaselineRecord | None
    workflows: list[WorkflowDict]
    waves: dict[str, int]
