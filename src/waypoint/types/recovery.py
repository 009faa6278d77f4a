"""TypedDicts for task recovery plans produced by ``waypoint.recovery``."""

from __future__ import annotations

from typing import Any, Literal, TypedDict

from waypoint.types.core import TaskStatus

PlanType = Literal["gated", "phased", "milestone"]


class RecoveredTask(TypedDict):
    """One checklist entry. Ingested 1:1 by a task-list renderer."""

    subject: str
    description: str
    active_form: str
    status: TaskStatus
    blocked_by_indices: list[int]
    metadata: dict[str, Any]


class _PlanBase(TypedDict):
    workflow_type: PlanType
    workflow_id: str
    current_phase: str
    current_status: str
    tasks: list[RecoveredTask]
    summary: str


class IssueRecoveryPlan(_PlanBase):
    issue_number: int


class MilestoneRecoveryPlan(_PlanBase):
    milestone_name: str


TaskRecoveryPlan = IssueRecoveryPlan | MilestoneRecoveryPlan
