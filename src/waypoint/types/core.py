"""Foundational Literal aliases and TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import Literal, NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)

IssuePhase = Literal["research", "implement", "review", "finalize"]
MilestonePhase = Literal["planning", "execute", "review", "merge", "cleanup"]
WorkflowPhase = Literal["research", "implement", "review", "finalize", "planning", "execute", "merge", "cleanup"]
WorkflowStatus = Literal["running", "paused", "completed", "failed"]
ActionResult = Literal["success", "failed", "pending"]
TaskStatus = Literal["pending", "in_progress", "completed"]
Archetype = Literal["gated", "phased"]


class ProjectConfig(TypedDict, total=False):
    """Shape of .waypoint/config.json."""

    version: int
    stale_threshold_hours: int
    strict_metadata: bool


class WorkflowDict(TypedDict):
    id: str
    issue_number: int
    branch: str
    worktree: str | None
    phase: WorkflowPhase
    status: WorkflowStatus
    retry_count: int
    archetype: Archetype | None
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class MilestoneDict(TypedDict):
    id: str
    name: str
    github_milestone_number: int | None
    phase: MilestonePhase
    status: WorkflowStatus
    created_at: ISOTimestamp
    updated_at: ISOTimestamp
