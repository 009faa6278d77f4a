# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, or any mixin — this prevents circular imports.
"""Typed return-value contracts for the waypoint store and recovery engine."""

from __future__ import annotations

from waypoint.types.core import (
    ActionResult,
    Archetype,
    ISOTimestamp,
    IssuePhase,
    MilestoneDict,
    MilestonePhase,
    ProjectConfig,
    TaskStatus,
    WorkflowDict,
    WorkflowPhase,
    WorkflowStatus,
)
from waypoint.types.recovery import RecoveredTask, TaskRecoveryPlan
from waypoint.types.tasks import TaskProgress, TaskSnapshotRecord, TaskTreeNode

__all__ = [
    "ActionResult",
    "Archetype",
    "ISOTimestamp",
    "IssuePhase",
    "MilestoneDict",
    "MilestonePhase",
    "ProjectConfig",
    "RecoveredTask",
    "TaskProgress",
    "TaskRecoveryPlan",
    "TaskSnapshotRecord",
    "TaskStatus",
    "TaskTreeNode",
    "WorkflowDict",
    "WorkflowPhase",
    "WorkflowStatus",
]
