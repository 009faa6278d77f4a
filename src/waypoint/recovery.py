"""Task recovery — rebuild a checklist from checkpoint state after a restart.

Each workflow archetype is described by one declarative step table. The
template (subjects, descriptions) and the status rules both read from it.

- **gated**: four review gates plus a finalize step. Progress comes from
  ``gate-<n>`` markers in the action log, because the ``research`` phase
  spans gates 1 and 2.
- **phased**: setup, research, implement, review, finalize. Progress comes
  from the workflow's ``phase`` field.
- **milestone**: one task per linked workflow, grouped into waves. Each wave
  N is blocked by every task of wave N-1, when wave N-1 has tasks.

The projection functions are pure. ``RecoveryMixin`` only loads state and
never writes.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from waypoint.db_base import ARCHETYPES, DBMixinProtocol
from waypoint.types.recovery import IssueRecoveryPlan, MilestoneRecoveryPlan, RecoveredTask
from waypoint.validation import require_choice

if TYPE_CHECKING:
    from waypoint.core import CheckpointData, MilestoneCheckpoint
    from waypoint.types.core import TaskStatus
    from waypoint.types.records import ActionRecord

_GATE_MARKER = re.compile(r"gate-(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class StepDefinition:
    index: int
    phase: str
    subject: str
    description: str
    active_form: str
    gate: int | None = None

    def render(self, issue_number: int) -> tuple[str, str]:
        """Return (subject, active_form) for *issue_number*."""
        return self.subject.format(n=issue_number), self.active_form.format(n=issue_number)


GATED_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(
        0,
        "research",
        "Gate 1: Review Issue #{n}",
        "Review issue details, check blockers, validate requirements",
        "Reviewing issue #{n}",
        gate=1,
    ),
    StepDefinition(
        1,
        "research",
        "Gate 2: Review Plan for #{n}",
        "Review development plan, approve implementation approach",
        "Reviewing plan",
        gate=2,
    ),
    StepDefinition(2, "implement", "Gate 3: Implement #{n}", "Implement changes per plan, review each commit", "Implementing changes", gate=3),
    StepDefinition(3, "review", "Gate 4: Pre-PR Review for #{n}", "Run review agents, address critical findings", "Running reviews", gate=4),
    StepDefinition(4, "finalize", "Finalize: Create PR for #{n}", "Push branch, create PR, update board", "Finalizing PR"),
)

PHASED_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(0, "research", "Setup: Initialize #{n}", "Create branch, checkpoint, update board", "Setting up issue #{n}"),
    StepDefinition(1, "research", "Research: Analyze #{n}", "Analyze codebase, create development plan", "Researching issue #{n}"),
    StepDefinition(2, "implement", "Implement: Build #{n}", "Implement changes with atomic commits", "Implementing issue #{n}"),
    StepDefinition(3, "review", "Review: Validate #{n}", "Run review agents, auto-fix critical findings", "Reviewing issue #{n}"),
    StepDefinition(4, "finalize", "Finalize: Create PR for #{n}", "Push branch, create PR, update board", "Finalizing issue #{n}"),
)

# Setup (index 0) completes before any phase starts.
_PHASED_CURRENT_INDEX = {"research": 1, "implement": 2, "review": 3, "finalize": 4}


# ---------------------------------------------------------------------------
# Status rules
# ---------------------------------------------------------------------------


def last_completed_gate(actions: Iterable[ActionRecord]) -> int:
    """Highest zero-based gate index with a successful ``gate-<n>`` marker, or -1."""
    last = -1
    for action in actions:
        if action["result"] != "success":
            continue
        match = _GATE_MARKER.search(action["action"])
        if match:
            last = max(last, int(match.group(1)) - 1)
    return last


def has_gate_markers(actions: Iterable[ActionRecord]) -> bool:
    return any("gate-" in a["action"] or "Gate" in a["action"] or a["action"] == "gate_passage" for a in actions)


def gated_step_status(workflow_status: str, index: int, last_gate: int) -> tuple[TaskStatus, bool]:
    """Return (status, failed) for gate *index*."""
    if workflow_status == "completed" or index <= last_gate:
        return "completed", False
    if index == last_gate + 1:
        if workflow_status == "failed":
            return "completed", True
        return "in_progress", False
    return "pending", False


def phased_step_status(workflow_phase: str, workflow_status: str, index: int) -> tuple[TaskStatus, bool]:
    """Return (status, failed) for phase step *index*."""
    if workflow_status == "completed" or index == 0:
        return "completed", False
    current = _PHASED_CURRENT_INDEX.get(workflow_phase, 1)
    if index < current:
        return "completed", False
    if index == current:
        if workflow_status == "failed":
            return "completed", True
        return "in_progress", False
    return "pending", False


def milestone_task_status(workflow_status: str) -> TaskStatus:
    if workflow_status in ("completed", "failed"):
        return "completed"
    if workflow_status in ("running", "paused"):
        return "in_progress"
    return "pending"


def select_archetype(checkpoint: CheckpointData, archetype: str | None = None) -> str:
    """Explicit argument, then the stored column, then inference from the action log."""
    if archetype is not None:
        return require_choice(archetype, ARCHETYPES, "archetype")
    if checkpoint.workflow.archetype is not None:
        return checkpoint.workflow.archetype
    return "gated" if has_gate_markers(checkpoint.actions) else "phased"


# ---------------------------------------------------------------------------
# Plan builders
# ---------------------------------------------------------------------------


def _issue_plan(checkpoint: CheckpointData, workflow_type: str, steps: Sequence[StepDefinition], noun: str) -> IssueRecoveryPlan:
    wf = checkpoint.workflow
    n = wf.issue_number
    last_gate = last_completed_gate(checkpoint.actions) if workflow_type == "gated" else -1

    tasks: list[RecoveredTask] = []
    for step in steps:
        if workflow_type == "gated":
            status, failed = gated_step_status(wf.status, step.index, last_gate)
        else:
            status, failed = phased_step_status(wf.phase, wf.status, step.index)
        metadata: dict[str, Any] = {"issue_number": n, "workflow_id": wf.id, "phase": step.phase}
        if step.gate is not None:
            metadata["gate"] = step.gate
        if failed:
            metadata["failed"] = True
        subject, active_form = step.render(n)
        tasks.append(
            {
                "subject": subject,
                "description": step.description,
                "active_form": active_form,
                "status": status,
                "blocked_by_indices": [step.index - 1] if step.index > 0 else [],
                "metadata": metadata,
            }
        )

    completed = sum(1 for t in tasks if t["status"] == "completed")
    summary = f"Recovering {workflow_type} workflow for #{n}: {completed}/{len(tasks)} {noun} completed"
    current = next((t for t in tasks if t["status"] == "in_progress"), None)
    if current is not None:
        summary += f", currently at: {current['subject']}"

    return {
        "workflow_type": workflow_type,  # type: ignore[typeddict-item]
        "issue_number": n,
        "workflow_id": wf.id,
        "current_phase": wf.phase,
        "current_status": wf.status,
        "tasks": tasks,
        "summary": summary,
    }


def recover_gated_tasks(checkpoint: CheckpointData) -> IssueRecoveryPlan:
    return _issue_plan(checkpoint, "gated", GATED_STEPS, "gates")


def recover_phased_tasks(checkpoint: CheckpointData) -> IssueRecoveryPlan:
    return _issue_plan(checkpoint, "phased", PHASED_STEPS, "phases")


def recover_milestone_tasks(checkpoint: MilestoneCheckpoint) -> MilestoneRecoveryPlan:
    """One task per linked workflow, in wave order.

    Every task in wave N is blocked by all tasks of wave N-1. A wave whose
    predecessor number has no tasks is unblocked. Waves are not chained
    transitively.
    """
    ms = checkpoint.milestone
    groups: dict[int, list[Any]] = {}
    for wf in checkpoint.workflows:
        groups.setdefault(checkpoint.waves.get(wf.id, 1), []).append(wf)

    tasks: list[RecoveredTask] = []
    indices_by_wave: dict[int, list[int]] = {}
    for wave in sorted(groups):
        wave_indices: list[int] = []
        for wf in groups[wave]:
            metadata: dict[str, Any] = {
                "issue_number": wf.issue_number,
                "workflow_id": wf.id,
                "wave_number": wave,
                "milestone_id": ms.id,
                "milestone_name": ms.name,
            }
            if wf.status == "failed":
                metadata["failed"] = True
            wave_indices.append(len(tasks))
            tasks.append(
                {
                    "subject": f"Issue #{wf.issue_number}: Wave {wave}",
                    "description": f"Branch: {wf.branch}",
                    "active_form": f"Working on issue #{wf.issue_number}",
                    "status": milestone_task_status(wf.status),
                    "blocked_by_indices": list(indices_by_wave.get(wave - 1, [])),
                    "metadata": metadata,
                }
            )
        indices_by_wave[wave] = wave_indices

    completed = sum(1 for t in tasks if t["status"] == "completed")
    in_progress = sum(1 for t in tasks if t["status"] == "in_progress")
    return {
        "workflow_type": "milestone",
        "milestone_name": ms.name,
        "workflow_id": ms.id,
        "current_phase": ms.phase,
        "current_status": ms.status,
        "tasks": tasks,
        "summary": f'Recovering milestone "{ms.name}": {completed}/{len(tasks)} issues completed, {in_progress} in progress',
    }


class RecoveryMixin(DBMixinProtocol):
    """Read-only recovery entry points composed into ``WaypointDB``."""

    if TYPE_CHECKING:

        def find_by_issue(self, issue_number: int) -> CheckpointData | None: ...

        def find_milestone_by_name(self, name: str) -> MilestoneCheckpoint | None: ...

    def recover_tasks_by_issue(self, issue_number: int, archetype: str | None = None) -> IssueRecoveryPlan | None:
        """Rebuild the checklist for the latest workflow of *issue_number*, or None."""
        checkpoint = self.find_by_issue(issue_number)
        if checkpoint is None:
            return None
        if select_archetype(checkpoint, archetype) == "gated":
            return recover_gated_tasks(checkpoint)
        return recover_phased_tasks(checkpoint)

    def recover_tasks_by_milestone(self, name: str) -> MilestoneRecoveryPlan | None:
        """Rebuild the wave checklist for the latest milestone called *name*, or None."""
        checkpoint = self.find_milestone_by_name(name)
        if checkpoint is None:
            return None
        return recover_milestone_tasks(checkpoint)
