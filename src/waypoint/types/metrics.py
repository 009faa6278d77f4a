"""TypedDicts for db_metrics.py inputs and return types."""

from __future__ import annotations

from typing import NotRequired, TypedDict

from waypoint.types.core import ISOTimestamp


class ReviewFindingsSummary(TypedDict):
    """Review findings broken down by severity."""

    critical: int
    high: int
    medium: int
    low: int
    total: int


class ContextMetricsInput(TypedDict):
    """Caller-supplied values for ``save_context_metrics()``."""

    session_id: str
    files_read: int
    compacted: bool
    review_findings: ReviewFindingsSummary | int
    learnings_injected: int
    learnings_captured: int
    issue_number: NotRequired[int | None]
    duration_minutes: NotRequired[int | None]
    created_at: NotRequired[str]


class ContextMetricsRecord(TypedDict):
    id: int
    session_id: str
    issue_number: int | None
    files_read: int
    compacted: bool
    duration_minutes: int | None
    review_findings: ReviewFindingsSummary | int
    learnings_injected: int
    learnings_captured: int
    created_at: ISOTimestamp


class MetricsSummary(TypedDict):
    total_sessions: int
    compacted_sessions: int
    avg_files_read: float
    avg_learnings_injected: float
    avg_learnings_captured: float
    total_review_findings: int


class TaskMetrics(TypedDict):
    """Counts over the latest snapshot of every task."""

    total_tasks: int
    by_status: dict[str, int]
    by_phase: dict[str, int]


class GraphQueryRecord(TypedDict):
    id: int
    session_id: str
    workflow_id: str | None
    query_type: str
    query_params: str
    result_count: int
    duration_ms: int
    created_at: ISOTimestamp


class GraphQuerySummary(TypedDict):
    """Usage totals across every recorded graph query."""

    total_queries: int
    queries_by_type: dict[str, int]
    avg_result_count: float
    avg_duration_ms: float
