"""MetricsMixin — session context metrics, graph query usage, workflow duration, and task counts.

Auxiliary counters for evaluating how workflows run. Not used by recovery.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from waypoint.db_base import DBMixinProtocol, _now_iso
from waypoint.types.metrics import (
    ContextMetricsInput,
    ContextMetricsRecord,
    GraphQueryRecord,
    GraphQuerySummary,
    MetricsSummary,
    ReviewFindingsSummary,
    TaskMetrics,
)

if TYPE_CHECKING:
    from waypoint.core import CheckpointData

logger = logging.getLogger(__name__)

_CONTEXT_METRICS_LIMIT = 100
_GRAPH_QUERIES_LIMIT = 100


def _encode_review_findings(value: ReviewFindingsSummary | int) -> str:
    if isinstance(value, int):
        return str(value)
    return json.dumps(value)


def _decode_review_findings(raw: str | None) -> ReviewFindingsSummary | int:
    """Stored findings are either a plain count or a severity breakdown with ``total``."""
    if raw is None:
        return 0
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Unreadable review_findings value %r, counting as 0", raw, extra={"context": "review_findings"})
        return 0
    if isinstance(parsed, dict) and "total" in parsed:
        return parsed  # type: ignore[return-value]
    if isinstance(parsed, int | float) and not isinstance(parsed, bool):
        return int(parsed)
    return 0


def _findings_total(value: ReviewFindingsSummary | int) -> int:
    if isinstance(value, dict):
        return int(value.get("total", 0))
    return value


class MetricsMixin(DBMixinProtocol):
    """Context metrics and snapshot counts.

    Inherits ``DBMixinProtocol`` for type-safe access to ``self.conn``.
    """

    if TYPE_CHECKING:

        def find_by_issue(self, issue_number: int) -> CheckpointData | None: ...

    def calculate_workflow_duration(self, workflow_id: str) -> int | None:
        """Minutes between the first and last action of a workflow, or None without actions."""
        row = self.conn.execute(
            "SELECT MIN(created_at) AS start, MAX(created_at) AS end FROM actions WHERE workflow_id = ?",
            (workflow_id,),
        ).fetchone()
        if row is None or row["start"] is None or row["end"] is None:
            return None
        try:
            start = datetime.fromisoformat(row["start"])
            end = datetime.fromisoformat(row["end"])
        except ValueError:
            return None
        return round((end - start).total_seconds() / 60)

    def save_context_metrics(self, metrics: ContextMetricsInput) -> None:
        """Insert or replace the metrics row for ``metrics["session_id"]``.

        A missing duration is derived from the issue's workflow actions.
        """
        duration = metrics.get("duration_minutes")
        issue_number = metrics.get("issue_number")
        if duration is None and issue_number:
            checkpoint = self.find_by_issue(issue_number)
            if checkpoint is not None:
                duration = self.calculate_workflow_duration(checkpoint.workflow.id)

        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO context_metrics "
                "(session_id, issue_number, files_read, compacted, duration_minutes, review_findings, "
                "learnings_injected, learnings_captured, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    metrics["session_id"],
                    issue_number,
                    metrics["files_read"],
                    1 if metrics["compacted"] else 0,
                    duration,
                    _encode_review_findings(metrics["review_findings"]),
                    metrics["learnings_injected"],
                    metrics["learnings_captured"],
                    metrics.get("created_at") or _now_iso(),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_context_metrics(self, issue_number: int | None = None) -> list[ContextMetricsRecord]:
        """Most recent first, at most 100 rows."""
        if issue_number is None:
            rows = self.conn.execute(
                "SELECT * FROM context_metrics ORDER BY created_at DESC, id DESC LIMIT ?",
                (_CONTEXT_METRICS_LIMIT,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM context_metrics WHERE issue_number = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (issue_number, _CONTEXT_METRICS_LIMIT),
            ).fetchall()
        return [
            {
                "id": r["id"],
                "session_id": r["session_id"],
                "issue_number": r["issue_number"],
                "files_read": r["files_read"],
                "compacted": bool(r["compacted"]),
                "duration_minutes": r["duration_minutes"],
                "review_findings": _decode_review_findings(r["review_findings"]),
                "learnings_injected": r["learnings_injected"],
                "learnings_captured": r["learnings_captured"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    def get_metrics_summary(self) -> MetricsSummary:
        """Totals and one-decimal averages across every recorded session."""
        row = self.conn.execute(
            "SELECT COUNT(*) AS total_sessions, SUM(compacted) AS compacted_sessions, "
            "AVG(files_read) AS avg_files_read, AVG(learnings_injected) AS avg_learnings_injected, "
            "AVG(learnings_captured) AS avg_learnings_captured FROM context_metrics"
        ).fetchone()
        if row["total_sessions"] == 0:
            return {
                "total_sessions": 0,
                "compacted_sessions": 0,
                "avg_files_read": 0.0,
                "avg_learnings_injected": 0.0,
                "avg_learnings_captured": 0.0,
                "total_review_findings": 0,
            }
        total_findings = sum(
            _findings_total(_decode_review_findings(r["review_findings"]))
            for r in self.conn.execute("SELECT review_findings FROM context_metrics")
        )
        return {
            "total_sessions": row["total_sessions"],
            "compacted_sessions": row["compacted_sessions"] or 0,
            "avg_files_read": round(row["avg_files_read"] or 0, 1),
            "avg_learnings_injected": round(row["avg_learnings_injected"] or 0, 1),
            "avg_learnings_captured": round(row["avg_learnings_captured"] or 0, 1),
            "total_review_findings": total_findings,
        }

    def get_task_metrics(self, workflow_id: str | None = None) -> TaskMetrics:
        """Count tasks by the status and phase of their latest snapshot."""
        sql = "SELECT status, phase FROM task_snapshots WHERE seq IN (SELECT MAX(seq) FROM task_snapshots GROUP BY task_id)"
        params: tuple[str, ...] = ()
        if workflow_id is not None:
            sql += " AND workflow_id = ?"
            params = (workflow_id,)
        by_status: dict[str, int] = {}
        by_phase: dict[str, int] = {}
        total = 0
        for r in self.conn.execute(sql, params):
            total += 1
            by_status[r["status"]] = by_status.get(r["status"], 0) + 1
            by_phase[r["phase"]] = by_phase.get(r["phase"], 0) + 1
        return {"total_tasks": total, "by_status": by_status, "by_phase": by_phase}

    # -- Graph queries --------------------------------------------------------

    def log_graph_query(
        self,
        session_id: str,
        query_type: str,
        *,
        query_params: str = "",
        result_count: int = 0,
        duration_ms: int = 0,
        workflow_id: str | None = None,
    ) -> int:
        """Record one graph query and return its row id.

        *query_params* is stored verbatim; callers serialize it themselves.
        """
        try:
            cursor = self.conn.execute(
                "INSERT INTO graph_queries "
                "(session_id, workflow_id, query_type, query_params, result_count, duration_ms, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session_id, workflow_id, query_type, query_params, result_count, duration_ms, _now_iso()),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        row_id: int = cursor.lastrowid  # type: ignore[assignment]
        return row_id

    def get_graph_queries(
        self,
        *,
        session_id: str | None = None,
        workflow_id: str | None = None,
        query_type: str | None = None,
    ) -> list[GraphQueryRecord]:
        """Most recent first, at most 100 rows. Filters combine with AND."""
        conditions: list[str] = []
        params: list[str | int] = []
        if session_id is not None:
            conditions.append("session_id = ?")
            params.append(session_id)
        if workflow_id is not None:
            conditions.append("workflow_id = ?")
            params.append(workflow_id)
        if query_type is not None:
            conditions.append("query_type = ?")
            params.append(query_type)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(_GRAPH_QUERIES_LIMIT)
        rows = self.conn.execute(
            f"SELECT * FROM graph_queries{where} ORDER BY created_at DESC, id DESC LIMIT ?",
            params,
        ).fetchall()
        return [
            {
                "id": r["id"],
                "session_id": r["session_id"],
                "workflow_id": r["workflow_id"],
                "query_type": r["query_type"],
                "query_params": r["query_params"],
                "result_count": r["result_count"],
                "duration_ms": r["duration_ms"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    def get_graph_query_summary(self) -> GraphQuerySummary:
        """Query count per type plus one-decimal averages of result count and duration."""
        row = self.conn.execute(
            "SELECT COUNT(*) AS total, AVG(result_count) AS avg_results, AVG(duration_ms) AS avg_duration "
            "FROM graph_queries"
        ).fetchone()
        by_type = {
            r["query_type"]: r["count"]
            for r in self.conn.execute(
                "SELECT query_type, COUNT(*) AS count FROM graph_queries "
                "GROUP BY query_type ORDER BY count DESC, query_type"
            )
        }
        return {
            "total_queries": row["total"],
            "queries_by_type": by_type,
            "avg_result_count": round(row["avg_results"] or 0, 1),
            "avg_duration_ms": round(row["avg_duration"] or 0, 1),
        }
