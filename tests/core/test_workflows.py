"""Tests for the workflow store — CRUD, transitions, action/commit logs, links, stale cleanup."""

from __future__ import annotations

import logging
import time

import pytest

from tests._db_factory import set_updated_at
from waypoint.core import CheckpointData, Milestone, WaypointDB, Workflow
from waypoint.db_base import ParentRecordError, WaypointError, WorkflowNotFoundError


def _action_count(db: WaypointDB) -> int:
    return db.conn.execute("SELECT COUNT(*) FROM actions").fetchone()[0]


class TestCreateAndLoad:
    def test_create_defaults(self, db: WaypointDB) -> None:
        wf = db.create_workflow(101, "feat/101")
        assert wf.id.startswith("workflow-101-")
        assert len(wf.id) == len("workflow-101-") + 10
        assert wf.phase == "research"
        assert wf.status == "running"
        assert wf.retry_count == 0
        assert wf.worktree is None
        assert wf.archetype is None
        assert wf.created_at == wf.updated_at

    def test_create_with_archetype(self, db: WaypointDB) -> None:
        wf = db.create_workflow(5, "b", archetype="phased")
        loaded = db.load_workflow(wf.id)
        assert loaded is not None
        assert loaded.workflow.archetype == "phased"

    def test_create_rejects_unknown_archetype(self, db: WaypointDB) -> None:
        with pytest.raises(ValueError, match="archetype"):
            db.create_workflow(5, "b", archetype="linear")

    def test_load_round_trip(self, db: WaypointDB, workflow: Workflow) -> None:
        loaded = db.load_workflow(workflow.id)
        assert isinstance(loaded, CheckpointData)
        assert loaded.workflow == workflow
        assert loaded.actions == []
        assert loaded.commits == []

    def test_load_missing_returns_none(self, db: WaypointDB) -> None:
        assert db.load_workflow("workflow-1-nope") is None

    def test_find_by_issue_returns_most_recent(self, db: WaypointDB) -> None:
        db.create_workflow(7, "first")
        second = db.create_workflow(7, "second")
        found = db.find_by_issue(7)
        assert found is not None
        assert found.workflow.id == second.id

    def test_find_by_issue_missing(self, db: WaypointDB) -> None:
        assert db.find_by_issue(999) is None

    def test_to_dict(self, workflow: Workflow) -> None:
        d = workflow.to_dict()
        assert d["issue_number"] == 42
        assert d["worktree"] == "/tmp/wt-42"
        assert set(d) == {
            "id",
            "issue_number",
            "branch",
            "worktree",
            "phase",
            "status",
            "retry_count",
            "archetype",
            "created_at",
            "updated_at",
        }


class TestSave:
    def test_save_overwrites_mutable_fields(self, db: WaypointDB, workflow: Workflow) -> None:
        before = workflow.updated_at
        time.sleep(0.001)
        workflow.phase = "implement"
        workflow.status = "paused"
        workflow.retry_count = 3
        workflow.worktree = None
        workflow.archetype = "gated"
        db.save_workflow(workflow)
        assert workflow.updated_at > before

        loaded = db.load_workflow(workflow.id)
        assert loaded is not None
        assert loaded.workflow == workflow

    def test_save_unknown_id_raises(self, db: WaypointDB) -> None:
        ghost = Workflow(id="workflow-1-ghost", issue_number=1, branch="b")
        with pytest.raises(WorkflowNotFoundError, match="save workflow"):
            db.save_workflow(ghost)

    def test_save_rejects_invalid_status(self, db: WaypointDB, workflow: Workflow) -> None:
        workflow.status = "done"
        with pytest.raises(ValueError, match="status"):
            db.save_workflow(workflow)


class TestTransitions:
    def test_set_phase(self, db: WaypointDB, workflow: Workflow) -> None:
        db.set_phase(workflow.id, "review")
        loaded = db.load_workflow(workflow.id)
        assert loaded is not None
        assert loaded.workflow.phase == "review"

    def test_set_phase_accepts_milestone_phases(self, db: WaypointDB, workflow: Workflow) -> None:
        db.set_phase(workflow.id, "merge")
        assert db.get_workflow(workflow.id).phase == "merge"  # type: ignore[union-attr]

    def test_set_status(self, db: WaypointDB, workflow: Workflow) -> None:
        db.set_status(workflow.id, "completed")
        assert db.get_workflow(workflow.id).status == "completed"  # type: ignore[union-attr]

    @pytest.mark.parametrize("method", ["set_phase", "set_status"])
    def test_unknown_id_raises(self, db: WaypointDB, method: str) -> None:
        value = "review" if method == "set_phase" else "paused"
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            getattr(db, method)("workflow-0-missing", value)
        assert "No workflow found with ID 'workflow-0-missing'" in str(exc_info.value)

    def test_not_found_is_a_key_error(self, db: WaypointDB) -> None:
        with pytest.raises(KeyError):
            db.set_status("missing", "failed")
        with pytest.raises(WaypointError):
            db.set_status("missing", "failed")

    def test_invalid_values_rejected(self, db: WaypointDB, workflow: Workflow) -> None:
        with pytest.raises(ValueError, match="Invalid phase"):
            db.set_phase(workflow.id, "deploy")
        with pytest.raises(ValueError, match="Invalid status"):
            db.set_status(workflow.id, "cancelled")
        assert db.get_workflow(workflow.id).phase == "research"  # type: ignore[union-attr]

    def test_increment_retry(self, db: WaypointDB, workflow: Workflow) -> None:
        assert db.increment_retry(workflow.id) == 1
        assert db.increment_retry(workflow.id) == 2
        assert db.get_workflow(workflow.id).retry_count == 2  # type: ignore[union-attr]

    def test_increment_retry_unknown(self, db: WaypointDB) -> None:
        with pytest.raises(WorkflowNotFoundError, match="increment retry"):
            db.increment_retry("workflow-0-missing")


class TestActionLog:
    def test_log_action_returns_id_and_preserves_order(self, db: WaypointDB, workflow: Workflow) -> None:
        first = db.log_action(workflow.id, "gate-1-issue-reviewed", "success")
        second = db.log_action(workflow.id, "gate-2-plan-approved", "pending", {"reviewer": "bot"})
        assert second > first

        actions = db.load_workflow(workflow.id).actions  # type: ignore[union-attr]
        assert [a["action"] for a in actions] == ["gate-1-issue-reviewed", "gate-2-plan-approved"]
        assert actions[0]["metadata"] is None
        assert actions[1]["metadata"] == {"reviewer": "bot"}
        assert actions[1]["result"] == "pending"

    def test_same_timestamp_ordered_by_id(self, db: WaypointDB, workflow: Workflow) -> None:
        ts = "2026-01-01T00:00:00+00:00"
        db.conn.executemany(
            "INSERT INTO actions (workflow_id, action, result, created_at) VALUES (?, ?, 'success', ?)",
            [(workflow.id, "b", ts), (workflow.id, "a", ts)],
        )
        db.conn.commit()
        assert [a["action"] for a in db.get_actions(workflow.id)] == ["b", "a"]

    def test_log_action_missing_workflow_inserts_nothing(self, db: WaypointDB) -> None:
        with pytest.raises(ParentRecordError, match="Create the workflow first"):
            db.log_action("workflow-0-missing", "gate-1", "success")
        assert _action_count(db) == 0

    def test_log_action_rejects_invalid_result(self, db: WaypointDB, workflow: Workflow) -> None:
        with pytest.raises(ValueError, match="result"):
            db.log_action(workflow.id, "x", "ok")

    def test_log_action_does_not_touch_updated_at(self, db: WaypointDB, workflow: Workflow) -> None:
        db.log_action(workflow.id, "x", "success")
        assert db.get_workflow(workflow.id).updated_at == workflow.updated_at  # type: ignore[union-attr]

    def test_corrupt_stored_metadata_reads_as_none(self, db: WaypointDB, workflow: Workflow, caplog: pytest.LogCaptureFixture) -> None:
        db.conn.execute(
            "INSERT INTO actions (workflow_id, action, result, metadata, created_at) VALUES (?, 'x', 'success', '{broken', ?)",
            (workflow.id, workflow.created_at),
        )
        db.conn.commit()
        with caplog.at_level(logging.WARNING, logger="waypoint"):
            actions = db.get_actions(workflow.id)
        assert actions[0]["metadata"] is None
        assert "Failed to parse metadata" in caplog.text


class TestLogActionSafe:
    def test_success(self, db: WaypointDB, workflow: Workflow) -> None:
        assert db.log_action_safe(workflow.id, "gate-1", "success") is True
        assert _action_count(db) == 1

    def test_records_failure_entry(self, db: WaypointDB, workflow: Workflow, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="waypoint"):
            ok = db.log_action_safe(workflow.id, "review", "success", {"bad": {1, 2}})
        assert ok is False
        assert "Failed to log action" in caplog.text

        actions = db.get_actions(workflow.id)
        assert len(actions) == 1
        entry = actions[0]
        assert entry["action"] == "review_failed"
        assert entry["result"] == "failed"
        assert entry["metadata"] is not None
        assert entry["metadata"]["original_action"] == "review"
        assert entry["metadata"]["original_result"] == "success"
        assert entry["metadata"]["original_metadata"] == "[omitted: potentially unserializable]"
        assert "JSON" in entry["metadata"]["error"]

    def test_original_metadata_null_when_absent(self, db: WaypointDB, workflow: Workflow) -> None:
        assert db.log_action_safe(workflow.id, "x", "bogus") is False
        entry = db.get_actions(workflow.id)[0]
        assert entry["metadata"]["original_metadata"] is None  # type: ignore[index]

    def test_double_failure_never_raises(self, db: WaypointDB, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.CRITICAL, logger="waypoint"):
            ok = db.log_action_safe("workflow-0-deleted", "gate-1", "success")
        assert ok is False
        assert any(r.levelno == logging.CRITICAL and "double failure" in r.getMessage() for r in caplog.records)
        assert _action_count(db) == 0


class TestCommitLog:
    def test_log_commit(self, db: WaypointDB, workflow: Workflow) -> None:
        commit_id = db.log_commit(workflow.id, "abc123", "feat: login form")
        commits = db.load_workflow(workflow.id).commits  # type: ignore[union-attr]
        assert commits == [
            {
                "id": commit_id,
                "workflow_id": workflow.id,
                "sha": "abc123",
                "message": "feat: login form",
                "created_at": commits[0]["created_at"],
            }
        ]

    def test_log_commit_missing_workflow(self, db: WaypointDB) -> None:
        with pytest.raises(ParentRecordError, match="Failed to log commit"):
            db.log_commit("nope", "abc", "msg")


class TestListAndDelete:
    def test_list_active(self, db: WaypointDB) -> None:
        running = db.create_workflow(1, "a")
        paused = db.create_workflow(2, "b")
        done = db.create_workflow(3, "c")
        db.set_status(paused.id, "paused")
        db.set_status(done.id, "completed")
        active = db.list_active()
        assert [w.id for w in active] == [paused.id, running.id]

    def test_delete_cascades(self, db: WaypointDB, workflow: Workflow, milestone: Milestone) -> None:
        db.log_action(workflow.id, "gate-1", "success")
        db.log_commit(workflow.id, "abc", "msg")
        db.link_workflow_to_milestone(workflow.id, milestone.id)
        db.log_task_snapshot(workflow.id, "research", "t1", "Task", "pending")

        assert db.delete_workflow(workflow.id) is True
        assert db.load_workflow(workflow.id) is None
        for table in ("actions", "commits", "milestone_workflows", "task_snapshots"):
            assert db.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0

    def test_delete_is_idempotent(self, db: WaypointDB, workflow: Workflow) -> None:
        assert db.delete_workflow(workflow.id) is True
        assert db.delete_workflow(workflow.id) is False


class TestStaleCleanup:
    def test_marks_only_stale_running_workflows(self, db: WaypointDB) -> None:
        stale = db.create_workflow(1, "old")
        fresh = db.create_workflow(2, "new")
        last_update = set_updated_at(db, stale.id, hours_ago=30)
        set_updated_at(db, fresh.id, hours_ago=1)

        assert db.cleanup_stale_workflows(24) == 1

        stale_cp = db.load_workflow(stale.id)
        assert stale_cp is not None
        assert stale_cp.workflow.status == "failed"
        assert [a["action"] for a in stale_cp.actions] == ["workflow_stale_cleanup"]
        assert stale_cp.actions[0]["result"] == "failed"
        assert stale_cp.actions[0]["metadata"] == {
            "reason": "Workflow inactive for more than 24 hours",
            "last_update": last_update,
        }

        fresh_cp = db.load_workflow(fresh.id)
        assert fresh_cp is not None
        assert fresh_cp.workflow.status == "running"
        assert fresh_cp.actions == []

    def test_ignores_non_running(self, db: WaypointDB) -> None:
        paused = db.create_workflow(1, "p")
        db.set_status(paused.id, "paused")
        set_updated_at(db, paused.id, hours_ago=100)
        assert db.cleanup_stale_workflows(24) == 0

    def test_default_threshold_from_instance(self, db: WaypointDB) -> None:
        wf = db.create_workflow(1, "old")
        set_updated_at(db, wf.id, hours_ago=3)
        db.stale_threshold_hours = 2
        assert db.cleanup_stale_workflows() == 1

    def test_partial_failure_is_skipped(self, db: WaypointDB, monkeypatch: pytest.MonkeyPatch) -> None:
        first = db.create_workflow(1, "a")
        second = db.create_workflow(2, "b")
        set_updated_at(db, first.id, hours_ago=48)
        set_updated_at(db, second.id, hours_ago=48)

        real_set_status = db.set_status

        def flaky(workflow_id: str, status: str) -> None:
            if workflow_id == first.id:
                raise RuntimeError("disk full")
            real_set_status(workflow_id, status)

        monkeypatch.setattr(db, "set_status", flaky)
        assert db.cleanup_stale_workflows(24) == 1
        assert db.get_workflow(first.id).status == "running"  # type: ignore[union-attr]
        assert db.get_workflow(second.id).status == "failed"  # type: ignore[union-attr]


class TestMilestoneLinks:
    def test_link_and_list_in_wave_order(self, db: WaypointDB, milestone: Milestone) -> None:
        w2 = db.create_workflow(2, "b")
        w1 = db.create_workflow(1, "a")
        w_default = db.create_workflow(3, "c")
        db.link_workflow_to_milestone(w2.id, milestone.id, 2)
        db.link_workflow_to_milestone(w1.id, milestone.id, 1)
        db.link_workflow_to_milestone(w_default.id, milestone.id)
        assert [w.id for w in db.list_milestone_workflows(milestone.id)] == [w1.id, w_default.id, w2.id]

    def test_relink_updates_wave(self, db: WaypointDB, milestone: Milestone, workflow: Workflow) -> None:
        db.link_workflow_to_milestone(workflow.id, milestone.id, 1)
        db.link_workflow_to_milestone(workflow.id, milestone.id, 3)
        cp = db.get_milestone(milestone.id)
        assert cp is not None
        assert cp.waves == {workflow.id: 3}

    @pytest.mark.parametrize("missing", ["workflow", "milestone"])
    def test_link_missing_side(self, db: WaypointDB, milestone: Milestone, workflow: Workflow, missing: str) -> None:
        wf_id = "workflow-0-missing" if missing == "workflow" else workflow.id
        ms_id = "milestone-missing-0" if missing == "milestone" else milestone.id
        with pytest.raises(ParentRecordError, match="does not exist"):
            db.link_workflow_to_milestone(wf_id, ms_id)

    def test_link_rejects_bad_wave(self, db: WaypointDB, milestone: Milestone, workflow: Workflow) -> None:
        with pytest.raises(ValueError, match="wave_number"):
            db.link_workflow_to_milestone(workflow.id, milestone.id, 0)
