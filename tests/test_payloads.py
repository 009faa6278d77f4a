"""Tests for the metadata codec."""

from __future__ import annotations

import logging

import pytest

from waypoint.core import WaypointDB
from waypoint.db_base import MetadataError
from waypoint.payloads import (
    OMITTED_MARKER,
    STALE_CLEANUP_ACTION,
    decode_metadata,
    encode_metadata,
    failure_payload,
    stale_cleanup_payload,
)


class TestEncode:
    def test_none_passes_through(self) -> None:
        assert encode_metadata("anything", None) is None

    def test_version_stamped(self) -> None:
        assert encode_metadata("note", {"k": "v"}) == '{"_v": 1, "k": "v"}'

    @pytest.mark.parametrize(
        "metadata",
        [
            {"pair": (1, 2)},
            {1: "int key"},
            {"nan": float("nan")},
            {"obj": object()},
            {"_v": 2},
        ],
    )
    def test_strict_rejects(self, metadata: dict) -> None:
        with pytest.raises(MetadataError):
            encode_metadata("note", metadata)

    def test_non_object_rejected(self) -> None:
        with pytest.raises(MetadataError, match="must be a JSON object"):
            encode_metadata("note", ["a"])  # type: ignore[arg-type]

    def test_unserializable_message(self) -> None:
        with pytest.raises(MetadataError, match="is not JSON-serializable"):
            encode_metadata("note", {"s": {1, 2}})

    def test_lenient_drops_and_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="waypoint.payloads"):
            assert encode_metadata("note", {"pair": (1, 2)}, strict=False) is None
        assert "Dropping metadata" in caplog.text

    def test_stale_cleanup_requires_keys(self) -> None:
        with pytest.raises(MetadataError, match="last_update"):
            encode_metadata(STALE_CLEANUP_ACTION, {"reason": "x"})
        assert encode_metadata(STALE_CLEANUP_ACTION, stale_cleanup_payload(24, "2026-01-01T00:00:00+00:00")) is not None

    def test_kind_with_required_keys_rejects_none(self) -> None:
        with pytest.raises(MetadataError, match="is required"):
            encode_metadata(STALE_CLEANUP_ACTION, None)

    def test_kind_with_required_keys_lenient_none(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="waypoint.payloads"):
            assert encode_metadata(STALE_CLEANUP_ACTION, None, strict=False) is None
        assert "is required" in caplog.text


class TestDecode:
    def test_version_key_stripped(self) -> None:
        assert decode_metadata('{"_v": 1, "k": "v"}', "ctx") == {"k": "v"}

    def test_legacy_unversioned(self) -> None:
        assert decode_metadata('{"k": 1}', "ctx") == {"k": 1}

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
    def test_corrupt_reads_as_none(self, raw: str, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="waypoint.payloads"):
            assert decode_metadata(raw, "action 9") is None
        assert "action 9" in caplog.text

    def test_newer_version_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="waypoint.payloads"):
            assert decode_metadata('{"_v": 9, "k": 1}', "ctx") == {"k": 1}
        assert "newer payload version" in caplog.text


class TestBuilders:
    def test_stale_reason(self) -> None:
        payload = stale_cleanup_payload(24, "2026-01-01T00:00:00+00:00")
        assert payload["reason"] == "Workflow inactive for more than 24 hours"
        assert stale_cleanup_payload(1.5, "x")["reason"] == "Workflow inactive for more than 1.5 hours"

    def test_failure_payload_omits_metadata(self) -> None:
        payload = failure_payload("deploy", "success", {"huge": "blob"}, RuntimeError("boom"))
        assert payload == {
            "original_action": "deploy",
            "original_result": "success",
            "original_metadata": OMITTED_MARKER,
            "error": "boom",
        }
        assert failure_payload("deploy", "success", None, RuntimeError("x"))["original_metadata"] is None


class TestStoreBoundary:
    def test_strict_store_raises_and_writes_nothing(self, db: WaypointDB) -> None:
        wf = db.create_workflow(1, "b")
        with pytest.raises(MetadataError):
            db.log_action(wf.id, "note", "success", {"pair": (1, 2)})
        assert db.get_actions(wf.id) == []

    def test_stale_cleanup_action_without_metadata_rejected(self, db: WaypointDB) -> None:
        wf = db.create_workflow(1, "b")
        with pytest.raises(MetadataError):
            db.log_action(wf.id, STALE_CLEANUP_ACTION, "failed")
        assert db.get_actions(wf.id) == []

    def test_lenient_store_keeps_action(self, lenient_db: WaypointDB) -> None:
        wf = lenient_db.create_workflow(1, "b")
        lenient_db.log_action(wf.id, "note", "success", {"pair": (1, 2)})
        [action] = lenient_db.get_actions(wf.id)
        assert action["metadata"] is None

    def test_corrupt_row_reads_back_null(self, db: WaypointDB) -> None:
        wf = db.create_workflow(1, "b")
        db.conn.execute(
            "INSERT INTO actions (workflow_id, action, result, metadata, created_at) VALUES (?, 'x', 'success', '{bad', ?)",
            (wf.id, "2026-01-01T00:00:00+00:00"),
        )
        db.conn.commit()
        assert db.get_actions(wf.id)[0]["metadata"] is None
