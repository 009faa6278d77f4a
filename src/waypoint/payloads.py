"""Metadata codec for action and task-snapshot payloads.

Metadata is stored as a JSON object stamped with a payload version under the
reserved ``_v`` key. Encoding is checked by decoding the result and comparing
it with the input, so values JSON would silently change (tuples, non-string
keys, NaN) are caught at the store boundary instead of on a later read.

Known action kinds declare their required keys in ``ACTION_PAYLOAD_KEYS``.
Any other action accepts a free-form object.

Pure functions — no database access.
"""

from __future__ import annotations

import json
import logging
from typing import Any, TypedDict

from waypoint.db_base import MetadataError

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 1
VERSION_KEY = "_v"
OMITTED_MARKER = "[omitted: potentially unserializable]"
STALE_CLEANUP_ACTION = "workflow_stale_cleanup"
FAILURE_SUFFIX = "_failed"


class StaleCleanupPayload(TypedDict):
    reason: str
    last_update: str


class ActionFailurePayload(TypedDict):
    original_action: str
    original_result: str
    original_metadata: str | None
    error: str


ACTION_PAYLOAD_KEYS: dict[str, frozenset[str]] = {
    STALE_CLEANUP_ACTION: frozenset(StaleCleanupPayload.__annotations__),
}


def stale_cleanup_payload(threshold_hours: float, last_update: str) -> StaleCleanupPayload:
    return {
        "reason": f"Workflow inactive for more than {threshold_hours:g} hours",
        "last_update": last_update,
    }


def failure_payload(action: str, result: str, metadata: object, error: BaseException) -> ActionFailurePayload:
    """Build the payload recorded under ``<action>_failed`` by ``log_action_safe``.

    The original metadata is never copied: it may be what made the first write fail.
    """
    return {
        "original_action": action,
        "original_result": result,
        "original_metadata": OMITTED_MARKER if metadata is not None else None,
        "error": str(error),
    }


def _check(kind: str, metadata: object) -> str:
    if not isinstance(metadata, dict):
        msg = f"metadata for {kind!r} must be a JSON object, got {type(metadata).__name__}"
        raise MetadataError(msg)
    if VERSION_KEY in metadata:
        msg = f"metadata for {kind!r} must not use the reserved key {VERSION_KEY!r}"
        raise MetadataError(msg)
    missing = ACTION_PAYLOAD_KEYS.get(kind, frozenset()) - metadata.keys()
    if missing:
        msg = f"metadata for {kind!r} is missing required keys: {', '.join(sorted(missing))}"
        raise MetadataError(msg)

    payload = {VERSION_KEY: PAYLOAD_VERSION, **metadata}
    try:
        text = json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as exc:
        msg = f"metadata for {kind!r} is not JSON-serializable: {exc}"
        raise MetadataError(msg) from exc
    if json.loads(text) != payload:
        msg = f"metadata for {kind!r} does not survive a JSON round trip unchanged"
        raise MetadataError(msg)
    return text


def encode_metadata(kind: str, metadata: dict[str, Any] | None, *, strict: bool = True) -> str | None:
    """Encode *metadata* for storage under action (or snapshot) *kind*.

    Returns None for None, unless *kind* declares required keys. In strict
    mode a payload that cannot be stored faithfully raises MetadataError;
    otherwise it is logged and dropped.
    """
    if metadata is None and kind not in ACTION_PAYLOAD_KEYS:
        return None
    try:
        if metadata is None:
            msg = f"metadata for {kind!r} is required"
            raise MetadataError(msg)
        return _check(kind, metadata)
    except MetadataError as exc:
        if strict:
            raise
        logger.warning("Dropping metadata that cannot be stored: %s", exc, extra={"action": kind, "error": str(exc)})
        return None


def decode_metadata(raw: str | None, context: str) -> dict[str, Any] | None:
    """Decode a stored payload. Never raises: corrupt values read back as None."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse metadata for %s, treating as null", context, extra={"context": context, "error": str(exc)})
        return None
    if not isinstance(value, dict):
        logger.warning("Metadata for %s is not an object, treating as null", context, extra={"context": context})
        return None
    version = value.pop(VERSION_KEY, None)
    if isinstance(version, int) and version > PAYLOAD_VERSION:
        logger.warning("Metadata for %s has newer payload version %d", context, version, extra={"context": context})
    return value
