"""Shared validation functions for the store and the CLI.

Pure functions — no database or Click dependencies.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


def validate_choice(value: Any, choices: Iterable[str], name: str) -> tuple[str, str | None]:
    """Check that *value* is one of *choices*.

    Returns (value, None) on success or ("", error_message) on failure.
    """
    allowed = tuple(choices)
    if not isinstance(value, str) or value not in allowed:
        return ("", f"Invalid {name} {value!r}. Must be one of: {', '.join(allowed)}")
    return (value, None)


def require_choice(value: Any, choices: Iterable[str], name: str) -> str:
    """Like validate_choice() but raises ValueError."""
    cleaned, err = validate_choice(value, choices, name)
    if err is not None:
        raise ValueError(err)
    return cleaned


def validate_wave_number(value: Any) -> tuple[int | None, str | None]:
    """Wave numbers are positive integers or None (read as wave 1)."""
    if value is None:
        return (None, None)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return (None, f"wave_number must be a positive integer, got {value!r}")
    return (value, None)
