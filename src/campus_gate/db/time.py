# src/campus_gate/db/time.py
"""Time utilities for database models and policy windows."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


class Clock(Protocol):
    """Source of the current time; every expiry and cooldown is computed against it."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock implementation used outside of tests."""

    def now(self) -> datetime:
        return utcnow()
