"""
Time helpers shared by the runners and the CLI.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def make_run_slug(started_at: datetime | None = None) -> str:
    """Sortable, unique run identifier, e.g. ``20260224T150000Z_1a2b3c4d``."""
    ts = (started_at or utcnow()).strftime("%Y%m%dT%H%M%SZ")
    return f"{ts}_{uuid4().hex[:8]}"


def elapsed_seconds(started_at: datetime, finished_at: datetime | None = None) -> float:
    """Seconds between two aware datetimes (``finished_at`` defaults to now)."""
    return ((finished_at or utcnow()) - started_at).total_seconds()
