from __future__ import annotations

from datetime import datetime, timedelta, timezone


def now_utc_iso() -> str:
    """Return an RFC 3339/ISO timestamp in UTC with microsecond precision."""
    return datetime.now(timezone.utc).isoformat()


def days_ago_utc_iso(days: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
