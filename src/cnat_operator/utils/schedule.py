from __future__ import annotations

from datetime import UTC, datetime

SCHEDULE_LAYOUT = "%Y-%m-%dT%H:%M:%SZ"


def parse_schedule(schedule: str) -> datetime:
    """Parse an absolute UTC schedule such as ``2026-10-18T12:00:00Z``.

    Raises ValueError when the string does not match the layout.
    """
    s = (schedule or "").strip()
    if not s:
        raise ValueError("schedule is empty")
    return datetime.strptime(s, SCHEDULE_LAYOUT).replace(tzinfo=UTC)


def time_until_schedule(schedule: str, now: datetime | None = None) -> float:
    """Return seconds until ``schedule``; negative when it is overdue."""
    scheduled = parse_schedule(schedule)
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return (scheduled - current).total_seconds()
