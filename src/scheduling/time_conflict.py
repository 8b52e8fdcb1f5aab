from __future__ import annotations

from datetime import time
from typing import Iterable, List, Optional, Protocol


class TimeRange(Protocol):
    start_time: time
    duration_minutes: int


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def has_time_conflict(a: TimeRange, b: TimeRange) -> bool:
    """Half-open overlap: back-to-back slots do not conflict."""
    start_a = _minutes(a.start_time)
    end_a = start_a + a.duration_minutes
    start_b = _minutes(b.start_time)
    end_b = start_b + b.duration_minutes
    return not (end_a <= start_b or end_b <= start_a)


def find_conflicting_items(
    candidate: TimeRange,
    items: Iterable,
    exclude_id: Optional[str] = None,
) -> List:
    return [
        item
        for item in items
        if not (exclude_id and getattr(item, "id", None) == exclude_id)
        and has_time_conflict(candidate, item)
    ]


def calculate_end_time(start: time, duration_minutes: int) -> str:
    """HH:MM end of a slot. Past midnight the hour keeps counting (e.g. 25:30)."""
    end = _minutes(start) + duration_minutes
    return f"{end // 60:02d}:{end % 60:02d}"


def format_time_for_display(t: time) -> str:
    ampm = "PM" if t.hour >= 12 else "AM"
    hour = t.hour % 12 or 12
    return f"{hour}:{t.minute:02d} {ampm}"
