# scheduling_service/utils/intervals.py
"""
Half-open time interval helpers shared by the conflict detector and the
capacity/prerequisite services.

Every interval is [start, end): two intervals that only touch at a boundary
(a.end == b.start) do not overlap.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple, TypeVar

T = TypeVar("T")


class TimeRange(NamedTuple):
    start: datetime
    end: datetime

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return ensure_utc(a_start) < ensure_utc(b_end) and ensure_utc(b_start) < ensure_utc(a_end)


def overlap_window(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> Optional[TimeRange]:
    """Return the shared part of two intervals, or None when they don't overlap."""
    if not overlaps(a_start, a_end, b_start, b_end):
        return None
    return TimeRange(max(a_start, b_start, key=ensure_utc), min(a_end, b_end, key=ensure_utc))


def find_overlapping_pairs(
    items: Iterable[T],
    start_of: Callable[[T], datetime],
    end_of: Callable[[T], datetime],
) -> List[Tuple[T, T]]:
    """
    Sort-and-sweep over intervals.

    Items are ordered by start; an "active" list keeps the items whose end
    lies after the current start. Each overlapping unordered pair is
    reported exactly once, earlier-starting item first. Runs in
    O(n log n + k) for k overlapping pairs.
    """
    ordered = sorted(
        items, key=lambda item: (ensure_utc(start_of(item)), ensure_utc(end_of(item)))
    )
    pairs: List[Tuple[T, T]] = []
    active: List[T] = []

    for current in ordered:
        current_start = ensure_utc(start_of(current))
        # Drop everything that ended at or before this start (boundary touch is fine)
        active = [item for item in active if ensure_utc(end_of(item)) > current_start]
        for earlier in active:
            pairs.append((earlier, current))
        active.append(current)

    return pairs
