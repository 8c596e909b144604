from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List

from ..errors import InvalidArgument


@dataclass(frozen=True, order=True)
class TimeInterval:
    """Half-open [start, end) between two timezone-aware instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidArgument("Interval bounds must be timezone-aware")
        if not self.start < self.end:
            raise InvalidArgument(f"Interval start {self.start} must precede end {self.end}")

    @classmethod
    def starting_at(cls, start: datetime, minutes: int) -> "TimeInterval":
        return cls(start, start + timedelta(minutes=minutes))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


# Busy blocks are plain intervals; the alias keeps gateway signatures readable.
BusyBlock = TimeInterval


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.start < b.end and b.start < a.end


def overlaps_any(candidate: TimeInterval, blocks: Iterable[TimeInterval]) -> bool:
    return any(overlaps(candidate, b) for b in blocks)


def blocks_within(window: TimeInterval, blocks: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Blocks that touch ``window``; used to slice one wide fetch per day."""
    return [b for b in blocks if overlaps(window, b)]


def merge(blocks: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Union of ``blocks`` as sorted, disjoint intervals. Touching blocks are joined."""
    merged: List[TimeInterval] = []
    for b in sorted(blocks):
        if merged and b.start <= merged[-1].end:
            if b.end > merged[-1].end:
                merged[-1] = TimeInterval(merged[-1].start, b.end)
        else:
            merged.append(b)
    return merged


def subtract_busy(window: TimeInterval, blocks: Iterable[TimeInterval]) -> List[TimeInterval]:
    free: List[TimeInterval] = []
    cursor = window.start
    for b in merge(blocks_within(window, blocks)):
        if b.start > cursor:
            free.append(TimeInterval(cursor, b.start))
        cursor = max(cursor, b.end)
        if cursor >= window.end:
            return free
    free.append(TimeInterval(cursor, window.end))
    return free
