"""Half-open interval arithmetic over aware datetimes.

All intervals are ``[start, end)``: an interval ending exactly when another
starts does not overlap it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from scheduling.errors import ValidationError


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(
                detail="Interval start must be before its end",
                start=self.start.isoformat(),
                end=self.end.isoformat(),
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def padded(self, before_minutes: int = 0, after_minutes: int = 0) -> "Interval":
        return Interval(
            self.start - timedelta(minutes=before_minutes),
            self.end + timedelta(minutes=after_minutes),
        )


def subtract(interval: Interval, block: Interval) -> list[Interval]:
    """Remove ``block`` from ``interval``; yields zero, one or two pieces."""
    if not interval.overlaps(block):
        return [interval]
    pieces = []
    if interval.start < block.start:
        pieces.append(Interval(interval.start, block.start))
    if block.end < interval.end:
        pieces.append(Interval(block.end, interval.end))
    return pieces


def subtract_all(intervals: Iterable[Interval], blocks: Iterable[Interval]) -> list[Interval]:
    remaining = list(intervals)
    for block in blocks:
        next_remaining = []
        for interval in remaining:
            next_remaining.extend(subtract(interval, block))
        remaining = next_remaining
        if not remaining:
            break
    return sorted(remaining)


def merge(intervals: Iterable[Interval]) -> list[Interval]:
    """Union of intervals; overlapping or touching pieces are joined."""
    ordered = sorted(intervals)
    if not ordered:
        return []
    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged
