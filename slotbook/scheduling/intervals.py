"""
Half-open interval arithmetic over instants.

Two intervals [a, b) and [c, d) overlap iff a < d and c < b, so intervals that
only touch at an endpoint do not conflict.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def clip(self, lower: datetime) -> "Interval":
        return Interval(max(self.start, lower), self.end)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Union overlapping or adjacent intervals; empty intervals are dropped."""
    ordered = sorted(interval for interval in intervals if not interval.is_empty)
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


def subtract_interval(interval: Interval, block: Interval) -> List[Interval]:
    """Remove ``block`` from ``interval``, leaving zero, one or two pieces."""
    if not interval.overlaps(block):
        return [interval]

    pieces = []
    if block.start > interval.start:
        pieces.append(Interval(interval.start, block.start))
    if block.end < interval.end:
        pieces.append(Interval(block.end, interval.end))
    return pieces


def subtract_all(intervals: Iterable[Interval], blocks: Iterable[Interval]) -> List[Interval]:
    remaining = merge_intervals(intervals)
    for block in merge_intervals(blocks):
        next_remaining: List[Interval] = []
        for interval in remaining:
            next_remaining.extend(subtract_interval(interval, block))
        remaining = next_remaining
    return remaining


def covering_interval(intervals: Iterable[Interval], requested: Interval) -> Interval | None:
    """Return the interval that fully contains ``requested``, if any."""
    for interval in merge_intervals(intervals):
        if interval.contains(requested):
            return interval
    return None
