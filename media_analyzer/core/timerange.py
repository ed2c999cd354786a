# Copyright (c) 2025 Trae AI. All rights reserved.

from typing import Iterable, List, Optional
from pydantic import BaseModel


class TimeRange(BaseModel):
    start: float = 0.0
    end: float = 0.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    def intersects(self, other: "TimeRange") -> bool:
        return (
            (other.start > self.start and other.start < self.end)
            or (other.end > self.start and other.end < self.end)
            or (other.start <= self.start and other.end >= self.end)
        )


def split_contiguous(times: Iterable[float], maximum_distance: float) -> List[TimeRange]:
    """
    Splits timestamps into runs. Neighbors at most maximum_distance apart share a run.
    """
    ordered = sorted(times)
    if not ordered:
        return []

    ranges = []
    current = TimeRange(start=ordered[0], end=ordered[0])
    for previous, following in zip(ordered, ordered[1:]):
        if following - previous <= maximum_distance:
            current.end = following
            continue
        ranges.append(current)
        current = TimeRange(start=following, end=following)
    ranges.append(current)
    return ranges


def find_contiguous(times: Iterable[float], maximum_distance: float) -> Optional[TimeRange]:
    """
    Returns the longest contiguous run of timestamps, or None when there are none.
    """
    ranges = split_contiguous(times, maximum_distance)
    if not ranges:
        return None
    # max() keeps the earliest run on ties
    return max(ranges, key=lambda r: r.duration)
