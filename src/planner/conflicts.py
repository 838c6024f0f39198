"""
Interval math for calendar conflict detection.

Intervals are half-open, ``[start, end)``: two events that merely touch
(one ends exactly when the other starts) do not conflict.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from .utils import round_half_up


# PUBLIC_INTERFACE
def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    return start < other_end and end > other_start


# PUBLIC_INTERFACE
def overlap_window(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> Optional[Tuple[datetime, datetime, int]]:
    """Return ``(overlap_start, overlap_end, minutes)`` or None when the intervals do not overlap."""
    if not overlaps(start, end, other_start, other_end):
        return None
    window_start = max(start, other_start)
    window_end = min(end, other_end)
    minutes = round_half_up((window_end - window_start).total_seconds() / 60)
    return window_start, window_end, minutes
