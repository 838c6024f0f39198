from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Sequence, Tuple, Union


# PUBLIC_INTERFACE
def pagination_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    total: int,
    limit: int,
    offset: int,
) -> Dict[str, Any]:
    """
    Build the standard pagination envelope for list results.

    Args:
        items: The entities of the current page.
        total: Number of entities matching the query, ignoring pagination.
        limit: Page size.
        offset: Number of entities skipped.

    Returns:
        Dict with keys: items, total, limit, offset, page, total_pages.
    """
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    limit = int(max(limit, 0))
    offset = int(max(offset, 0))
    return {
        "items": materialized,
        "total": int(total),
        "limit": limit,
        "offset": offset,
        "page": (offset // limit) + 1 if limit else 1,
        "total_pages": math.ceil(total / limit) if limit else 1,
    }


def day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    """Start of the day containing ``moment`` and the last instant of it."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def week_start(moment: datetime) -> datetime:
    """Start of the Sunday-based week containing ``moment``."""
    start, _ = day_bounds(moment)
    return start - timedelta(days=(start.weekday() + 1) % 7)


def month_bounds(year: int, month: int, tzinfo: Any = None) -> Tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=tzinfo)
    nxt = datetime(year + (month // 12), (month % 12) + 1, 1, tzinfo=tzinfo)
    return start, nxt - timedelta(microseconds=1)


# PUBLIC_INTERFACE
def round_half_up(value: float, digits: int = 0) -> Union[int, float]:
    """Round a non-negative value to ``digits`` places, halves going up."""
    scale = 10 ** digits
    rounded = math.floor(value * scale + 0.5)
    return rounded if digits == 0 else rounded / scale
