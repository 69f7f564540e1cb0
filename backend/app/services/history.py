"""Bounded intraday history per holding per day.

Algorithm:
    same time already present -> replace that entry in place
    otherwise                 -> append
    then drop from the front until at most ``limit`` entries remain
"""

from typing import Iterable

from app.config import HISTORY_LIMIT
from app.models.domain import HistoryPoint


def merge_history_point(
    points: Iterable[HistoryPoint],
    point: HistoryPoint,
    limit: int = HISTORY_LIMIT,
) -> tuple[HistoryPoint, ...]:
    """Return the new sequence after writing ``point``. The input is left untouched."""
    if limit < 1:
        raise ValueError("limit must be positive")

    merged = list(points)
    for i, existing in enumerate(merged):
        if existing.time == point.time:
            merged[i] = point
            break
    else:
        merged.append(point)

    if len(merged) > limit:
        merged = merged[len(merged) - limit:]
    return tuple(merged)
