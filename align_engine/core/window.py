"""Trailing-window normalization of raw category values.

For each category the score for a day is the mean raw value over the
``window_days`` consecutive calendar days ending on that day, divided by the
category's target and capped at 1.0. Days with no stored value count as 0.
Today's row is taken from the values just resolved, not re-read from storage.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Mapping

from align_engine.core.registry import CategoryRegistry
from align_engine.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


def window_dates(as_of: date, window_days: int) -> list[date]:
    """Consecutive days ending at ``as_of`` inclusive, oldest first."""
    if window_days < 1:
        raise ValueError(f"window_days must be at least 1, got {window_days}")
    return [as_of - timedelta(days=i) for i in range(window_days - 1, -1, -1)]


def window_average(
    category_id: str,
    target: float,
    window_days: int,
    as_of: date,
    today_values: Mapping[str, float],
    history: Mapping[date, Mapping[str, float]],
) -> float:
    """Normalized windowed score for one category.

    Clamped to at most 1.0. There is no lower clamp, so negative raw values
    produce negative scores.
    """
    values = []
    for day in window_dates(as_of, window_days):
        if day == as_of:
            values.append(float(today_values.get(category_id, 0.0)))
        else:
            values.append(float(history.get(day, {}).get(category_id, 0.0)))
    avg = sum(values) / len(values)
    return min(avg / target, 1.0)


async def compute_window_scores(
    store: SQLiteStore,
    registry: CategoryRegistry,
    as_of: date,
    today_values: Mapping[str, float],
    window_days: int,
) -> dict[str, float]:
    """Read the window's history once and score every registered category."""
    past_days = window_dates(as_of, window_days)[:-1]
    history = await store.get_raw_values(past_days) if past_days else {}
    logger.debug(
        "Window ending %s: %d of %d past days have data",
        as_of.isoformat(), len(history), len(past_days),
    )

    return {
        cat.id: window_average(
            cat.id, cat.target, window_days, as_of, today_values, history,
        )
        for cat in registry
    }
