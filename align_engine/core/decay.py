"""Exponential carry-forward of category values across days without data.

A category that is not mentioned in a message keeps its last recorded value,
shrunk by ``decay_factor`` once per calendar day elapsed since it was
recorded. Categories that were never recorded decay from 0 and so stay at 0.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def decay(last_value: float, days_elapsed: int, decay_factor: float) -> float:
    """Return ``last_value`` decayed over ``days_elapsed`` days.

    Args:
        last_value: The category's last recorded raw value.
        days_elapsed: Calendar days since it was recorded. Negative values
            (out-of-order messages) are treated as 0.
        decay_factor: Per-day retention in the open interval (0, 1).

    Returns:
        ``last_value * decay_factor ** days_elapsed``.
    """
    if not 0.0 < decay_factor < 1.0:
        raise ValueError(f"decay_factor must be in (0, 1), got {decay_factor}")
    days = max(int(days_elapsed), 0)
    if days == 0:
        return last_value
    return last_value * decay_factor ** days


def elapsed_days(last_day: date | None, today: date) -> int:
    """Calendar days from ``last_day`` to ``today``, never negative."""
    if last_day is None:
        return 0
    delta = (today - last_day).days
    if delta < 0:
        logger.warning(
            "Message day %s is before last recorded day %s; assuming 0 days elapsed",
            today.isoformat(), last_day.isoformat(),
        )
        return 0
    return delta


def day_of(timestamp: datetime, tz_name: str) -> date:
    """Truncate a timestamp to its calendar day in the reference time zone.

    Naive timestamps are taken to be UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(ZoneInfo(tz_name)).date()
