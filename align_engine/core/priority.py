"""Pick the core lever most in need of attention."""

from __future__ import annotations

from typing import Mapping, Sequence


def select_priority(
    scores: Mapping[str, float],
    order: Sequence[str],
    default: str,
) -> str:
    """Return the lowest-scoring category in ``order``.

    Ties go to whichever category comes first in ``order``; the mapping's own
    iteration order plays no part. Categories missing from ``scores`` are
    skipped, and ``default`` is returned when none are present.
    """
    candidates = [(cid, scores[cid]) for cid in order if cid in scores]
    if not candidates:
        return default
    lowest = min(score for _, score in candidates)
    for cid, score in candidates:
        if score == lowest:
            return cid
    return default
