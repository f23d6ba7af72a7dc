"""Composite category scores and the weighted display score."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping

from align_engine.core.registry import CategoryRegistry


def apply_derived_scores(
    scores: Mapping[str, float], registry: CategoryRegistry,
) -> dict[str, float]:
    """Return a copy of ``scores`` with every composite category filled in.

    A composite is the unweighted mean of its constituents' scores and
    replaces any leaf score stored under the same id. Composites are
    evaluated in dependency order, so a composite of composites sees its
    inputs already averaged. A composite with no constituents scores 0.
    """
    result = dict(scores)
    done: set[str] = set()

    def fill(cid: str) -> None:
        if cid in done:
            return
        cat = registry.get(cid)
        if cat.is_derived:
            for dep in cat.derived_from:
                fill(dep)
            parts = [result.get(dep, 0.0) for dep in cat.derived_from]
            result[cid] = sum(parts) / len(parts) if parts else 0.0
        done.add(cid)

    for cat in registry.derived:
        fill(cat.id)
    return result


def display_score(scores: Mapping[str, float], registry: CategoryRegistry) -> int:
    """Weighted sum of top-level scores as an integer percentage.

    Half values round away from zero.
    """
    total = sum(scores.get(cat.id, 0.0) * cat.weight for cat in registry.top_level)
    return int(Decimal(repr(total * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
