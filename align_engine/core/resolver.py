"""Merge freshly inferred values with decayed carry-forward values."""

from __future__ import annotations

import logging
from typing import Mapping

from align_engine.core.decay import decay
from align_engine.core.registry import CategoryRegistry

logger = logging.getLogger(__name__)


def resolve_values(
    inferred: Mapping[str, float],
    last_known: Mapping[str, float],
    days_elapsed: int,
    registry: CategoryRegistry,
    decay_factor: float,
) -> dict[str, float]:
    """Produce today's complete raw-value row.

    Inferred values are used verbatim. Every other registered category gets
    its last known value (0 if never recorded) decayed by ``days_elapsed``.
    The result always holds exactly one entry per registered category.
    """
    unknown = set(inferred) - set(registry.ids)
    if unknown:
        logger.debug("Ignoring inferred values for unregistered categories: %s", sorted(unknown))

    resolved: dict[str, float] = {}
    for cid in registry.ids:
        if cid in inferred:
            resolved[cid] = float(inferred[cid])
        else:
            resolved[cid] = decay(float(last_known.get(cid, 0.0)), days_elapsed, decay_factor)
    return resolved
