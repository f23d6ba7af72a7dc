"""Category value inference via LLM.

Turns a free-text status update into raw values for the categories the
message gives evidence about. The result is partial: categories the model
leaves out mean "no update" and are later filled by decay.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Mapping

from align_engine.core.registry import CategoryRegistry
from align_engine.llm.client import llm_complete_json
from align_engine.prompts import ANALYSIS_PROMPT, ANALYSIS_SYSTEM

logger = logging.getLogger(__name__)


async def infer_values(
    message: str,
    previous_values: Mapping[str, float] | None,
    registry: CategoryRegistry,
) -> dict[str, float]:
    """Infer raw category values from a user message.

    Returns only registered categories with finite numeric values. Any
    failure (network, parsing, bad payload) yields an empty dict.
    """
    system = ANALYSIS_SYSTEM.format(categories=format_categories(registry))
    prompt = ANALYSIS_PROMPT.format(
        previous_values=format_previous_values(previous_values),
        message=message,
    )

    try:
        result = await llm_complete_json(prompt, system=system)
    except Exception:
        logger.exception("Value inference failed, treating message as carrying no updates")
        return {}

    return clean_inferred(result, registry)


def clean_inferred(payload: Mapping[str, Any], registry: CategoryRegistry) -> dict[str, float]:
    """Keep registered categories with usable numbers, dropping the rest."""
    values: dict[str, float] = {}
    for key, raw in payload.items():
        if key not in registry:
            logger.debug("Dropping inferred value for unknown category %r", key)
            continue
        if isinstance(raw, bool):
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            logger.debug("Dropping non-numeric value for %s: %r", key, raw)
            continue
        if not math.isfinite(value):
            continue
        values[key] = value
    return values


def format_previous_values(values: Mapping[str, float] | None) -> str:
    """JSON with sorted keys and one decimal place, ``{}`` when empty."""
    if not values:
        return "{}"
    return json.dumps({k: round(float(v), 1) for k, v in values.items()}, sort_keys=True)


def format_categories(registry: CategoryRegistry) -> str:
    lines = []
    for cat in registry:
        unit = cat.unit or "value"
        note = f" (composite of {', '.join(cat.derived_from)})" if cat.is_derived else ""
        lines.append(f"- {cat.id}: {unit}, target {cat.target:g}{note}")
    return "\n".join(lines)
