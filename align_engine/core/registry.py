"""Category registry: the static table of tracked categories.

Each category has a target (the raw value that counts as "fully satisfied"),
a weight, and optionally a list of constituents it is derived from. Derived
(composite) categories are scored as the mean of their constituents'
normalized scores instead of from their own raw values.

A category is *top-level* when no composite lists it as a constituent. Only
top-level categories contribute to the display score, so a composite and its
inputs are never counted twice. The weight of a constituent is never read.

The registry is validated once at construction and is read-only afterwards.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable

from align_engine.config import CATEGORY_TABLE, DEFAULT_RECOMMENDATION, ENGINE_CONFIG

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6


class RegistryError(ValueError):
    """Raised when a category table is inconsistent."""


@dataclass(frozen=True)
class Category:
    id: str
    target: float = 1.0
    weight: float = 0.0
    derived_from: tuple[str, ...] = ()
    label: str = ""
    unit: str = ""
    recommendation: str | None = None
    composite: bool = False

    @property
    def is_derived(self) -> bool:
        return self.composite or bool(self.derived_from)

    @property
    def display_label(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class CategoryRegistry:
    categories: tuple[Category, ...]
    core_levers: tuple[str, ...] = ()
    default_priority: str = ""
    _by_id: dict[str, Category] = field(
        init=False, repr=False, compare=False, default_factory=dict,
    )

    def __post_init__(self) -> None:
        by_id: dict[str, Category] = {}
        for cat in self.categories:
            if cat.id in by_id:
                raise RegistryError(f"Duplicate category id: {cat.id!r}")
            by_id[cat.id] = cat
        object.__setattr__(self, "_by_id", by_id)
        self._validate()

    # ── Lookup ──

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._by_id

    def __iter__(self):
        return iter(self.categories)

    def __len__(self) -> int:
        return len(self.categories)

    def get(self, category_id: str) -> Category:
        try:
            return self._by_id[category_id]
        except KeyError:
            raise KeyError(f"Unknown category: {category_id!r}") from None

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self.categories]

    def target(self, category_id: str) -> float:
        return self.get(category_id).target

    @property
    def derived(self) -> list[Category]:
        return [c for c in self.categories if c.is_derived]

    @property
    def constituent_ids(self) -> set[str]:
        return {cid for c in self.derived for cid in c.derived_from}

    @property
    def top_level(self) -> list[Category]:
        constituents = self.constituent_ids
        return [c for c in self.categories if c.id not in constituents]

    def recommendation(self, category_id: str) -> str:
        cat = self._by_id.get(category_id)
        if cat is None or not cat.recommendation:
            return DEFAULT_RECOMMENDATION
        return cat.recommendation

    # ── Validation ──

    def _validate(self) -> None:
        for cat in self.categories:
            if not (cat.target > 0 and math.isfinite(cat.target)):
                raise RegistryError(f"Category {cat.id!r} needs a positive target, got {cat.target}")
            for dep in cat.derived_from:
                if dep not in self._by_id:
                    raise RegistryError(f"Category {cat.id!r} derives from unknown category {dep!r}")

        self._check_acyclic()

        for lever in self.core_levers:
            if lever not in self._by_id:
                raise RegistryError(f"Core lever {lever!r} is not a registered category")
        if self.default_priority and self.default_priority not in self._by_id:
            raise RegistryError(f"Default priority {self.default_priority!r} is not a registered category")

        total = sum(c.weight for c in self.top_level)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise RegistryError(f"Top-level category weights must sum to 1.0, got {total:.6f}")

    def _check_acyclic(self) -> None:
        # Three-colour DFS over derived_from edges
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(cid: str, path: list[str]) -> None:
            if cid in done:
                return
            if cid in visiting:
                cycle = " -> ".join(path + [cid])
                raise RegistryError(f"Derived categories form a cycle: {cycle}")
            visiting.add(cid)
            for dep in self._by_id[cid].derived_from:
                visit(dep, path + [cid])
            visiting.discard(cid)
            done.add(cid)

        for cat in self.categories:
            visit(cat.id, [])


def load_registry(
    table: Iterable[dict[str, Any]],
    core_levers: Iterable[str] = (),
    default_priority: str = "",
) -> CategoryRegistry:
    """Build a validated registry from a list of category dicts.

    Keys per entry: ``id`` (required), ``target`` (default 1.0), ``weight``,
    ``derived_from``, ``label``, ``unit``, ``recommendation``. An entry that
    carries a ``derived_from`` key is a composite even when the list is empty.
    """
    categories = []
    for entry in table:
        if "id" not in entry:
            raise RegistryError(f"Category entry without an id: {entry!r}")
        categories.append(Category(
            id=entry["id"],
            target=float(entry.get("target", 1.0)),
            weight=float(entry.get("weight", 0.0)),
            derived_from=tuple(entry.get("derived_from", ())),
            label=entry.get("label", ""),
            unit=entry.get("unit", ""),
            recommendation=entry.get("recommendation"),
            composite="derived_from" in entry,
        ))
    levers = tuple(core_levers)
    registry = CategoryRegistry(
        categories=tuple(categories),
        core_levers=levers,
        default_priority=default_priority or (levers[0] if levers else ""),
    )
    logger.debug(
        "Loaded category registry: %d categories, %d derived, levers=%s",
        len(registry), len(registry.derived), registry.core_levers,
    )
    return registry


def default_registry() -> CategoryRegistry:
    """Registry built from the configured category table."""
    return load_registry(
        CATEGORY_TABLE,
        core_levers=ENGINE_CONFIG["core_levers"],
        default_priority=ENGINE_CONFIG["default_priority"],
    )
