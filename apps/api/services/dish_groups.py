"""
Dish generation groups and their serving multipliers.

A dish group is the (meal, contributing member) pair that generated a set
of shopping list rows. Serving multipliers are tracked per group and
persisted in ShoppingListState.meal_servings as a list of entries:

    [{"meal_id": "...", "source_user_id": "...", "servings": 2.0}, ...]

Older rows stored a JSON object keyed by meal id only. Those values are
still honoured as a fallback for any group of that meal.
"""
import logging
import math
from typing import Any, Dict, Iterator, NamedTuple, Optional, Tuple
from uuid import UUID

logger = logging.getLogger(__name__)

DEFAULT_SERVINGS = 1.0


class DishGroupKey(NamedTuple):
    meal_id: UUID
    source_user_id: Optional[UUID]


def _parse_uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


class ServingsMap:
    """Per-group serving multipliers with the legacy per-meal fallback."""

    def __init__(
        self,
        per_group: Optional[Dict[DishGroupKey, float]] = None,
        legacy: Optional[Dict[UUID, float]] = None,
    ):
        self._per_group: Dict[DishGroupKey, float] = dict(per_group or {})
        self._legacy: Dict[UUID, float] = dict(legacy or {})

    @classmethod
    def from_json(cls, raw: Any) -> "ServingsMap":
        """Build a map from the stored JSON value (list, legacy dict or None)."""
        per_group: Dict[DishGroupKey, float] = {}
        legacy: Dict[UUID, float] = {}

        if isinstance(raw, dict):
            entries = [
                {"meal_id": meal_id, "servings": servings, "legacy": True}
                for meal_id, servings in raw.items()
            ]
        else:
            entries = raw or []

        for entry in entries:
            try:
                meal_id = _parse_uuid(entry["meal_id"])
                servings = float(entry["servings"])
                if not math.isfinite(servings) or servings <= 0:
                    raise ValueError("servings must be a finite number > 0")
                if entry.get("legacy"):
                    legacy[meal_id] = servings
                else:
                    key = DishGroupKey(meal_id, _parse_uuid(entry.get("source_user_id")))
                    per_group[key] = servings
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Ignoring malformed servings entry {entry!r}: {e}")

        return cls(per_group, legacy)

    def to_json(self) -> list:
        """Serialize to the stored list form, keeping legacy values flagged."""
        entries = [
            {
                "meal_id": str(key.meal_id),
                "source_user_id": str(key.source_user_id) if key.source_user_id else None,
                "servings": servings,
            }
            for key, servings in self._per_group.items()
        ]
        entries.extend(
            {"meal_id": str(meal_id), "servings": servings, "legacy": True}
            for meal_id, servings in self._legacy.items()
        )
        return entries

    def get(self, key: DishGroupKey) -> float:
        """Servings of a group: per-group value, else legacy meal value, else 1."""
        if key in self._per_group:
            return self._per_group[key]
        return self._legacy.get(key.meal_id, DEFAULT_SERVINGS)

    def with_servings(self, key: DishGroupKey, servings: float) -> "ServingsMap":
        """Copy with one group's multiplier set; other groups untouched."""
        per_group = dict(self._per_group)
        per_group[key] = servings
        return ServingsMap(per_group, self._legacy)

    def without(self, key: DishGroupKey) -> "ServingsMap":
        """Copy with a group's multiplier and its meal's legacy value dropped."""
        per_group = {k: v for k, v in self._per_group.items() if k != key}
        legacy = {k: v for k, v in self._legacy.items() if k != key.meal_id}
        return ServingsMap(per_group, legacy)

    def items(self) -> Iterator[Tuple[DishGroupKey, float]]:
        return iter(self._per_group.items())

    def legacy_items(self) -> Iterator[Tuple[UUID, float]]:
        """Per-meal values from the older storage form."""
        return iter(self._legacy.items())

    def __contains__(self, key: object) -> bool:
        return key in self._per_group

    def __len__(self) -> int:
        return len(self._per_group)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServingsMap):
            return NotImplemented
        return self._per_group == other._per_group and self._legacy == other._legacy

    def __repr__(self) -> str:
        return f"ServingsMap(per_group={self._per_group!r}, legacy={self._legacy!r})"
