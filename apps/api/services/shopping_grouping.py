"""
Display groupings of the persisted shopping list.

All functions are pure: they take the flat list of ShoppingListItem rows
(product and meal relationships loaded) and return new group objects.
Nothing here reads from or writes to the store.
"""
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from config import settings
from services.dish_groups import DishGroupKey, ServingsMap

UNNAMED_ITEM = "Unnamed item"
SUM_PRECISION = 4

_EXTRA_FOLDS = str.maketrans({"ł": "l", "ø": "o", "đ": "d", "ß": "ss"})


def collation_key(name: str) -> Tuple[str, str]:
    """
    Locale-friendly sort key: accents sort next to their base letter.

    "łosoś" sorts with "losos", ties broken by the accented spelling so the
    order stays deterministic.
    """
    folded = (name or "").casefold()
    decomposed = unicodedata.normalize("NFKD", folded)
    base = "".join(c for c in decomposed if not unicodedata.combining(c)).translate(_EXTRA_FOLDS)
    return base, folded


def _item_name(item) -> str:
    return item.name or UNNAMED_ITEM


def _product_key(item) -> tuple:
    if item.product_id is not None:
        return ("product", item.product_id)
    return ("name", _item_name(item).strip().casefold())


@dataclass
class ProductGroup:
    """Rows of one product (or one free-text name) with the same check state."""

    key: tuple
    name: str
    product_id: Optional[UUID]
    product: object
    total_amount: float
    unit_type: Optional[str]
    custom_amount_text: Optional[str]
    item_ids: List[UUID] = field(default_factory=list)
    all_checked: bool = True
    any_checked: bool = False


@dataclass
class CategoryGroup:
    category: Optional[str]
    label: str
    groups: List[ProductGroup]


@dataclass
class DishGroup:
    """All rows generated for one meal eaten by one member."""

    key: DishGroupKey
    meal: object
    servings: float
    items: list
    all_checked: bool

    @property
    def meal_id(self) -> UUID:
        return self.key.meal_id

    @property
    def source_user_id(self) -> Optional[UUID]:
        return self.key.source_user_id

    @property
    def item_ids(self) -> List[UUID]:
        return [item.id for item in self.items]


@dataclass
class DishView:
    dishes: List[DishGroup]
    custom: List[ProductGroup]


def group_by_product(items: Iterable) -> List[ProductGroup]:
    """
    Collapse rows of the same product across dishes, split by check state.

    A product with checked and unchecked rows yields two groups. Amounts of
    rows with custom_amount_text are placeholders and are not summed; the
    group carries their text instead.

    Returns:
        Groups sorted by name, unchecked before checked on equal names
    """
    groups: Dict[tuple, ProductGroup] = {}
    custom_texts: Dict[tuple, List[str]] = {}

    for item in items:
        checked = bool(item.is_checked)
        key = (*_product_key(item), checked)
        group = groups.get(key)
        if group is None:
            group = ProductGroup(
                key=key,
                name=_item_name(item),
                product_id=item.product_id,
                product=item.product,
                total_amount=0.0,
                unit_type=item.unit_type,
                custom_amount_text=None,
                all_checked=checked,
                any_checked=checked,
            )
            groups[key] = group
            custom_texts[key] = []
        else:
            group.all_checked = group.all_checked and checked
            group.any_checked = group.any_checked or checked

        group.item_ids.append(item.id)
        if item.custom_amount_text:
            if item.custom_amount_text not in custom_texts[key]:
                custom_texts[key].append(item.custom_amount_text)
        else:
            group.total_amount = round(group.total_amount + (item.amount or 0), SUM_PRECISION)

    for key, group in groups.items():
        if custom_texts[key]:
            group.custom_amount_text = ", ".join(custom_texts[key])

    return sorted(
        groups.values(),
        key=lambda g: (collation_key(g.name), g.all_checked),
    )


def _category_of(item) -> Optional[str]:
    product = item.product
    if product is None:
        return None
    category = (product.category or "").strip()
    return category or None


def group_by_category(
    items: Iterable, uncategorized_label: Optional[str] = None
) -> List[CategoryGroup]:
    """
    Partition rows by product category, then group each bucket by product.

    Rows without a product or without a category land in a trailing
    uncategorized bucket. Empty buckets are omitted.
    """
    buckets: Dict[Optional[str], list] = {}
    for item in items:
        buckets.setdefault(_category_of(item), []).append(item)

    named = sorted((c for c in buckets if c is not None), key=collation_key)
    result = [
        CategoryGroup(category=category, label=category, groups=group_by_product(buckets[category]))
        for category in named
    ]
    if None in buckets:
        result.append(
            CategoryGroup(
                category=None,
                label=uncategorized_label or settings.UNCATEGORIZED_LABEL,
                groups=group_by_product(buckets[None]),
            )
        )
    return result


def group_by_dish(
    items: Iterable,
    servings: Optional[ServingsMap] = None,
    member_names: Optional[Mapping[UUID, str]] = None,
) -> DishView:
    """
    Split rows into dish groups and custom rows.

    Rows with a meal form dish groups keyed by (meal_id, source_user_id);
    their amounts stay per row. Everything else is shown through
    group_by_product.

    Args:
        items: Flat shopping list rows
        servings: Stored serving multipliers; missing groups default to 1
        member_names: Display names used to order groups of the same meal

    Returns:
        DishView with dishes sorted by meal name then member name
    """
    servings = servings or ServingsMap()
    member_names = member_names or {}

    dish_items: Dict[DishGroupKey, list] = {}
    meals: Dict[DishGroupKey, object] = {}
    custom = []

    for item in items:
        if item.meal_id is None or item.meal is None:
            custom.append(item)
            continue
        key = DishGroupKey(item.meal_id, item.source_user_id)
        dish_items.setdefault(key, []).append(item)
        meals.setdefault(key, item.meal)

    def member_name(user_id: Optional[UUID]) -> str:
        if user_id is None:
            return ""
        return member_names.get(user_id) or str(user_id)

    dishes = [
        DishGroup(
            key=key,
            meal=meals[key],
            servings=servings.get(key),
            items=sorted(rows, key=lambda r: collation_key(_item_name(r))),
            all_checked=all(bool(r.is_checked) for r in rows),
        )
        for key, rows in dish_items.items()
    ]
    dishes.sort(
        key=lambda d: (
            collation_key(getattr(d.meal, "name", "") or ""),
            collation_key(member_name(d.source_user_id)),
        )
    )

    return DishView(dishes=dishes, custom=group_by_product(custom))
