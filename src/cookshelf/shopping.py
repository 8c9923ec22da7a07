from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Iterable

from .aisle import OTHER_CATEGORY, AisleConfig
from .domain import RecipeDocument
from .index import normalize_name
from .units import Quantity, UnitTable, format_quantity, parse_amount


@dataclass
class ShoppingItem:
    name: str
    key: str
    category: str
    quantities: list[Quantity] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    def amounts(self) -> list[str]:
        return [format_quantity(q) for q in self.quantities] + list(self.texts)

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "amounts": self.amounts(),
            "sources": list(self.sources),
        }


@dataclass(frozen=True)
class ShoppingList:
    sections: tuple[tuple[str, tuple[ShoppingItem, ...]], ...]

    def items(self) -> list[ShoppingItem]:
        return [item for _, items in self.sections for item in items]

    def as_dict(self) -> dict[str, Any]:
        return {category: [item.as_dict() for item in items] for category, items in self.sections}


def parse_scaled_reference(text: str) -> tuple[str, Fraction]:
    """Split ``name:factor`` into the reference and its scale factor (default 1)."""
    reference, sep, factor_text = text.rpartition(":")
    if not sep:
        return text.strip(), Fraction(1)
    factor = parse_amount(factor_text)
    if factor is None:
        return text.strip(), Fraction(1)
    if factor <= 0:
        raise ValueError(f"scale factor must be positive: {factor_text!r}")
    if not reference.strip():
        raise ValueError(f"missing recipe reference in {text!r}")
    return reference.strip(), factor


def build_shopping_list(
    recipes: Iterable[tuple[str, RecipeDocument, Fraction]],
    aisle: AisleConfig | None = None,
    units: UnitTable | None = None,
) -> ShoppingList:
    units = units or UnitTable()
    merged: dict[str, ShoppingItem] = {}

    for label, document, factor in recipes:
        scaled = document if factor == 1 else document.scaled(factor)
        for ingredient in scaled.ingredients:
            key = normalize_name(ingredient.name)
            if not key:
                continue
            item = merged.get(key)
            if item is None:
                category = (aisle.category_of(ingredient.name) if aisle else None) or OTHER_CATEGORY
                item = ShoppingItem(name=ingredient.name, key=key, category=category)
                merged[key] = item
            if label not in item.sources:
                item.sources.append(label)
            _add_amount(item, ingredient.quantity, units)

    return ShoppingList(sections=_group(merged.values(), aisle))


def _add_amount(item: ShoppingItem, amount: Quantity | str | None, units: UnitTable) -> None:
    if amount is None:
        return
    if isinstance(amount, str):
        if amount not in item.texts:
            item.texts.append(amount)
        return
    for idx, existing in enumerate(item.quantities):
        converted = units.convert(amount, existing.unit)
        if converted is not None:
            item.quantities[idx] = Quantity(existing.magnitude + converted.magnitude, existing.unit)
            return
    item.quantities.append(amount)


def _group(items: Iterable[ShoppingItem], aisle: AisleConfig | None) -> tuple[tuple[str, tuple[ShoppingItem, ...]], ...]:
    by_category: dict[str, list[ShoppingItem]] = {}
    for item in items:
        by_category.setdefault(item.category, []).append(item)

    order = list(aisle.categories) if aisle else []
    known = [name for name in order if name in by_category and name != OTHER_CATEGORY]
    extra = sorted(name for name in by_category if name not in order and name != OTHER_CATEGORY)
    if OTHER_CATEGORY in by_category:
        extra.append(OTHER_CATEGORY)

    return tuple(
        (name, tuple(sorted(by_category[name], key=lambda item: (item.key, item.name))))
        for name in known + extra
    )
