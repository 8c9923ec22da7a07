from __future__ import annotations

from dataclasses import dataclass, field, replace
from fractions import Fraction
from pathlib import Path
import re
from typing import Any, Mapping, Union

from ..units import Quantity


Amount = Union[Quantity, str, None]

SERVINGS_RE = re.compile(r"^\s*(\d+)")


@dataclass(frozen=True)
class Ingredient:
    name: str
    quantity: Amount = None
    note: str | None = None
    fixed: bool = False


@dataclass(frozen=True)
class Cookware:
    name: str
    quantity: Amount = None


@dataclass(frozen=True)
class Timer:
    name: str | None
    quantity: Amount = None


@dataclass(frozen=True)
class Step:
    number: int
    text: str
    section: str | None = None


@dataclass(frozen=True)
class RecipeDocument:
    metadata: Mapping[str, Any] = field(default_factory=dict)
    steps: tuple[Step, ...] = ()
    ingredients: tuple[Ingredient, ...] = ()
    cookware: tuple[Cookware, ...] = ()
    timers: tuple[Timer, ...] = ()
    notes: tuple[str, ...] = ()
    source: Path | None = None

    @property
    def title(self) -> str | None:
        title = self.metadata.get("title")
        if title in (None, ""):
            return None
        return str(title)

    @property
    def servings(self) -> int | None:
        return parse_servings(self.metadata.get("servings", self.metadata.get("serves")))

    @property
    def tags(self) -> list[str]:
        return normalize_list(self.metadata.get("tags"))

    @property
    def aliases(self) -> list[str]:
        return metadata_aliases(self.metadata)

    def scaled(self, factor: Fraction, servings: int | None = None) -> RecipeDocument:
        """Return a copy with every non-fixed numeric amount multiplied by ``factor``."""
        ingredients = tuple(
            item if item.fixed else replace(item, quantity=_scale_amount(item.quantity, factor))
            for item in self.ingredients
        )
        cookware = tuple(replace(item, quantity=_scale_amount(item.quantity, factor)) for item in self.cookware)
        metadata = dict(self.metadata)
        if servings is not None:
            metadata["servings"] = servings
        return replace(self, metadata=metadata, ingredients=ingredients, cookware=cookware)


def _scale_amount(amount: Amount, factor: Fraction) -> Amount:
    if isinstance(amount, Quantity):
        return amount.scaled(factor)
    return amount


def parse_servings(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    match = SERVINGS_RE.match(str(value))
    if not match:
        return None
    servings = int(match.group(1))
    return servings if servings > 0 else None


def normalize_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def metadata_aliases(metadata: Mapping[str, Any]) -> list[str]:
    return normalize_list(metadata.get("aliases", metadata.get("alias")))
