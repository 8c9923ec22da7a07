"""Tree-walking interpreter for report definitions.

Evaluation runs in two phases. :meth:`Evaluator.bind` resolves every recipe
reference of a definition through the resolver and scales each document to
its servings target. :meth:`Evaluator.evaluate` then walks the tree against
that closed set of bindings without touching the filesystem, so the same
definition over the same recipe files always renders the same result.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
import logging
from typing import Any, Iterator, Mapping, Union

from ..aisle import AisleConfig
from ..config import EffectiveConfig
from ..domain import Cookware, Ingredient, RecipeDocument, Step
from ..errors import (
    DepthLimitError,
    DivideByZeroError,
    IncompatibleUnitsError,
    TypeMismatchError,
    UnknownFieldError,
    UnresolvedReferenceError,
    UnscalableRecipeError,
)
from ..index import IndexEntry, normalize_name
from ..resolver import Ambiguous, NotFound, Resolver
from ..units import Quantity, UnitTable, format_quantity
from .nodes import (
    BinaryOp,
    Conditional,
    Convert,
    FieldAccess,
    Literal,
    Location,
    Logical,
    Loop,
    Name,
    Negate,
    Node,
    Not,
    RecipeRef,
    ReportDefinition,
    Sequence,
    Slot,
    Text,
)
from .result import Fragment, Provenance, ReportResult, assemble_lines


logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 64

CHAIN_GROUPS = (frozenset({"+", "-"}), frozenset({"*", "/"}))


class RecipeField(Enum):
    TITLE = "title"
    NAME = "name"
    SERVINGS = "servings"
    TAGS = "tags"
    HAS_TAG = "has_tag"
    COOKWARE = "cookware"
    INGREDIENTS = "ingredients"
    INGREDIENT = "ingredient"
    STEPS = "steps"
    META = "meta"


class IngredientField(Enum):
    NAME = "name"
    QUANTITY = "quantity"
    NOTE = "note"
    CATEGORY = "category"
    FIXED = "fixed"


class QuantityField(Enum):
    VALUE = "value"
    UNIT = "unit"


class CookwareField(Enum):
    NAME = "name"
    QUANTITY = "quantity"


class StepField(Enum):
    NUMBER = "number"
    TEXT = "text"
    SECTION = "section"


ARGUMENT_FIELDS = {RecipeField.HAS_TAG, RecipeField.INGREDIENT, RecipeField.META}


@dataclass(frozen=True)
class BoundRecipe:
    reference: str
    entry: IndexEntry
    document: RecipeDocument
    factor: Fraction = Fraction(1)

    def provenance(self, ingredient: str | None = None) -> Provenance:
        return Provenance(self.reference, self.entry.relative, ingredient)


@dataclass(frozen=True)
class BoundIngredient:
    recipe: BoundRecipe
    ingredient: Ingredient


@dataclass(frozen=True)
class BoundCookware:
    recipe: BoundRecipe
    cookware: Cookware


@dataclass(frozen=True)
class BoundStep:
    recipe: BoundRecipe
    step: Step


Value = Union[Quantity, str, bool, None, BoundRecipe, BoundIngredient, BoundCookware, BoundStep, tuple]


class Evaluator:
    def __init__(
        self,
        units: UnitTable | None = None,
        aisle: AisleConfig | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        fuzzy: bool | None = None,
    ) -> None:
        self.units = units or UnitTable()
        self.aisle = aisle
        self.max_depth = max_depth
        self.fuzzy = fuzzy

    @classmethod
    def from_config(cls, cfg: EffectiveConfig, aisle: AisleConfig | None = None) -> Evaluator:
        return cls(units=UnitTable(cfg.units.conversions), aisle=aisle, max_depth=cfg.report.max_depth)

    def run(self, definition: ReportDefinition, resolver: Resolver) -> ReportResult:
        bindings = self.bind(definition, resolver)
        return self.evaluate(definition, bindings)

    def bind(self, definition: ReportDefinition, resolver: Resolver) -> dict[str, BoundRecipe]:
        """Resolve and scale every recipe the definition mentions, before any output."""
        bindings: dict[str, BoundRecipe] = {}
        for ref in definition.references():
            resolution = resolver.resolve(ref.reference, fuzzy=self.fuzzy)
            if isinstance(resolution, NotFound):
                raise UnresolvedReferenceError(ref.reference, location=ref.loc)
            if isinstance(resolution, Ambiguous):
                raise UnresolvedReferenceError(
                    ref.reference,
                    [candidate.entry.relative for candidate in resolution.candidates],
                    location=ref.loc,
                )

            document = resolution.document
            factor = Fraction(1)
            target = definition.target_servings(ref)
            if target is not None:
                native = document.servings
                if native is None:
                    raise UnscalableRecipeError(
                        f"Cannot scale {resolution.entry.relative} to {target} servings: it declares no servings",
                        ref.loc,
                    )
                factor = Fraction(target, native)
                if factor != 1:
                    document = document.scaled(factor, servings=target)
            logger.debug("Bound %r to %s (x%s)", ref.reference, resolution.entry.relative, factor)
            bindings[ref.reference] = BoundRecipe(ref.reference, resolution.entry, document, factor)
        return bindings

    def evaluate(self, definition: ReportDefinition, bindings: Mapping[str, BoundRecipe]) -> ReportResult:
        run = _Run(self, bindings)
        fragments = list(run.render(definition.body, {}, 0))
        return ReportResult(title=definition.title, lines=assemble_lines(fragments))


def evaluate_report(
    definition: ReportDefinition,
    resolver: Resolver,
    units: UnitTable | None = None,
    aisle: AisleConfig | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ReportResult:
    return Evaluator(units=units, aisle=aisle, max_depth=max_depth).run(definition, resolver)


class _Run:
    """State for one evaluation; never shared between calls."""

    def __init__(self, evaluator: Evaluator, bindings: Mapping[str, BoundRecipe]) -> None:
        self.units = evaluator.units
        self.aisle = evaluator.aisle
        self.max_depth = evaluator.max_depth
        self.bindings = bindings
        self.context: list[Provenance] = []
        self.collected: list[Provenance] = []

    def render(self, node: Node, scope: dict[str, Value], depth: int) -> Iterator[Fragment]:
        self._check_depth(node, depth)
        if isinstance(node, Text):
            yield Fragment(node.text, tuple(self.context))
        elif isinstance(node, Sequence):
            for child in node.children:
                yield from self.render(child, scope, depth + 1)
        elif isinstance(node, Slot):
            self.collected = []
            value = self.eval(node.expr, scope, depth + 1)
            text = format_value(value, node.style, node.decimals)
            yield Fragment(text, _merge(self.context, self.collected))
        elif isinstance(node, Loop):
            yield from self._loop(node, scope, depth)
        elif isinstance(node, Conditional):
            for cond, body in node.branches:
                if self._condition(cond, scope, depth + 1):
                    yield from self.render(body, scope, depth + 1)
                    return
            if node.otherwise is not None:
                yield from self.render(node.otherwise, scope, depth + 1)
        else:
            raise TypeMismatchError(f"{type(node).__name__} cannot be rendered", node.loc)

    def _loop(self, node: Loop, scope: dict[str, Value], depth: int) -> Iterator[Fragment]:
        items = self.eval(node.iterable, scope, depth + 1)
        if not isinstance(items, tuple):
            raise TypeMismatchError(f"cannot loop over {describe(items)}", node.iterable.loc)
        for item in items:
            inner = {**scope, node.variable: item}
            if node.condition is not None and not self._condition(node.condition, inner, depth + 1):
                continue
            origin = provenance_of(item)
            if origin is not None:
                self.context.append(origin)
            try:
                yield from self.render(node.body, inner, depth + 1)
            finally:
                if origin is not None:
                    self.context.pop()

    def _condition(self, node: Node, scope: dict[str, Value], depth: int) -> bool:
        value = self.eval(node, scope, depth)
        if not isinstance(value, bool):
            raise TypeMismatchError(f"condition must be true or false, got {describe(value)}", node.loc)
        return value

    def _check_depth(self, node: Node, depth: int) -> None:
        if depth > self.max_depth:
            raise DepthLimitError(f"report nesting exceeds {self.max_depth} levels", node.loc)

    def eval(self, node: Node, scope: dict[str, Value], depth: int) -> Value:
        self._check_depth(node, depth)
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, RecipeRef):
            recipe = self.bindings.get(node.reference)
            if recipe is None:
                raise UnresolvedReferenceError(node.reference, location=node.loc)
            self._collect(recipe.provenance())
            return recipe
        if isinstance(node, Name):
            if node.name not in scope:
                raise TypeMismatchError(f"name {node.name!r} is not bound here", node.loc)
            value = scope[node.name]
            origin = provenance_of(value)
            if origin is not None:
                self._collect(origin)
            return value
        if isinstance(node, FieldAccess):
            target = self.eval(node.target, scope, depth + 1)
            argument = None if node.argument is None else self.eval(node.argument, scope, depth + 1)
            return self._field(target, node, argument)
        if isinstance(node, BinaryOp):
            group = _chain_group(node.op)
            if group is None:
                left = self.eval(node.left, scope, depth + 1)
                right = self.eval(node.right, scope, depth + 1)
                return self._binary(node, left, right)
            # A left-leaning run of same-precedence operators is one level deep.
            pending: list[BinaryOp] = []
            current: Node = node
            while isinstance(current, BinaryOp) and current.op in group:
                pending.append(current)
                current = current.left
            value = self.eval(current, scope, depth + 1)
            for item in reversed(pending):
                value = self._binary(item, value, self.eval(item.right, scope, depth + 1))
            return value
        if isinstance(node, Logical):
            pending_logical: list[Logical] = []
            current = node
            while isinstance(current, Logical) and current.op == node.op:
                pending_logical.append(current)
                current = current.left
            result = self._boolean(current, scope, depth + 1)
            for item in reversed(pending_logical):
                if result is (item.op == "or"):
                    return result
                result = self._boolean(item.right, scope, depth + 1)
            return result
        if isinstance(node, Not):
            return not self._boolean(node.operand, scope, depth + 1)
        if isinstance(node, Negate):
            value = self.eval(node.operand, scope, depth + 1)
            if not isinstance(value, Quantity):
                raise TypeMismatchError(f"cannot negate {describe(value)}", node.loc)
            return Quantity(-value.magnitude, value.unit)
        if isinstance(node, Convert):
            value = self.eval(node.operand, scope, depth + 1)
            if not isinstance(value, Quantity):
                raise TypeMismatchError(f"cannot convert {describe(value)} to {node.unit}", node.loc)
            converted = self.units.convert(value, node.unit)
            if converted is None:
                raise IncompatibleUnitsError(value.unit, node.unit, node.loc)
            return converted
        raise TypeMismatchError(f"{type(node).__name__} is not an expression", node.loc)

    def _boolean(self, node: Node, scope: dict[str, Value], depth: int) -> bool:
        value = self.eval(node, scope, depth)
        if not isinstance(value, bool):
            raise TypeMismatchError(f"expected true or false, got {describe(value)}", node.loc)
        return value

    def _collect(self, origin: Provenance) -> None:
        if origin not in self.collected:
            self.collected.append(origin)

    def _field(self, target: Value, node: FieldAccess, argument: Value) -> Value:
        if isinstance(target, BoundRecipe):
            kind = _field_kind(RecipeField, node, f"recipe {target.reference!r}")
            _check_argument(kind in ARGUMENT_FIELDS, node, argument)
            return self._recipe_field(target, kind, argument, node)
        if isinstance(target, BoundIngredient):
            kind = _field_kind(IngredientField, node, f"ingredient {target.ingredient.name!r}")
            _check_argument(False, node, argument)
            return self._ingredient_field(target, kind)
        if isinstance(target, Quantity):
            kind = _field_kind(QuantityField, node, "quantity")
            _check_argument(False, node, argument)
            if kind is QuantityField.VALUE:
                return Quantity(target.magnitude)
            return target.unit
        if isinstance(target, BoundCookware):
            kind = _field_kind(CookwareField, node, f"cookware {target.cookware.name!r}")
            _check_argument(False, node, argument)
            if kind is CookwareField.NAME:
                return target.cookware.name
            return target.cookware.quantity
        if isinstance(target, BoundStep):
            kind = _field_kind(StepField, node, f"step {target.step.number}")
            _check_argument(False, node, argument)
            if kind is StepField.NUMBER:
                return Quantity(Fraction(target.step.number))
            if kind is StepField.TEXT:
                return target.step.text
            return target.step.section
        raise UnknownFieldError(node.field, describe(target), node.loc)

    def _recipe_field(self, recipe: BoundRecipe, kind: RecipeField, argument: Value, node: FieldAccess) -> Value:
        document = recipe.document
        if kind is RecipeField.TITLE:
            return document.title
        if kind is RecipeField.NAME:
            return recipe.entry.name
        if kind is RecipeField.SERVINGS:
            servings = document.servings
            return None if servings is None else Quantity(Fraction(servings))
        if kind is RecipeField.TAGS:
            return tuple(document.tags)
        if kind is RecipeField.HAS_TAG:
            wanted = _text_argument(argument, node).casefold()
            return any(tag.casefold() == wanted for tag in document.tags)
        if kind is RecipeField.COOKWARE:
            return tuple(BoundCookware(recipe, item) for item in document.cookware)
        if kind is RecipeField.INGREDIENTS:
            return tuple(BoundIngredient(recipe, item) for item in document.ingredients)
        if kind is RecipeField.INGREDIENT:
            return self._ingredient_total(recipe, _text_argument(argument, node), node)
        if kind is RecipeField.STEPS:
            return tuple(BoundStep(recipe, step) for step in document.steps)
        key = _text_argument(argument, node)
        if key not in document.metadata:
            raise UnknownFieldError(f"meta({key!r})", f"recipe {recipe.reference!r}", node.loc)
        return _metadata_value(document.metadata[key])

    def _ingredient_field(self, bound: BoundIngredient, kind: IngredientField) -> Value:
        ingredient = bound.ingredient
        self._collect(bound.recipe.provenance(ingredient.name))
        if kind is IngredientField.NAME:
            return ingredient.name
        if kind is IngredientField.QUANTITY:
            return ingredient.quantity
        if kind is IngredientField.NOTE:
            return ingredient.note
        if kind is IngredientField.CATEGORY:
            return None if self.aisle is None else self.aisle.category_of(ingredient.name)
        return ingredient.fixed

    def _ingredient_total(self, recipe: BoundRecipe, name: str, node: FieldAccess) -> Value:
        wanted = normalize_name(name)
        matches = [item for item in recipe.document.ingredients if normalize_name(item.name) == wanted]
        if not matches:
            raise UnknownFieldError(f"ingredient({name!r})", f"recipe {recipe.reference!r}", node.loc)
        self._collect(recipe.provenance(matches[0].name))
        if len(matches) == 1:
            return matches[0].quantity

        total: Quantity | None = None
        for item in matches:
            if not isinstance(item.quantity, Quantity):
                raise TypeMismatchError(
                    f"ingredient {name!r} of {recipe.reference!r} has an amount that cannot be added: "
                    f"{describe(item.quantity)}",
                    node.loc,
                )
            total = item.quantity if total is None else self._add(total, item.quantity, node.loc)
        return total

    def _binary(self, node: BinaryOp, left: Value, right: Value) -> Value:
        op = node.op
        if op in ("==", "!="):
            equal = self._equal(left, right, node.loc)
            return equal if op == "==" else not equal
        if op == "in":
            return self._contains(left, right, node.loc)
        if op in ("<", "<=", ">", ">="):
            return self._order(op, left, right, node.loc)

        if op == "+" and isinstance(left, str) and isinstance(right, str):
            return left + right
        if not isinstance(left, Quantity) or not isinstance(right, Quantity):
            raise TypeMismatchError(f"cannot apply {op!r} to {describe(left)} and {describe(right)}", node.loc)
        if op == "+":
            return self._add(left, right, node.loc)
        if op == "-":
            return self._add(left, Quantity(-right.magnitude, right.unit), node.loc)
        if op == "*":
            if left.unit is not None and right.unit is not None:
                raise IncompatibleUnitsError(left.unit, right.unit, node.loc)
            return Quantity(left.magnitude * right.magnitude, left.unit or right.unit)
        return self._divide(left, right, node.loc)

    def _add(self, left: Quantity, right: Quantity, loc: Location) -> Quantity:
        factor = self.units.factor(right.unit, left.unit)
        if factor is None:
            raise IncompatibleUnitsError(left.unit, right.unit, loc)
        return Quantity(left.magnitude + right.magnitude * factor, left.unit)

    def _divide(self, left: Quantity, right: Quantity, loc: Location) -> Quantity:
        if right.unit is None:
            if right.magnitude == 0:
                raise DivideByZeroError("division by zero", loc)
            return Quantity(left.magnitude / right.magnitude, left.unit)
        factor = self.units.factor(right.unit, left.unit)
        if left.unit is None or factor is None:
            raise IncompatibleUnitsError(left.unit, right.unit, loc)
        if right.magnitude == 0:
            raise DivideByZeroError("division by zero", loc)
        return Quantity(left.magnitude / (right.magnitude * factor))

    def _equal(self, left: Value, right: Value, loc: Location) -> bool:
        if left is None or right is None:
            return left is right
        if isinstance(left, Quantity) and isinstance(right, Quantity):
            factor = self.units.factor(right.unit, left.unit)
            if factor is None:
                raise IncompatibleUnitsError(left.unit, right.unit, loc)
            return left.magnitude == right.magnitude * factor
        if type(left) is not type(right):
            raise TypeMismatchError(f"cannot compare {describe(left)} with {describe(right)}", loc)
        return left == right

    def _order(self, op: str, left: Value, right: Value, loc: Location) -> bool:
        if isinstance(left, Quantity) and isinstance(right, Quantity):
            factor = self.units.factor(right.unit, left.unit)
            if factor is None:
                raise IncompatibleUnitsError(left.unit, right.unit, loc)
            a, b = left.magnitude, right.magnitude * factor
        elif isinstance(left, str) and isinstance(right, str):
            a, b = left, right
        else:
            raise TypeMismatchError(f"cannot order {describe(left)} and {describe(right)}", loc)
        if op == "<":
            return a < b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        return a >= b

    def _contains(self, left: Value, right: Value, loc: Location) -> bool:
        if not isinstance(left, str):
            raise TypeMismatchError(f"'in' needs text on the left, got {describe(left)}", loc)
        if isinstance(right, str):
            return left.casefold() in right.casefold()
        if isinstance(right, tuple):
            wanted = left.casefold()
            return any((display_name(item) or "").casefold() == wanted for item in right)
        raise TypeMismatchError(f"'in' needs text or a list on the right, got {describe(right)}", loc)


def _chain_group(op: str) -> frozenset[str] | None:
    for group in CHAIN_GROUPS:
        if op in group:
            return group
    return None


def _field_kind(kinds: type[Enum], node: FieldAccess, target: str) -> Any:
    try:
        return kinds(node.field)
    except ValueError:
        raise UnknownFieldError(node.field, target, node.loc) from None


def _check_argument(expected: bool, node: FieldAccess, argument: Value) -> None:
    if expected and node.argument is None:
        raise TypeMismatchError(f"{node.field}() needs an argument", node.loc)
    if not expected and node.argument is not None:
        raise TypeMismatchError(f"{node.field} takes no argument", node.loc)


def _text_argument(argument: Value, node: FieldAccess) -> str:
    if not isinstance(argument, str):
        raise TypeMismatchError(f"{node.field}() needs a text argument, got {describe(argument)}", node.loc)
    return argument


def _metadata_value(value: Any) -> Value:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, (int, float)):
        return Quantity(Fraction(str(value)))
    if isinstance(value, (list, tuple)):
        return tuple(_metadata_value(item) for item in value)
    return str(value)


def _merge(*groups: list[Provenance]) -> tuple[Provenance, ...]:
    merged: list[Provenance] = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return tuple(merged)


def provenance_of(value: Value) -> Provenance | None:
    if isinstance(value, BoundIngredient):
        return value.recipe.provenance(value.ingredient.name)
    if isinstance(value, (BoundCookware, BoundStep)):
        return value.recipe.provenance()
    if isinstance(value, BoundRecipe):
        return value.provenance()
    return None


def display_name(value: Value) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, BoundRecipe):
        return value.document.title or value.entry.name
    if isinstance(value, BoundIngredient):
        return value.ingredient.name
    if isinstance(value, BoundCookware):
        return value.cookware.name
    if isinstance(value, BoundStep):
        return value.step.text
    return None


def describe(value: Value) -> str:
    if value is None:
        return "nothing"
    if isinstance(value, bool):
        return "a boolean"
    if isinstance(value, Quantity):
        return f"quantity {format_quantity(value)}"
    if isinstance(value, str):
        return f"text {value!r}"
    if isinstance(value, tuple):
        return "a list"
    if isinstance(value, BoundRecipe):
        return f"recipe {value.reference!r}"
    if isinstance(value, BoundIngredient):
        return f"ingredient {value.ingredient.name!r}"
    if isinstance(value, BoundCookware):
        return f"cookware {value.cookware.name!r}"
    return f"step {value.step.number}"


def format_value(value: Value, style: str = "auto", decimals: int = 3) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Quantity):
        return format_quantity(value, style, decimals)
    if isinstance(value, tuple):
        return ", ".join(format_value(item, style, decimals) for item in value)
    return display_name(value) or ""
