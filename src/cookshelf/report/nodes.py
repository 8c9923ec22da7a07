from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from ..index import normalize_reference


Location = tuple[int, int]


@dataclass(frozen=True, kw_only=True)
class Node:
    loc: Location = field(default=(1, 1), compare=False)


@dataclass(frozen=True)
class Text(Node):
    text: str


@dataclass(frozen=True)
class Sequence(Node):
    children: tuple[Node, ...]


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class RecipeRef(Node):
    reference: str
    binding: str | None = None


@dataclass(frozen=True)
class Name(Node):
    name: str


@dataclass(frozen=True)
class FieldAccess(Node):
    target: Node
    field: str
    argument: Node | None = None


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Logical(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Not(Node):
    operand: Node


@dataclass(frozen=True)
class Negate(Node):
    operand: Node


@dataclass(frozen=True)
class Convert(Node):
    operand: Node
    unit: str


@dataclass(frozen=True)
class Loop(Node):
    variable: str
    iterable: Node
    body: Node
    condition: Node | None = None


@dataclass(frozen=True)
class Conditional(Node):
    branches: tuple[tuple[Node, Node], ...]
    otherwise: Node | None = None


@dataclass(frozen=True)
class Slot(Node):
    expr: Node
    style: str = "auto"
    decimals: int = 3


@dataclass(frozen=True)
class ReportDefinition:
    body: Node
    title: str | None = None
    servings: int | Mapping[str, int] | None = None
    bindings: Mapping[str, str] = field(default_factory=dict)
    source: str | None = None

    def references(self) -> list[RecipeRef]:
        """Recipe references in document order, one per distinct reference string."""
        seen: set[str] = set()
        refs: list[RecipeRef] = []
        for node in iter_nodes(self.body):
            if isinstance(node, RecipeRef) and node.reference not in seen:
                seen.add(node.reference)
                refs.append(node)
        return refs

    def target_servings(self, ref: RecipeRef) -> int | None:
        if self.servings is None or isinstance(self.servings, int):
            return self.servings
        wanted = normalize_reference(ref.reference)
        for key, value in self.servings.items():
            if key == ref.binding or key == ref.reference or normalize_reference(key) == wanted:
                return value
        return None


def iter_nodes(node: Node) -> Iterator[Node]:
    stack: list[Node] = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


def children(node: Node) -> list[Node]:
    if isinstance(node, Sequence):
        return list(node.children)
    if isinstance(node, FieldAccess):
        return [node.target] + ([node.argument] if node.argument is not None else [])
    if isinstance(node, (BinaryOp, Logical)):
        return [node.left, node.right]
    if isinstance(node, (Not, Negate, Convert)):
        return [node.operand]
    if isinstance(node, Loop):
        return [node.iterable] + ([node.condition] if node.condition is not None else []) + [node.body]
    if isinstance(node, Conditional):
        out: list[Node] = []
        for cond, body in node.branches:
            out.extend((cond, body))
        if node.otherwise is not None:
            out.append(node.otherwise)
        return out
    if isinstance(node, Slot):
        return [node.expr]
    return []
