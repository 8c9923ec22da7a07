"""Parser for report definitions.

A report file is optional YAML front matter followed by a template body::

    ---
    title: Soup night
    servings: 8
    recipes:
      soup: tomato soup
    let:
      tomatoes: soup.ingredient("tomato")
    ---
    {% for item in soup.ingredients if item.category == "produce" %}
    - {{ item.name }}: {{ item.quantity }}
    {% endfor %}
    Tomatoes: {{ tomatoes to "kg" | fixed(2) }}

Names are bound at parse time: loop variables, ``let`` names and recipe
binding names. ``let`` definitions may refer to each other, but a cycle is a
syntax error.
"""
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, replace
from fractions import Fraction
from pathlib import Path
import re
from typing import Any

import yaml

from ..domain import FRONTMATTER_RE
from ..errors import MissingFileError, ReportSyntaxError
from ..units import Quantity, canonical_unit
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
    children as child_nodes,
    iter_nodes,
)


DEFAULT_MAX_NESTING = 50
# Bound on the height of the bound tree, operator chains and let expansions included.
DEFAULT_MAX_DEPTH = 200

TAG_RE = re.compile(r"\{\{(?P<expr>.*?)\}\}|\{%(?P<block>.*?)%\}|\{#.*?#\}", re.DOTALL)
TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
    |(?P<number>\d+(?:\.\d+)?)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<op>==|!=|<=|>=|[-+*/<>().,|])
    |(?P<name>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)
IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
KEYWORDS = {"and", "or", "not", "in", "to", "true", "false", "if", "for"}
COMPARISONS = {"==", "!=", "<", "<=", ">", ">=", "in"}
FILTERS = {"fixed", "fraction"}


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    offset: int


class _Source:
    def __init__(self, text: str, base_line: int = 0) -> None:
        self.text = text
        self.base_line = base_line
        self._starts = [0] + [idx + 1 for idx, char in enumerate(text) if char == "\n"]

    def location(self, offset: int) -> Location:
        line = bisect_right(self._starts, offset) - 1
        return (self.base_line + line + 1, offset - self._starts[line] + 1)


def parse_report_file(
    path: Path | str,
    max_nesting: int = DEFAULT_MAX_NESTING,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ReportDefinition:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MissingFileError(f"Report not found: {path}") from exc
    return parse_report(text, source=str(path), max_nesting=max_nesting, max_depth=max_depth)


def parse_report(
    text: str,
    source: str | None = None,
    max_nesting: int = DEFAULT_MAX_NESTING,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ReportDefinition:
    front, body, base_line = _split_frontmatter(text)

    title = front.get("title")
    bindings = _parse_bindings(front.get("recipes", {}))
    servings = _parse_servings(front.get("servings"))
    raw_lets = front.get("let", {})
    if not isinstance(raw_lets, dict):
        raise ReportSyntaxError("'let' must be a mapping of name to expression", 1, 1)

    lets: dict[str, Node] = {}
    for name, expr_text in raw_lets.items():
        name = str(name)
        _check_identifier(name, "let name")
        if name in bindings:
            raise ReportSyntaxError(f"let name {name!r} shadows a recipe binding", 1, 1)
        lets[name] = _check_depth(
            _ExpressionParser(_Source(str(expr_text)), max_nesting, label=f"let {name!r}").parse_all(),
            max_depth,
        )

    tree = _check_depth(_TemplateParser(_Source(body, base_line), max_nesting).parse(), max_depth)
    binder = _Binder(lets, bindings, max_depth)
    for name in lets:
        binder.let(name, (), (1, 1), 0)
    bound = _check_depth(binder.bind(tree, frozenset()), max_depth)

    definition = ReportDefinition(
        body=bound,
        title=None if title is None else str(title),
        servings=servings,
        bindings=bindings,
        source=source,
    )
    _check_servings(definition)
    return definition


def _split_frontmatter(text: str) -> tuple[dict[str, Any], str, int]:
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text, 0
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ReportSyntaxError(f"invalid YAML front matter: {exc}", 1, 1) from exc
    if not isinstance(data, dict):
        raise ReportSyntaxError("front matter must be a mapping", 1, 1)
    return data, text[match.end() :], match.group(0).count("\n")


def _parse_bindings(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ReportSyntaxError("'recipes' must be a mapping of name to recipe reference", 1, 1)
    bindings: dict[str, str] = {}
    for name, reference in value.items():
        name = str(name)
        _check_identifier(name, "recipe binding")
        if not isinstance(reference, str) or not reference.strip():
            raise ReportSyntaxError(f"recipe binding {name!r} needs a reference string", 1, 1)
        bindings[name] = reference.strip()
    return bindings


def _parse_servings(value: Any) -> int | dict[str, int] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(key): _servings_value(item) for key, item in value.items()}
    return _servings_value(value)


def _servings_value(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ReportSyntaxError(f"servings must be a positive integer, got {value!r}", 1, 1)
    return value


def _check_identifier(name: str, what: str) -> None:
    if not IDENT_RE.match(name) or name in KEYWORDS:
        raise ReportSyntaxError(f"invalid {what}: {name!r}", 1, 1)


def _check_servings(definition: ReportDefinition) -> None:
    targets: dict[str, int | None] = {}
    for ref in _all_refs(definition):
        target = definition.target_servings(ref)
        if ref.reference in targets and targets[ref.reference] != target:
            raise ReportSyntaxError(
                f"conflicting servings for recipe {ref.reference!r}: {targets[ref.reference]} and {target}",
                *ref.loc,
            )
        targets[ref.reference] = target


def _all_refs(definition: ReportDefinition) -> list[RecipeRef]:
    return [node for node in iter_nodes(definition.body) if isinstance(node, RecipeRef)]


def _check_depth(node: Node, limit: int) -> Node:
    """Return ``node`` unchanged, or raise if the tree is taller than ``limit``."""
    stack: list[tuple[Node, int]] = [(node, 0)]
    while stack:
        current, depth = stack.pop()
        if depth > limit:
            raise ReportSyntaxError(f"report nested deeper than {limit} levels", *current.loc)
        stack.extend((child, depth + 1) for child in child_nodes(current))
    return node


class _TemplateParser:
    def __init__(self, source: _Source, max_nesting: int) -> None:
        self.source = source
        self.max_nesting = max_nesting
        self.items = self._tokenize(source.text)
        self.pos = 0

    def parse(self) -> Node:
        body, _ = self._parse_body(set(), 0)
        return body

    def _tokenize(self, text: str) -> list[tuple[str, str, int]]:
        items: list[tuple[str, str, int]] = []
        pos = 0
        for match in TAG_RE.finditer(text):
            start, end = match.start(), match.end()
            is_expr = match.group("expr") is not None
            if not is_expr:
                # A block tag or comment alone on its line takes the whole line with it.
                line_start = text.rfind("\n", 0, start) + 1
                line_end = text.find("\n", end)
                tail_end = len(text) if line_end == -1 else line_end
                if not text[line_start:start].strip() and not text[end:tail_end].strip():
                    start = max(line_start, pos)
                    end = tail_end if line_end == -1 else line_end + 1
            if start > pos:
                items.append(("text", text[pos:start], pos))
            if is_expr:
                items.append(("expr", match.group("expr"), match.start("expr")))
            elif match.group("block") is not None:
                items.append(("block", match.group("block"), match.start("block")))
            pos = end
        if pos < len(text):
            items.append(("text", text[pos:], pos))
        return items

    def _parse_body(self, stop: set[str], depth: int) -> tuple[Node, tuple[str, _ExpressionParser, int]]:
        if depth > self.max_nesting:
            raise ReportSyntaxError("template nesting too deep", *self.source.location(self._offset()))
        children: list[Node] = []
        start = self._offset()
        while self.pos < len(self.items):
            kind, content, offset = self.items[self.pos]
            self.pos += 1
            loc = self.source.location(offset)
            if kind == "text":
                children.append(Text(content, loc=loc))
                continue
            if kind == "expr":
                children.append(self._slot(content, offset))
                continue

            parser = self._expression(content, offset)
            keyword = parser.expect("name")
            word = keyword.value
            if word in stop:
                return Sequence(tuple(children), loc=self.source.location(start)), (word, parser, offset)
            if word == "for":
                children.append(self._loop(parser, loc, depth))
            elif word == "if":
                children.append(self._conditional(parser, loc, depth))
            else:
                raise ReportSyntaxError(f"unexpected {{% {word} %}}", *self.source.location(keyword.offset))
        if stop:
            expected = " or ".join(sorted(stop))
            raise ReportSyntaxError(f"missing {{% {expected} %}}", *self.source.location(len(self.source.text)))
        return Sequence(tuple(children), loc=self.source.location(start)), ("", self._expression("", 0), 0)

    def _offset(self) -> int:
        if self.pos < len(self.items):
            return self.items[self.pos][2]
        return len(self.source.text)

    def _expression(self, text: str, offset: int) -> _ExpressionParser:
        return _ExpressionParser(self.source, self.max_nesting, start=offset, end=offset + len(text))

    def _slot(self, content: str, offset: int) -> Node:
        parser = self._expression(content, offset)
        expr = parser.parse_expr()
        style, decimals = "auto", 3
        if parser.accept("op", "|"):
            name = parser.expect("name")
            if name.value not in FILTERS:
                raise ReportSyntaxError(f"unknown format {name.value!r}", *self.source.location(name.offset))
            style = name.value
            if style == "fixed":
                parser.expect("op", "(")
                digits = parser.expect("number")
                if not digits.value.isdigit():
                    raise ReportSyntaxError(
                        "fixed() needs a whole number of decimals", *self.source.location(digits.offset)
                    )
                decimals = int(digits.value)
                parser.expect("op", ")")
        parser.expect_end()
        return Slot(expr, style=style, decimals=decimals, loc=self.source.location(offset))

    def _loop(self, parser: _ExpressionParser, loc: Location, depth: int) -> Node:
        variable = parser.expect("name")
        if variable.value in KEYWORDS:
            raise ReportSyntaxError(f"invalid loop variable {variable.value!r}", *self.source.location(variable.offset))
        parser.expect("name", "in")
        iterable = parser.parse_expr()
        condition = None
        if parser.accept("name", "if"):
            condition = parser.parse_expr()
        parser.expect_end()

        body, (_, closing, _) = self._parse_body({"endfor"}, depth + 1)
        closing.expect_end()
        return Loop(variable.value, iterable, body, condition, loc=loc)

    def _conditional(self, parser: _ExpressionParser, loc: Location, depth: int) -> Node:
        branches: list[tuple[Node, Node]] = []
        cond = parser.parse_expr()
        parser.expect_end()
        while True:
            body, (word, closing, _) = self._parse_body({"elif", "else", "endif"}, depth + 1)
            branches.append((cond, body))
            if word == "elif":
                cond = closing.parse_expr()
                closing.expect_end()
                continue
            closing.expect_end()
            if word == "endif":
                return Conditional(tuple(branches), None, loc=loc)
            otherwise, (_, closing, _) = self._parse_body({"endif"}, depth + 1)
            closing.expect_end()
            return Conditional(tuple(branches), otherwise, loc=loc)


class _ExpressionParser:
    def __init__(
        self,
        source: _Source,
        max_nesting: int,
        start: int = 0,
        end: int | None = None,
        label: str | None = None,
    ) -> None:
        self.source = source
        self.max_nesting = max_nesting
        self.label = label
        self.end = len(source.text) if end is None else end
        self.tokens = self._tokenize(start)
        self.pos = 0
        self.depth = 0

    def _error(self, message: str, offset: int) -> ReportSyntaxError:
        if self.label:
            message = f"{self.label}: {message}"
        return ReportSyntaxError(message, *self.source.location(offset))

    def _tokenize(self, start: int) -> list[_Token]:
        tokens: list[_Token] = []
        pos = start
        text = self.source.text
        while pos < self.end:
            match = TOKEN_RE.match(text, pos, self.end)
            if not match:
                raise self._error(f"unexpected character {text[pos]!r}", pos)
            kind = match.lastgroup or ""
            if kind != "space":
                tokens.append(_Token(kind, match.group(0), pos))
            pos = match.end()
        return tokens

    def parse_all(self) -> Node:
        expr = self.parse_expr()
        self.expect_end()
        return expr

    def peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def accept(self, kind: str, value: str | None = None) -> _Token | None:
        token = self.peek()
        if token is None or token.kind != kind or (value is not None and token.value != value):
            return None
        self.pos += 1
        return token

    def expect(self, kind: str, value: str | None = None) -> _Token:
        token = self.accept(kind, value)
        if token is None:
            found = self.peek()
            wanted = value or kind
            if found is None:
                raise self._error(f"expected {wanted!r}, found end of expression", self.end)
            raise self._error(f"expected {wanted!r}, found {found.value!r}", found.offset)
        return token

    def expect_end(self) -> None:
        token = self.peek()
        if token is not None:
            raise self._error(f"unexpected {token.value!r}", token.offset)

    def _loc(self, token: _Token | None) -> Location:
        return self.source.location(token.offset if token else self.end)

    def parse_expr(self) -> Node:
        self.depth += 1
        if self.depth > self.max_nesting:
            raise self._error("expression nesting too deep", self.peek().offset if self.peek() else self.end)
        try:
            return self._or()
        finally:
            self.depth -= 1

    def _or(self) -> Node:
        left = self._and()
        while (token := self.accept("name", "or")) is not None:
            left = Logical("or", left, self._and(), loc=self._loc(token))
        return left

    def _and(self) -> Node:
        left = self._not()
        while (token := self.accept("name", "and")) is not None:
            left = Logical("and", left, self._not(), loc=self._loc(token))
        return left

    def _not(self) -> Node:
        token = self.accept("name", "not")
        if token is not None:
            self.depth += 1
            if self.depth > self.max_nesting:
                raise self._error("expression nesting too deep", token.offset)
            try:
                return Not(self._not(), loc=self._loc(token))
            finally:
                self.depth -= 1
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._conversion()
        token = self.peek()
        if token is not None and token.value in COMPARISONS and token.kind in ("op", "name"):
            self.pos += 1
            right = self._conversion()
            return BinaryOp(token.value, left, right, loc=self._loc(token))
        return left

    def _conversion(self) -> Node:
        expr = self._additive()
        while (token := self.accept("name", "to")) is not None:
            unit = self.expect("string")
            target = canonical_unit(_unquote(unit.value))
            if target is None:
                raise self._error("conversion needs a unit", unit.offset)
            expr = Convert(expr, target, loc=self._loc(token))
        return expr

    def _additive(self) -> Node:
        left = self._term()
        while True:
            token = self.accept("op", "+") or self.accept("op", "-")
            if token is None:
                return left
            left = BinaryOp(token.value, left, self._term(), loc=self._loc(token))

    def _term(self) -> Node:
        left = self._unary()
        while True:
            token = self.accept("op", "*") or self.accept("op", "/")
            if token is None:
                return left
            left = BinaryOp(token.value, left, self._unary(), loc=self._loc(token))

    def _unary(self) -> Node:
        token = self.accept("op", "-")
        if token is not None:
            self.depth += 1
            if self.depth > self.max_nesting:
                raise self._error("expression nesting too deep", token.offset)
            try:
                return Negate(self._unary(), loc=self._loc(token))
            finally:
                self.depth -= 1
        return self._postfix()

    def _postfix(self) -> Node:
        expr = self._primary()
        while (dot := self.accept("op", ".")) is not None:
            name = self.expect("name")
            argument = None
            if self.accept("op", "("):
                argument = self.parse_expr()
                self.expect("op", ")")
            expr = FieldAccess(expr, name.value, argument, loc=self._loc(name))
        return expr

    def _primary(self) -> Node:
        token = self.peek()
        if token is None:
            raise self._error("expected an expression", self.end)
        self.pos += 1
        loc = self._loc(token)

        if token.kind == "number":
            return Literal(Quantity(Fraction(token.value)), loc=loc)
        if token.kind == "string":
            return Literal(_unquote(token.value), loc=loc)
        if token.kind == "op" and token.value == "(":
            expr = self.parse_expr()
            self.expect("op", ")")
            return expr
        if token.kind == "name":
            if token.value == "true":
                return Literal(True, loc=loc)
            if token.value == "false":
                return Literal(False, loc=loc)
            if token.value in KEYWORDS:
                raise self._error(f"unexpected {token.value!r}", token.offset)
            if self.accept("op", "("):
                return self._call(token, loc)
            return Name(token.value, loc=loc)
        raise self._error(f"unexpected {token.value!r}", token.offset)

    def _call(self, name: _Token, loc: Location) -> Node:
        if name.value == "recipe":
            reference = self.expect("string")
            self.expect("op", ")")
            text = _unquote(reference.value).strip()
            if not text:
                raise self._error("recipe() needs a reference", reference.offset)
            return RecipeRef(text, loc=loc)
        if name.value == "quantity":
            negative = self.accept("op", "-") is not None
            number = self.expect("number")
            unit = None
            if self.accept("op", ","):
                unit = canonical_unit(_unquote(self.expect("string").value))
            self.expect("op", ")")
            magnitude = Fraction(number.value)
            return Literal(Quantity(-magnitude if negative else magnitude, unit), loc=loc)
        raise self._error(f"unknown function {name.value!r}", name.offset)


def _unquote(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text[1:-1])


class _Binder:
    """Replace names with loop variables, expanded ``let`` trees or recipe references.

    ``depth`` is the position of ``node`` in the bound tree; a ``let`` is
    expanded at the depth where it is first used.
    """

    def __init__(self, lets: dict[str, Node], bindings: dict[str, str], max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.lets = lets
        self.bindings = bindings
        self.max_depth = max_depth
        self._expanded: dict[str, Node] = {}

    def let(self, name: str, stack: tuple[str, ...], loc: Location, depth: int) -> Node:
        if name in stack:
            cycle = " -> ".join(stack[stack.index(name) :] + (name,))
            raise ReportSyntaxError(f"cyclic let definition: {cycle}", *loc)
        if name not in self._expanded:
            if len(stack) >= self.max_depth:
                raise ReportSyntaxError(f"let definitions nested deeper than {self.max_depth} levels", *loc)
            self._expanded[name] = self.bind(self.lets[name], frozenset(), stack + (name,), depth)
        return self._expanded[name]

    def bind(self, node: Node, scope: frozenset[str], stack: tuple[str, ...] = (), depth: int = 0) -> Node:
        if depth > self.max_depth:
            raise ReportSyntaxError(f"report nested deeper than {self.max_depth} levels", *node.loc)
        inner_depth = depth + 1
        if isinstance(node, Name):
            if node.name in scope:
                return node
            if node.name in self.lets:
                return self.let(node.name, stack, node.loc, inner_depth)
            if node.name in self.bindings:
                return RecipeRef(self.bindings[node.name], binding=node.name, loc=node.loc)
            raise ReportSyntaxError(f"unknown name {node.name!r}", *node.loc)
        if isinstance(node, Sequence):
            return replace(
                node, children=tuple(self.bind(child, scope, stack, inner_depth) for child in node.children)
            )
        if isinstance(node, Slot):
            return replace(node, expr=self.bind(node.expr, scope, stack, inner_depth))
        if isinstance(node, FieldAccess):
            argument = None if node.argument is None else self.bind(node.argument, scope, stack, inner_depth)
            return replace(node, target=self.bind(node.target, scope, stack, inner_depth), argument=argument)
        if isinstance(node, (BinaryOp, Logical)):
            return replace(
                node,
                left=self.bind(node.left, scope, stack, inner_depth),
                right=self.bind(node.right, scope, stack, inner_depth),
            )
        if isinstance(node, (Not, Negate, Convert)):
            return replace(node, operand=self.bind(node.operand, scope, stack, inner_depth))
        if isinstance(node, Loop):
            inner = scope | {node.variable}
            condition = None if node.condition is None else self.bind(node.condition, inner, stack, inner_depth)
            return replace(
                node,
                iterable=self.bind(node.iterable, scope, stack, inner_depth),
                condition=condition,
                body=self.bind(node.body, inner, stack, inner_depth),
            )
        if isinstance(node, Conditional):
            branches = tuple(
                (self.bind(cond, scope, stack, inner_depth), self.bind(body, scope, stack, inner_depth))
                for cond, body in node.branches
            )
            otherwise = None if node.otherwise is None else self.bind(node.otherwise, scope, stack, inner_depth)
            return replace(node, branches=branches, otherwise=otherwise)
        return node
