from __future__ import annotations

from pathlib import Path
import re
from typing import Any

import yaml

from ..errors import RecipeParseError
from ..units import Quantity, canonical_unit, format_quantity, parse_amount
from .models import Amount, Cookware, Ingredient, RecipeDocument, Step, Timer


FRONTMATTER_RE = re.compile(r"^\ufeff?\s*---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|$)", re.DOTALL)
METADATA_RE = re.compile(r"^\s*>>\s*(?P<key>[^:]+?)\s*:\s*(?P<value>.*?)\s*$")
SECTION_RE = re.compile(r"^\s*=+\s*(?P<name>.*?)\s*=*\s*$")
BRACED_RE = re.compile(r"(?P<name>[^@#~{}]*?)\{(?P<amount>[^}]*)\}")
WORD_RE = re.compile(r"[^\s@#~{}()\[\],.;:!?]+")
NOTE_RE = re.compile(r"\((?P<note>[^)]*)\)")
BLOCK_COMMENT_RE = re.compile(r"\[-.*?-\]", re.DOTALL)


def parse_recipe(text: str, source: Path | str | None = None) -> RecipeDocument:
    label = str(source) if source is not None else None
    metadata, body, offset = _split_frontmatter(text, label)
    body = _strip_block_comments(body, offset, label)

    parser = _StepParser(label)
    for lineno, raw in enumerate(body.splitlines(), start=offset + 1):
        line = _strip_line_comment(raw)
        if not line.strip():
            parser.flush()
            continue
        meta = METADATA_RE.match(line)
        if meta:
            metadata[meta.group("key")] = meta.group("value")
            continue
        if line.lstrip().startswith(">>"):
            raise RecipeParseError("metadata line must look like '>> key: value'", lineno, label)
        if line.lstrip().startswith(">"):
            parser.flush()
            parser.notes.append(line.lstrip()[1:].strip())
            continue
        if line.lstrip().startswith("="):
            parser.flush()
            section = SECTION_RE.match(line)
            parser.section = (section.group("name") or None) if section else None
            continue
        parser.add_line(line, lineno)
    parser.flush()

    return RecipeDocument(
        metadata=metadata,
        steps=tuple(parser.steps),
        ingredients=tuple(parser.ingredients),
        cookware=tuple(parser.cookware),
        timers=tuple(parser.timers),
        notes=tuple(parser.notes),
        source=Path(source) if source is not None else None,
    )


def read_metadata(text: str, source: Path | str | None = None) -> dict[str, Any]:
    label = str(source) if source is not None else None
    metadata, body, _ = _split_frontmatter(text, label)
    for line in BLOCK_COMMENT_RE.sub("", body).splitlines():
        meta = METADATA_RE.match(_strip_line_comment(line))
        if meta:
            metadata[meta.group("key")] = meta.group("value")
    return metadata


def _split_frontmatter(text: str, label: str | None) -> tuple[dict[str, Any], str, int]:
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text, 0

    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise RecipeParseError(f"invalid YAML front matter: {exc}", 1, label) from exc
    if not isinstance(data, dict):
        raise RecipeParseError("front matter must be a mapping", 1, label)

    consumed = match.group(0)
    offset = consumed.count("\n")
    return {str(key): value for key, value in data.items()}, text[match.end() :], offset


def _strip_block_comments(body: str, offset: int, label: str | None) -> str:
    def _blank(match: re.Match[str]) -> str:
        return "\n" * match.group(0).count("\n")

    stripped = BLOCK_COMMENT_RE.sub(_blank, body)
    start = stripped.find("[-")
    if start != -1:
        line = offset + stripped.count("\n", 0, start) + 1
        raise RecipeParseError("unterminated block comment", line, label)
    return stripped


def _strip_line_comment(line: str) -> str:
    idx = line.find("--")
    if idx == -1:
        return line
    return line[:idx]


class _StepParser:
    def __init__(self, label: str | None) -> None:
        self.label = label
        self.section: str | None = None
        self.steps: list[Step] = []
        self.ingredients: list[Ingredient] = []
        self.cookware: list[Cookware] = []
        self.timers: list[Timer] = []
        self.notes: list[str] = []
        self._parts: list[str] = []

    def flush(self) -> None:
        if not self._parts:
            return
        text = " ".join(part for part in self._parts if part)
        self._parts = []
        self.steps.append(Step(number=len(self.steps) + 1, text=text, section=self.section))

    def add_line(self, line: str, lineno: int) -> None:
        out: list[str] = []
        pos = 0
        while pos < len(line):
            char = line[pos]
            if char not in "@#~":
                out.append(char)
                pos += 1
                continue
            consumed = self._marker(line, pos, lineno, out)
            if consumed == 0:
                out.append(char)
                pos += 1
            else:
                pos += consumed
        self._parts.append(" ".join("".join(out).split()))

    def _marker(self, line: str, pos: int, lineno: int, out: list[str]) -> int:
        kind = line[pos]
        start = pos + 1
        name: str | None = None
        raw_amount: str | None = None
        end = start

        braced = BRACED_RE.match(line, start)
        if braced and (kind == "~" or braced.group("name").strip()):
            name = braced.group("name").strip() or None
            raw_amount = braced.group("amount")
            end = braced.end()
        else:
            word = WORD_RE.match(line, start)
            if not word:
                if line.startswith("{", start):
                    raise RecipeParseError(f"unterminated '{{' after {kind!r}", lineno, self.label)
                return 0
            name = word.group(0)
            end = word.end()
            if line.startswith("{", end):
                raise RecipeParseError(f"unterminated '{{' in {name!r}", lineno, self.label)

        if kind == "@":
            note = None
            paren = NOTE_RE.match(line, end)
            if paren:
                note = paren.group("note").strip() or None
                end = paren.end()
            amount, fixed = _parse_amount_text(raw_amount)
            self.ingredients.append(Ingredient(name=name or "", quantity=amount, note=note, fixed=fixed))
            out.append(name or "")
        elif kind == "#":
            amount, _ = _parse_amount_text(raw_amount)
            self.cookware.append(Cookware(name=name or "", quantity=amount))
            out.append(name or "")
        else:
            amount, _ = _parse_amount_text(raw_amount)
            self.timers.append(Timer(name=name, quantity=amount))
            out.append(_render_amount(amount) or name or "")
        return end - pos


def _parse_amount_text(raw: str | None) -> tuple[Amount, bool]:
    if raw is None:
        return None, False
    text = raw.strip()
    fixed = text.startswith("=")
    if fixed:
        text = text[1:].strip()
    if not text:
        return None, fixed

    qty_text, sep, unit_text = text.partition("%")
    qty_text = qty_text.strip()
    unit = canonical_unit(unit_text) if sep else None
    number = parse_amount(qty_text)
    if number is None:
        if not qty_text:
            return None, fixed
        return (f"{qty_text} {unit_text.strip()}".strip() if sep else qty_text), fixed
    return Quantity(number, unit), fixed


def _render_amount(amount: Amount) -> str:
    if isinstance(amount, Quantity):
        return format_quantity(amount)
    return amount or ""
