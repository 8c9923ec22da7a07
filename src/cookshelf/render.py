from __future__ import annotations

import json
from typing import Any, Sequence

import yaml

from .domain import Amount, RecipeDocument
from .errors import ConfigError
from .index import IndexEntry
from .report.result import ReportResult
from .resolver import Candidate
from .shopping import ShoppingList
from .units import Quantity, format_quantity


FORMATS = ("text", "json", "yaml")


def dump(data: Any, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    raise ConfigError(f"Unsupported output format: {fmt}")


def render_report(result: ReportResult, fmt: str = "text") -> str:
    if fmt != "text":
        return dump(result.as_dict(), fmt)
    body = result.text()
    if result.title:
        return f"{result.title}\n\n{body}"
    return body


def render_recipe(entry: IndexEntry, document: RecipeDocument, fmt: str = "text") -> str:
    if fmt != "text":
        return dump(recipe_to_dict(entry, document), fmt)

    lines = [document.title or entry.name]
    if document.servings is not None:
        lines.append(f"Servings: {document.servings}")
    if document.tags:
        lines.append("Tags: " + ", ".join(document.tags))

    if document.ingredients:
        lines += ["", "Ingredients:"]
        for item in document.ingredients:
            amount = _amount(item.quantity)
            note = f" ({item.note})" if item.note else ""
            lines.append(f"  {item.name}{note}" + (f": {amount}" if amount else ""))

    if document.cookware:
        lines += ["", "Cookware:"]
        for item in document.cookware:
            amount = _amount(item.quantity)
            lines.append(f"  {item.name}" + (f": {amount}" if amount else ""))

    if document.steps:
        lines += ["", "Steps:"]
        section = None
        for step in document.steps:
            if step.section and step.section != section:
                section = step.section
                lines.append(f"  == {section} ==")
            lines.append(f"  {step.number}. {step.text}")

    if document.notes:
        lines += ["", "Notes:"]
        lines.extend(f"  {note}" for note in document.notes)
    return "\n".join(lines) + "\n"


def recipe_to_dict(entry: IndexEntry, document: RecipeDocument) -> dict[str, Any]:
    return {
        "path": entry.relative,
        "name": entry.name,
        "title": document.title,
        "servings": document.servings,
        "tags": document.tags,
        "ingredients": [
            {"name": item.name, "quantity": _amount(item.quantity), "note": item.note, "fixed": item.fixed}
            for item in document.ingredients
        ],
        "cookware": [{"name": item.name, "quantity": _amount(item.quantity)} for item in document.cookware],
        "steps": [{"number": step.number, "section": step.section, "text": step.text} for step in document.steps],
        "notes": list(document.notes),
    }


def render_shopping_list(shopping: ShoppingList, fmt: str = "text") -> str:
    if fmt != "text":
        return dump(shopping.as_dict(), fmt)
    lines: list[str] = []
    for category, items in shopping.sections:
        if lines:
            lines.append("")
        lines.append(f"[{category}]")
        for item in items:
            amounts = ", ".join(item.amounts())
            lines.append(f"  {item.name}" + (f": {amounts}" if amounts else ""))
    return "\n".join(lines) + "\n" if lines else ""


def render_candidates(reference: str, candidates: Sequence[Candidate], fmt: str = "text") -> str:
    if fmt != "text":
        rows = [{"path": c.entry.relative, "name": c.entry.name, "score": c.score} for c in candidates]
        return dump({"reference": reference, "candidates": rows}, fmt)
    lines = [f"{reference!r} matches several recipes:"]
    lines.extend(f"  {c.display()}" for c in candidates)
    return "\n".join(lines) + "\n"


def render_table(rows: Sequence[dict[str, Any]], columns: Sequence[str], fmt: str = "text") -> str:
    if fmt != "text":
        return dump([dict(row) for row in rows], fmt)
    lines = []
    for row in rows:
        cells = []
        for column in columns:
            value = row.get(column)
            if isinstance(value, (list, tuple)):
                value = ",".join(str(item) for item in value)
            cells.append("" if value is None else str(value))
        lines.append("\t".join(cells))
    return "\n".join(lines) + "\n" if lines else ""


def _amount(amount: Amount) -> str | None:
    if isinstance(amount, Quantity):
        return format_quantity(amount)
    return amount
