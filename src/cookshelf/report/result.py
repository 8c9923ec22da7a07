from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


@dataclass(frozen=True)
class Provenance:
    recipe: str
    path: str
    ingredient: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"recipe": self.recipe, "path": self.path, "ingredient": self.ingredient}


@dataclass(frozen=True)
class Fragment:
    text: str
    provenance: tuple[Provenance, ...] = ()


@dataclass(frozen=True)
class ReportLine:
    text: str
    provenance: tuple[Provenance, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {"text": self.text, "provenance": [item.as_dict() for item in self.provenance]}


@dataclass(frozen=True)
class ReportResult:
    title: str | None
    lines: tuple[ReportLine, ...]

    def text(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(line.text for line in self.lines) + "\n"

    def as_dict(self) -> dict[str, Any]:
        return {"title": self.title, "lines": [line.as_dict() for line in self.lines]}


def assemble_lines(fragments: Iterable[Fragment]) -> tuple[ReportLine, ...]:
    """Split rendered fragments into lines, merging the provenance of each line's pieces.

    A line only picks up provenance from fragments that put text on it. A
    trailing newline does not produce an empty last line.
    """
    lines: list[ReportLine] = []
    text_parts: list[str] = []
    provenance: list[Provenance] = []

    def _add(items: tuple[Provenance, ...]) -> None:
        for item in items:
            if item not in provenance:
                provenance.append(item)

    for fragment in fragments:
        pieces = fragment.text.split("\n")
        for idx, piece in enumerate(pieces):
            if idx > 0:
                lines.append(ReportLine("".join(text_parts), tuple(provenance)))
                text_parts = []
                provenance = []
            if piece:
                text_parts.append(piece)
                _add(fragment.provenance)

    if text_parts:
        lines.append(ReportLine("".join(text_parts), tuple(provenance)))
    return tuple(lines)
