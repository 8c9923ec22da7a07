from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from .aisle import AisleConfig
from .errors import ResolveError
from .index import RecipeIndex
from .resolver import Resolver


logger = logging.getLogger(__name__)

LEVELS = ("error", "warning", "info")


@dataclass(frozen=True)
class Issue:
    path: str
    level: str
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"path": self.path, "level": self.level, "message": self.message}

    def __str__(self) -> str:
        return f"{self.level}: {self.path}: {self.message}"


def check_shelf(index: RecipeIndex, aisle: AisleConfig | None = None, resolver: Resolver | None = None) -> list[Issue]:
    """Parse every recipe on the shelf and report problems, most severe first."""
    resolver = resolver or Resolver(index)
    snapshot = index.snapshot
    issues: list[Issue] = [Issue(str(index.root), "warning", message) for message in snapshot.warnings]

    by_key: dict[str, list[str]] = {}
    for entry in snapshot.entries:
        by_key.setdefault(entry.key, []).append(entry.relative)
        try:
            document = resolver.load(entry)
        except ResolveError as exc:
            issues.append(Issue(entry.relative, "error", str(exc.__cause__ or exc)))
            continue

        if document.servings is None:
            issues.append(Issue(entry.relative, "warning", "no servings metadata; recipe cannot be scaled"))
        if aisle is not None:
            missing = sorted({item.name for item in document.ingredients if not aisle.knows(item.name)})
            for name in missing:
                issues.append(Issue(entry.relative, "info", f"ingredient {name!r} is not in the aisle file"))

    for key, paths in sorted(by_key.items()):
        if len(paths) > 1:
            for path in paths:
                others = ", ".join(p for p in paths if p != path)
                issues.append(Issue(path, "warning", f"name {key!r} is shared with {others}"))

    issues.sort(key=lambda issue: (LEVELS.index(issue.level), issue.path, issue.message))
    logger.info("Checked %d recipes, %d issues", len(snapshot), len(issues))
    return issues
