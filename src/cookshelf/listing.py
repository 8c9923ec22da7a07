from __future__ import annotations

import logging
from typing import Any, Optional

from .domain import normalize_list, read_metadata
from .errors import RecipeParseError
from .index import RecipeIndex


logger = logging.getLogger(__name__)


def list_recipes(index: RecipeIndex, tag: Optional[str] = None) -> list[dict[str, Any]]:
    wanted = tag.casefold() if tag else None
    recipes: list[dict[str, Any]] = []
    for entry in index.entries():
        try:
            text = entry.path.read_text(encoding="utf-8")
            data = read_metadata(text, entry.path)
        except (OSError, UnicodeDecodeError, RecipeParseError) as exc:
            logger.info("Skipping %s: %s", entry.relative, exc)
            continue
        tags = normalize_list(data.get("tags"))
        if wanted and wanted not in (t.casefold() for t in tags):
            continue
        recipes.append(
            {
                "name": entry.name,
                "title": data.get("title"),
                "path": entry.relative,
                "tags": tags,
            }
        )
    return recipes
