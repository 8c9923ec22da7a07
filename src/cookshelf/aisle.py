from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re

from .errors import AisleError, MissingFileError
from .index import normalize_name


CATEGORY_RE = re.compile(r"^\[(?P<name>[^\]]+)\]\s*$")
OTHER_CATEGORY = "other"


@dataclass(frozen=True)
class AisleConfig:
    """Shopping categories read from an ``aisle.conf`` file.

    ``categories`` keeps file order; ``lookup`` maps every normalized
    ingredient name and synonym to its category.
    """

    categories: tuple[str, ...] = ()
    lookup: dict[str, str] = field(default_factory=dict)

    def category_of(self, ingredient: str) -> str | None:
        return self.lookup.get(normalize_name(ingredient))

    def knows(self, ingredient: str) -> bool:
        return normalize_name(ingredient) in self.lookup


def parse_aisle(text: str, source: str | None = None) -> AisleConfig:
    where = source or "<aisle>"
    categories: list[str] = []
    lookup: dict[str, str] = {}
    current: str | None = None

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("//", 1)[0].strip()
        if not line or line.startswith("#"):
            continue
        match = CATEGORY_RE.match(line)
        if match:
            current = match.group("name").strip()
            if not current:
                raise AisleError(f"{where}:{lineno}: empty category name")
            if current in categories:
                raise AisleError(f"{where}:{lineno}: duplicate category [{current}]")
            categories.append(current)
            continue
        if current is None:
            raise AisleError(f"{where}:{lineno}: ingredient {line!r} appears before any [category]")

        for name in (part.strip() for part in line.split("|")):
            key = normalize_name(name)
            if not key:
                continue
            existing = lookup.get(key)
            if existing is not None and existing != current:
                raise AisleError(f"{where}:{lineno}: {name!r} is already listed under [{existing}]")
            lookup[key] = current

    return AisleConfig(categories=tuple(categories), lookup=lookup)


def load_aisle(path: Path | str) -> AisleConfig:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise MissingFileError(f"Aisle file not found: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise AisleError(f"Could not read aisle file {path}: {exc}") from exc
    return parse_aisle(text, source=str(path))


def load_optional_aisle(path: Path | str) -> AisleConfig | None:
    path = Path(path)
    if not path.is_file():
        return None
    return load_aisle(path)
