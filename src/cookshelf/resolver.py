from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
import logging
from pathlib import Path
from typing import Callable, Union

from .config import EffectiveConfig
from .domain import RecipeDocument, parse_recipe
from .errors import ParseFailedError, RecipeParseError, RecipeReadError
from .index import IndexEntry, IndexSnapshot, RecipeIndex, normalize_reference


logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
DEFAULT_TIE_MARGIN = 0.05
SCORE_PRECISION = 6

RecipeParser = Callable[[str, Path], RecipeDocument]


@dataclass(frozen=True)
class Candidate:
    entry: IndexEntry
    score: float | None = None

    def display(self) -> str:
        if self.score is None:
            return self.entry.relative
        return f"{self.entry.relative} ({self.score:.2f})"


@dataclass(frozen=True)
class Unique:
    entry: IndexEntry
    document: RecipeDocument
    score: float | None = None


@dataclass(frozen=True)
class Ambiguous:
    reference: str
    candidates: tuple[Candidate, ...]

    @property
    def entries(self) -> tuple[IndexEntry, ...]:
        return tuple(candidate.entry for candidate in self.candidates)


@dataclass(frozen=True)
class NotFound:
    reference: str


Resolution = Union[Unique, Ambiguous, NotFound]


def similarity(query: str, name: str) -> float:
    """Score how well a normalized query matches a normalized name, in [0, 1]."""
    if query == name:
        return 1.0
    score = SequenceMatcher(None, query, name).ratio()
    query_tokens = set(query.replace("/", " ").split())
    name_tokens = set(name.replace("/", " ").split())
    if query_tokens and query_tokens <= name_tokens:
        score = max(score, 0.8 + 0.2 * len(query_tokens) / len(name_tokens))
    return round(score, SCORE_PRECISION)


class Resolver:
    def __init__(
        self,
        index: RecipeIndex,
        parser: RecipeParser = parse_recipe,
        *,
        fuzzy: bool = True,
        threshold: float = DEFAULT_THRESHOLD,
        tie_margin: float = DEFAULT_TIE_MARGIN,
    ) -> None:
        self.index = index
        self.parser = parser
        self.fuzzy = fuzzy
        self.threshold = threshold
        self.tie_margin = tie_margin

    @classmethod
    def from_config(cls, cfg: EffectiveConfig, index: RecipeIndex | None = None) -> Resolver:
        if index is None:
            index = RecipeIndex(cfg.shelf_path, cfg.recipe_extension)
        return cls(
            index,
            fuzzy=cfg.resolver.fuzzy,
            threshold=cfg.resolver.threshold,
            tie_margin=cfg.resolver.tie_margin,
        )

    def resolve(self, reference: str, fuzzy: bool | None = None) -> Resolution:
        snapshot = self.index.snapshot
        exact = snapshot.lookup(reference)
        if len(exact) == 1:
            logger.debug("Resolved %r to %s", reference, exact[0].relative)
            return Unique(exact[0], self.load(exact[0]))
        if exact:
            return Ambiguous(reference, tuple(Candidate(entry) for entry in exact))

        use_fuzzy = self.fuzzy if fuzzy is None else fuzzy
        if not use_fuzzy:
            return NotFound(reference)
        return self._resolve_fuzzy(reference, snapshot)

    def search(self, query: str, limit: int | None = None) -> list[Candidate]:
        found = [item for item in self.score(query) if item.score is not None and item.score >= self.threshold]
        if limit is not None:
            return found[:limit]
        return found

    def score(self, query: str, snapshot: IndexSnapshot | None = None) -> list[Candidate]:
        snapshot = snapshot or self.index.snapshot
        key = normalize_reference(query, snapshot.extension)
        if not key:
            return []

        scored: list[Candidate] = []
        for entry in snapshot.entries:
            names = [entry.key, *snapshot.alias_keys(entry)]
            if "/" in key:
                names.append(entry.path_key)
            scored.append(Candidate(entry, max(similarity(key, name) for name in names)))
        scored.sort(key=lambda item: (-(item.score or 0.0), *item.entry.tie_break_key()))
        return scored

    def load(self, entry: IndexEntry) -> RecipeDocument:
        try:
            text = entry.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ParseFailedError(entry.path, exc) from exc
        except OSError as exc:
            raise RecipeReadError(entry.path, exc) from exc
        try:
            return self.parser(text, entry.path)
        except RecipeParseError as exc:
            raise ParseFailedError(entry.path, exc) from exc

    def _resolve_fuzzy(self, reference: str, snapshot: IndexSnapshot) -> Resolution:
        scored = self.score(reference, snapshot)
        if not scored or (scored[0].score or 0.0) < self.threshold:
            return NotFound(reference)

        best = scored[0].score or 0.0
        second = scored[1].score if len(scored) > 1 else None
        if best > self.threshold and (second is None or round(best - second, SCORE_PRECISION) > self.tie_margin):
            entry = scored[0].entry
            logger.debug("Fuzzy-resolved %r to %s (%.2f)", reference, entry.relative, best)
            return Unique(entry, self.load(entry), best)

        candidates = tuple(
            item
            for item in scored
            if (item.score or 0.0) >= self.threshold or round(best - (item.score or 0.0), SCORE_PRECISION) <= self.tie_margin
        )
        return Ambiguous(reference, candidates)
