from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher

from ..index import IndexEntry
from ..resolver import Candidate


@dataclass(frozen=True)
class CandidateInfo:
    entry: IndexEntry
    score: float | None = None

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> CandidateInfo:
        return cls(entry=candidate.entry, score=candidate.score)

    def display(self, selected: bool = False) -> str:
        marker = ">" if selected else " "
        score = f"  {self.score:.2f}" if self.score is not None else ""
        return f"{marker} {self.entry.relative}{score}"


def filter_candidates(items: list[CandidateInfo], query: str) -> list[CandidateInfo]:
    """Narrow the picklist as the user types; keeps resolver order for equal scores."""
    q = query.strip().lower()
    if not q:
        return items

    scored: list[tuple[float, int, CandidateInfo]] = []
    for idx, item in enumerate(items):
        text = item.entry.relative.lower()
        score = 1.0 if q in text else SequenceMatcher(None, q, text).ratio()
        if score >= 0.2:
            scored.append((score, idx, item))

    scored.sort(key=lambda triple: (-triple[0], triple[1]))
    return [item for _, _, item in scored]
