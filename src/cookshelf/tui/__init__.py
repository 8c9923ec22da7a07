from __future__ import annotations

from typing import Sequence

from ..index import IndexEntry
from ..resolver import Candidate
from .state import CandidateInfo


def pick_candidate(reference: str, candidates: Sequence[Candidate]) -> IndexEntry | None:
    from .app import PickerApp

    app = PickerApp(reference, [CandidateInfo.from_candidate(c) for c in candidates])
    return app.run()


__all__ = ["CandidateInfo", "pick_candidate"]
