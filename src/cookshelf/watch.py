from __future__ import annotations

import logging
import time
from typing import Callable

from .errors import CookshelfError, WatchError
from .index import IndexSnapshot, RecipeIndex


logger = logging.getLogger(__name__)


def watch_shelf(
    index: RecipeIndex,
    interval_ms: int,
    on_refresh: Callable[[IndexSnapshot], None] | None = None,
    max_cycles: int | None = None,
) -> None:
    """Poll the shelf and rebuild the index whenever a file or directory changes."""
    logger.info("Watching %s (%d recipes)", index.root, len(index.snapshot))
    cycles = 0

    while True:
        time.sleep(interval_ms / 1000.0)
        try:
            refreshed = index.refresh_if_stale()
        except CookshelfError as exc:
            raise WatchError(f"Failed to refresh {index.root}: {exc}") from exc
        if refreshed:
            logger.info("Shelf changed, %d recipes indexed", len(index.snapshot))
            if on_refresh is not None:
                on_refresh(index.snapshot)

        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
