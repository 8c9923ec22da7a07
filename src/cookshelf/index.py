from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path, PurePosixPath
import re
import threading
import time
from typing import Callable

from .domain import metadata_aliases, read_metadata
from .errors import RecipeParseError, RootInvalidError


logger = logging.getLogger(__name__)

SEPARATOR_RE = re.compile(r"[\s_\-]+")

EXACT_MATCH = 0
ALIAS_MATCH = 1


@dataclass(frozen=True)
class IndexEntry:
    """One recipe file on the shelf.

    ``path`` is canonical and unique per entry; ``name`` is the file stem and
    may be shared with entries in other directories.
    """

    path: Path
    relative: str
    name: str
    key: str
    path_key: str
    depth: int
    mtime: float

    def tie_break_key(self) -> tuple[int, str]:
        return (self.depth, self.relative)


def normalize_name(text: str) -> str:
    return SEPARATOR_RE.sub(" ", text.casefold()).strip()


def normalize_reference(reference: str, extension: str = ".cook") -> str:
    text = reference.strip().replace("\\", "/")
    if extension and text.lower().endswith(extension.lower()):
        text = text[: -len(extension)]
    parts = [normalize_name(part) for part in text.split("/") if part not in (".", "..")]
    return "/".join(part for part in parts if part)


class IndexSnapshot:
    """Immutable view of the shelf at one point in time."""

    def __init__(
        self,
        root: Path,
        extension: str,
        entries: tuple[IndexEntry, ...],
        mtimes: dict[Path, float],
        warnings: tuple[str, ...],
        built_at: float,
        alias_loader: Callable[[IndexEntry], tuple[str, ...]],
    ) -> None:
        self.root = root
        self.extension = extension
        self.entries = entries
        self.warnings = warnings
        self.built_at = built_at
        self._mtimes = mtimes
        self._alias_loader = alias_loader
        self._alias_lock = threading.Lock()
        self._alias_state: tuple[dict[Path, tuple[str, ...]], dict[str, tuple[IndexEntry, ...]]] | None = None

        by_key: dict[str, list[IndexEntry]] = {}
        for entry in entries:
            by_key.setdefault(entry.key, []).append(entry)
        self._by_key = {key: tuple(items) for key, items in by_key.items()}

    def __len__(self) -> int:
        return len(self.entries)

    def keys(self) -> list[str]:
        return sorted(self._by_key)

    def lookup(self, reference: str) -> tuple[IndexEntry, ...]:
        return tuple(entry for _, entry in self.matches(reference))

    def matches(self, reference: str) -> list[tuple[int, IndexEntry]]:
        key = normalize_reference(reference, self.extension)
        if not key:
            return []

        found: dict[Path, tuple[int, IndexEntry]] = {}
        if "/" in key:
            for entry in self.entries:
                if entry.path_key == key or entry.path_key.endswith("/" + key):
                    found[entry.path] = (EXACT_MATCH, entry)
        else:
            for entry in self._by_key.get(key, ()):
                found[entry.path] = (EXACT_MATCH, entry)

        for entry in self._aliases()[1].get(key, ()):
            found.setdefault(entry.path, (ALIAS_MATCH, entry))

        return sorted(found.values(), key=lambda item: (item[0], *item[1].tie_break_key()))

    def aliases(self, entry: IndexEntry) -> tuple[str, ...]:
        return self._aliases()[0].get(entry.path, ())

    def alias_keys(self, entry: IndexEntry) -> tuple[str, ...]:
        return tuple(
            key for key in (normalize_reference(alias, self.extension) for alias in self.aliases(entry)) if key
        )

    def is_stale(self) -> bool:
        for path, recorded in self._mtimes.items():
            try:
                current = path.stat().st_mtime
            except OSError:
                return True
            if current != recorded:
                return True
        return False

    def _aliases(self) -> tuple[dict[Path, tuple[str, ...]], dict[str, tuple[IndexEntry, ...]]]:
        state = self._alias_state
        if state is not None:
            return state
        with self._alias_lock:
            if self._alias_state is None:
                entry_aliases: dict[Path, tuple[str, ...]] = {}
                by_alias: dict[str, list[IndexEntry]] = {}
                for entry in self.entries:
                    aliases = self._alias_loader(entry)
                    entry_aliases[entry.path] = aliases
                    for alias in aliases:
                        key = normalize_reference(alias, self.extension)
                        if key and entry not in by_alias.get(key, ()):
                            by_alias.setdefault(key, []).append(entry)
                self._alias_state = (entry_aliases, {key: tuple(items) for key, items in by_alias.items()})
            return self._alias_state


class RecipeIndex:
    """Handle to the current :class:`IndexSnapshot` of a shelf.

    A refresh scans the whole tree into a new snapshot and swaps it in; a
    failed refresh keeps serving the previous one.
    """

    def __init__(self, root: Path | str, extension: str = ".cook") -> None:
        self.root = Path(root)
        self.extension = extension.lower()
        self._snapshot: IndexSnapshot | None = None
        self._swap_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._alias_cache: dict[Path, tuple[float, tuple[str, ...]]] = {}
        self._alias_cache_lock = threading.Lock()

    @classmethod
    def build(cls, root: Path | str, extension: str = ".cook") -> RecipeIndex:
        index = cls(root, extension)
        index.refresh()
        return index

    @property
    def snapshot(self) -> IndexSnapshot:
        current = self._snapshot
        if current is not None:
            return current
        with self._refresh_lock:
            if self._snapshot is None:
                self._install(self._scan())
            return self._snapshot

    def lookup(self, name_or_alias: str) -> tuple[IndexEntry, ...]:
        return self.snapshot.lookup(name_or_alias)

    def entries(self) -> tuple[IndexEntry, ...]:
        return self.snapshot.entries

    def refresh(self) -> IndexSnapshot:
        with self._refresh_lock:
            snapshot = self._scan()
            self._install(snapshot)
        logger.info("Indexed %d recipes under %s", len(snapshot), self.root)
        return snapshot

    def refresh_if_stale(self) -> bool:
        current = self._snapshot
        if current is not None and not current.is_stale():
            return False
        self.refresh()
        return True

    def _install(self, snapshot: IndexSnapshot) -> None:
        with self._swap_lock:
            self._snapshot = snapshot

    def _scan(self) -> IndexSnapshot:
        root = self.root
        if not root.is_dir():
            raise RootInvalidError(root)

        built_at = time.time()
        entries: list[IndexEntry] = []
        mtimes: dict[Path, float] = {}
        warnings: list[str] = []

        def _on_error(exc: OSError) -> None:
            if exc.filename is not None and Path(exc.filename) == root:
                raise RootInvalidError(root) from exc
            message = f"Skipping unreadable directory {exc.filename}: {exc.strerror or exc}"
            logger.warning(message)
            warnings.append(message)

        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error, followlinks=False):
            dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
            directory = Path(dirpath)
            try:
                mtimes[directory] = directory.stat().st_mtime
            except OSError as exc:
                _on_error(exc)
                continue

            for filename in sorted(filenames):
                if filename.startswith(".") or not filename.lower().endswith(self.extension):
                    continue
                path = directory / filename
                try:
                    mtime = path.stat().st_mtime
                except OSError as exc:
                    message = f"Skipping unreadable recipe {path}: {exc.strerror or exc}"
                    logger.warning(message)
                    warnings.append(message)
                    continue
                entries.append(self._entry(path, mtime))
                mtimes[path] = mtime

        return IndexSnapshot(
            root=root,
            extension=self.extension,
            entries=tuple(entries),
            mtimes=mtimes,
            warnings=tuple(warnings),
            built_at=built_at,
            alias_loader=self._load_aliases,
        )

    def _entry(self, path: Path, mtime: float) -> IndexEntry:
        relative = PurePosixPath(path.relative_to(self.root).as_posix())
        stem = relative.name[: -len(self.extension)]
        return IndexEntry(
            path=path.absolute(),
            relative=relative.as_posix(),
            name=stem,
            key=normalize_name(stem),
            path_key=normalize_reference(relative.as_posix(), self.extension),
            depth=len(relative.parts) - 1,
            mtime=mtime,
        )

    def _load_aliases(self, entry: IndexEntry) -> tuple[str, ...]:
        with self._alias_cache_lock:
            cached = self._alias_cache.get(entry.path)
        if cached is not None and cached[0] == entry.mtime:
            return cached[1]

        try:
            text = entry.path.read_text(encoding="utf-8")
            aliases = tuple(metadata_aliases(read_metadata(text, entry.path)))
        except (OSError, UnicodeDecodeError, RecipeParseError) as exc:
            logger.warning("Could not read aliases from %s: %s", entry.path, exc)
            aliases = ()

        with self._alias_cache_lock:
            self._alias_cache[entry.path] = (entry.mtime, aliases)
        return aliases
