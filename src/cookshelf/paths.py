from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import EffectiveConfig
from .errors import MissingFileError


REPORT_SUFFIX = ".report"


@dataclass(frozen=True)
class ShelfPaths:
    shelf_root: Path
    reports_dir: Path
    aisle_path: Path


def resolve_shelf_paths(cfg: EffectiveConfig) -> ShelfPaths:
    root = Path(cfg.shelf_path)
    return ShelfPaths(
        shelf_root=root,
        reports_dir=_under(root, Path(cfg.reports_dir)),
        aisle_path=_under(root, Path(cfg.aisle)),
    )


def resolve_report_path(name: str, cfg: EffectiveConfig) -> Path:
    direct = Path(name)
    if direct.is_file():
        return direct

    shelf = resolve_shelf_paths(cfg)
    candidate = shelf.reports_dir / name
    if candidate.suffix != REPORT_SUFFIX:
        candidate = candidate.with_name(candidate.name + REPORT_SUFFIX)
    if not candidate.is_file():
        raise MissingFileError(f"Report not found: {name} (looked in {shelf.reports_dir})")
    return candidate


def _under(root: Path, rel: Path) -> Path:
    if rel.is_absolute():
        return rel
    return root / rel
