from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import tomllib
from typing import Any, Optional

from .errors import ConfigError


OUTPUT_FORMATS = ("text", "json", "yaml")


@dataclass(frozen=True)
class ResolverConfig:
    fuzzy: bool = True
    threshold: float = 0.6
    tie_margin: float = 0.05


@dataclass(frozen=True)
class ReportConfig:
    max_depth: int = 64
    output_format: str = "text"


@dataclass(frozen=True)
class UnitsConfig:
    conversions: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class EffectiveConfig:
    shelf_path: str
    recipe_extension: str
    reports_dir: str
    aisle: str
    default_project: Optional[str]
    resolver: ResolverConfig
    report: ReportConfig
    units: UnitsConfig
    project_dir: str


def _config_root() -> Path:
    return Path(os.path.expanduser("~/.config/cookshelf"))


def load_global_config() -> dict[str, Any]:
    path = _config_root() / "config.toml"
    if not path.exists():
        return {}
    return _load_toml(path)


def load_profile(profile: str) -> Optional[str]:
    path = _config_root() / "projects.d" / f"{profile}.toml"
    if not path.exists():
        return None
    data = _load_toml(path)
    project = data.get("project")
    if not project:
        raise ConfigError(f"Profile {profile!r} missing 'project' key")
    return str(project)


def load_project_config(project_dir: str) -> dict[str, Any]:
    path = Path(project_dir) / "cookshelf.toml"
    if not path.exists():
        return {}
    return _load_toml(path)


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except OSError as exc:
        raise ConfigError(f"Failed to read config: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in config: {path}") from exc


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_config(cli: dict[str, Any], project: dict[str, Any], global_cfg: dict[str, Any]) -> dict[str, Any]:
    merged = _deep_merge(global_cfg, project)
    return _deep_merge(merged, cli)


def resolve_config(cli_args: dict[str, Any]) -> EffectiveConfig:
    global_cfg = load_global_config()
    profile = cli_args.get("profile")
    project_dir = cli_args.get("project")
    if not project_dir and profile:
        project_dir = load_profile(profile)
    if not project_dir:
        project_dir = global_cfg.get("default_project") or os.getcwd()

    project_cfg = load_project_config(project_dir)

    cli_cfg = _cli_to_dict(cli_args)
    merged = merge_config(cli_cfg, project_cfg, global_cfg)

    shelf_path = merged.get("shelf_path")
    if not shelf_path:
        raise ConfigError("shelf_path is required (set in config or via --shelf)")

    resolver_cfg = _table(merged, "resolver")
    report_cfg = _table(merged, "report")
    units_cfg = _table(merged, "units")

    return EffectiveConfig(
        shelf_path=os.path.expanduser(str(shelf_path)),
        recipe_extension=_normalize_extension(merged.get("recipe_extension", ".cook")),
        reports_dir=str(merged.get("reports_dir", "Reports")),
        aisle=str(merged.get("aisle", "config/aisle.conf")),
        default_project=merged.get("default_project"),
        resolver=ResolverConfig(
            fuzzy=bool(resolver_cfg.get("fuzzy", True)),
            threshold=_ratio(resolver_cfg.get("threshold", 0.6), "resolver.threshold"),
            tie_margin=_ratio(resolver_cfg.get("tie_margin", 0.05), "resolver.tie_margin"),
        ),
        report=ReportConfig(
            max_depth=_positive_int(report_cfg.get("max_depth", 64), "report.max_depth"),
            output_format=_normalize_output_format(report_cfg.get("format", "text")),
        ),
        units=UnitsConfig(conversions={str(k): dict(v) for k, v in units_cfg.items() if isinstance(v, dict)}),
        project_dir=str(project_dir),
    )


def _cli_to_dict(cli_args: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in (
        "shelf_path",
        "recipe_extension",
        "reports_dir",
        "aisle",
        "default_project",
    ):
        if cli_args.get(key) is not None:
            out[key] = cli_args[key]

    resolver: dict[str, Any] = {}
    for key in ("fuzzy", "threshold", "tie_margin"):
        if cli_args.get(key) is not None:
            resolver[key] = cli_args[key]
    if resolver:
        out["resolver"] = resolver

    report: dict[str, Any] = {}
    if cli_args.get("max_depth") is not None:
        report["max_depth"] = cli_args["max_depth"]
    if cli_args.get("output_format") is not None:
        report["format"] = cli_args["output_format"]
    if report:
        out["report"] = report

    return out


def config_to_toml(cfg: EffectiveConfig) -> str:
    lines = [
        f"shelf_path = {cfg.shelf_path!r}",
        f"recipe_extension = {cfg.recipe_extension!r}",
        f"reports_dir = {cfg.reports_dir!r}",
        f"aisle = {cfg.aisle!r}",
    ]
    if cfg.default_project:
        lines.append(f"default_project = {cfg.default_project!r}")
    lines.append("")
    lines.append("[resolver]")
    lines.append(f"fuzzy = {str(cfg.resolver.fuzzy).lower()}")
    lines.append(f"threshold = {cfg.resolver.threshold!r}")
    lines.append(f"tie_margin = {cfg.resolver.tie_margin!r}")
    lines.append("")
    lines.append("[report]")
    lines.append(f"max_depth = {cfg.report.max_depth!r}")
    lines.append(f"format = {cfg.report.output_format!r}")
    for dim, units in sorted(cfg.units.conversions.items()):
        lines.append("")
        lines.append(f"[units.{dim}]")
        for unit, factor in units.items():
            lines.append(f"{_toml_key(unit)} = {factor!r}")
    return "\n".join(lines) + "\n"


def _table(merged: dict[str, Any], name: str) -> dict[str, Any]:
    value = merged.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _toml_key(key: str) -> str:
    if key.replace("_", "").replace("-", "").isalnum():
        return key
    return f'"{key}"'


def _ratio(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number between 0 and 1")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number between 0 and 1") from exc
    if not 0.0 <= number <= 1.0:
        raise ConfigError(f"{name} must be a number between 0 and 1")
    return number


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a positive integer") from exc
    if number <= 0:
        raise ConfigError(f"{name} must be a positive integer")
    return number


def _normalize_extension(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        return ".cook"
    if not text.startswith("."):
        text = f".{text}"
    return text.lower()


def _normalize_output_format(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text in OUTPUT_FORMATS:
        return text
    return "text"
