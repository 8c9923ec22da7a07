from __future__ import annotations

import argparse
from collections.abc import Callable
from fractions import Fraction
import logging
import sys

from .aisle import load_optional_aisle
from .config import OUTPUT_FORMATS, EffectiveConfig, config_to_toml, resolve_config
from .doctor import check_shelf
from .domain import RecipeDocument
from .errors import (
    AisleError,
    ConfigError,
    CookshelfError,
    EvalError,
    MissingFileError,
    RecipeParseError,
    ReportSyntaxError,
    ResolveError,
    ShelfIndexError,
    UnscalableRecipeError,
    WatchError,
)
from .index import IndexEntry, IndexSnapshot, RecipeIndex
from .listing import list_recipes
from .paths import resolve_report_path, resolve_shelf_paths
from .render import dump, render_candidates, render_recipe, render_report, render_shopping_list, render_table
from .report import Evaluator, parse_report_file
from .resolver import Ambiguous, NotFound, Resolver
from .shopping import build_shopping_list, parse_scaled_reference
from .units import UnitTable
from .watch import watch_shelf


EXIT_AMBIGUOUS = 8


class _Unresolved(Exception):
    def __init__(self, code: int) -> None:
        self.code = code
        super().__init__(code)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help(sys.stderr)
        return 1

    handlers: dict[str, Callable[[argparse.Namespace], int]] = {
        "list": _cmd_list,
        "search": _cmd_search,
        "recipe": _cmd_recipe,
        "shopping-list": _cmd_shopping_list,
        "report": _cmd_report,
        "doctor": _cmd_doctor,
        "watch": _cmd_watch,
        "config": _cmd_config,
    }

    handler = handlers.get(args.command)
    if handler is None:  # pragma: no cover
        return 1  # pragma: no cover

    try:
        return handler(args)
    except _Unresolved as exc:
        return exc.code
    except CookshelfError as exc:
        print(str(exc), file=sys.stderr)
        return _exit_code(exc)
    except KeyboardInterrupt:
        return 130


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--shelf", dest="shelf_path")
    common.add_argument("--project")
    common.add_argument("--profile")
    common.add_argument("--extension", dest="recipe_extension")
    common.add_argument("--reports-dir")
    common.add_argument("--aisle")
    common.add_argument("--no-fuzzy", dest="fuzzy", action="store_const", const=False, default=None)
    common.add_argument("--threshold", type=float)
    common.add_argument("--tie-margin", type=float)
    common.add_argument("--max-depth", type=int)
    common.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS)
    common.add_argument("-v", "--verbose", action="store_true", default=None)

    parser = argparse.ArgumentParser(prog="cookshelf", parents=[common])
    sub = parser.add_subparsers(dest="command")

    listing = sub.add_parser("list", parents=[common], help="List recipes on the shelf")
    listing.add_argument("--tag")

    search = sub.add_parser("search", parents=[common], help="Fuzzy search recipe names")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=10)

    recipe = sub.add_parser("recipe", parents=[common], help="Show one recipe")
    recipe.add_argument("reference")
    recipe.add_argument("--servings", type=_positive_int)
    recipe.add_argument("--pick", action="store_true", help="Choose interactively when ambiguous")

    shopping = sub.add_parser("shopping-list", parents=[common], help="Combined shopping list")
    shopping.add_argument("references", nargs="+", type=_scaled_reference, metavar="REF[:FACTOR]")
    shopping.add_argument("--pick", action="store_true", help="Choose interactively when ambiguous")

    report = sub.add_parser("report", parents=[common], help="Evaluate a report definition")
    report.add_argument("name")

    sub.add_parser("doctor", parents=[common], help="Check every recipe on the shelf")

    watch = sub.add_parser("watch", parents=[common], help="Reindex when the shelf changes")
    watch.add_argument("--interval", type=int, default=1000, help="Polling interval in milliseconds")
    watch.add_argument("--max-cycles", type=int, help=argparse.SUPPRESS)

    sub.add_parser("config", parents=[common], help="Print the effective configuration")

    return parser


def _configure_logging(verbose: bool | None) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a whole number: {text!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return value


def _scaled_reference(text: str) -> tuple[str, Fraction]:
    try:
        return parse_scaled_reference(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _cmd_list(args: argparse.Namespace) -> int:
    cfg, index, _ = _shelf(args)
    rows = list_recipes(index, args.tag)
    print(render_table(rows, ("path", "title", "tags"), cfg.report.output_format), end="")
    return 0


def _cmd_search(args: argparse.Namespace) -> int:
    cfg, _, resolver = _shelf(args)
    rows = [
        {"path": c.entry.relative, "name": c.entry.name, "score": c.score}
        for c in resolver.search(args.query, limit=args.limit)
    ]
    print(render_table(rows, ("path", "score"), cfg.report.output_format), end="")
    return 0


def _cmd_recipe(args: argparse.Namespace) -> int:
    cfg, _, resolver = _shelf(args)
    entry, document = _resolve(resolver, args.reference, cfg, args.pick)
    if args.servings is not None:
        native = document.servings
        if native is None:
            raise UnscalableRecipeError(f"Cannot scale {entry.relative}: it declares no servings")
        document = document.scaled(Fraction(args.servings, native), servings=args.servings)
    print(render_recipe(entry, document, cfg.report.output_format), end="")
    return 0


def _cmd_shopping_list(args: argparse.Namespace) -> int:
    cfg, _, resolver = _shelf(args)
    recipes = []
    for reference, factor in args.references:
        entry, document = _resolve(resolver, reference, cfg, args.pick)
        recipes.append((entry.relative, document, factor))

    aisle = load_optional_aisle(resolve_shelf_paths(cfg).aisle_path)
    shopping = build_shopping_list(recipes, aisle, UnitTable(cfg.units.conversions))
    print(render_shopping_list(shopping, cfg.report.output_format), end="")
    return 0


def _cmd_report(args: argparse.Namespace) -> int:
    cfg, _, resolver = _shelf(args)
    path = resolve_report_path(args.name, cfg)
    definition = parse_report_file(path)
    aisle = load_optional_aisle(resolve_shelf_paths(cfg).aisle_path)
    result = Evaluator.from_config(cfg, aisle).run(definition, resolver)
    print(render_report(result, cfg.report.output_format), end="")
    return 0


def _cmd_doctor(args: argparse.Namespace) -> int:
    cfg, index, resolver = _shelf(args)
    aisle = load_optional_aisle(resolve_shelf_paths(cfg).aisle_path)
    issues = check_shelf(index, aisle, resolver)
    if cfg.report.output_format == "text":
        for issue in issues:
            print(issue)
        if not issues:
            print(f"{len(index.snapshot)} recipes checked, no issues")
    else:
        print(dump([issue.as_dict() for issue in issues], cfg.report.output_format), end="")
    return 4 if any(issue.level == "error" for issue in issues) else 0


def _cmd_watch(args: argparse.Namespace) -> int:
    _, index, _ = _shelf(args)

    def _report(snapshot: IndexSnapshot) -> None:
        print(f"Reindexed {len(snapshot)} recipes")

    watch_shelf(index, args.interval, on_refresh=_report, max_cycles=args.max_cycles)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    cfg = resolve_config(_cli_args_dict(args))
    print(config_to_toml(cfg))
    return 0


def _shelf(args: argparse.Namespace) -> tuple[EffectiveConfig, RecipeIndex, Resolver]:
    cfg = resolve_config(_cli_args_dict(args))
    index = RecipeIndex(cfg.shelf_path, cfg.recipe_extension)
    return cfg, index, Resolver.from_config(cfg, index)


def _resolve(
    resolver: Resolver,
    reference: str,
    cfg: EffectiveConfig,
    pick: bool,
) -> tuple[IndexEntry, RecipeDocument]:
    resolution = resolver.resolve(reference)
    if isinstance(resolution, NotFound):
        raise MissingFileError(f"No recipe matches {reference!r}")
    if isinstance(resolution, Ambiguous):
        if pick:
            from .tui import pick_candidate

            entry = pick_candidate(reference, resolution.candidates)
            if entry is not None:
                return entry, resolver.load(entry)
        print(render_candidates(reference, resolution.candidates, cfg.report.output_format), end="")
        raise _Unresolved(EXIT_AMBIGUOUS)
    return resolution.entry, resolution.document


def _cli_args_dict(args: argparse.Namespace) -> dict[str, object]:
    return vars(args).copy()


def _exit_code(exc: CookshelfError) -> int:
    if isinstance(exc, ConfigError):
        return 2
    if isinstance(exc, MissingFileError):
        return 3
    if isinstance(exc, (RecipeParseError, ResolveError, ReportSyntaxError, AisleError)):
        return 4
    if isinstance(exc, EvalError):
        return 5
    if isinstance(exc, WatchError):
        return 6
    if isinstance(exc, ShelfIndexError):
        return 7
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
