from __future__ import annotations

import json
from pathlib import Path
import pytest

from cookshelf import cli
from cookshelf.errors import (
    AisleError,
    ConfigError,
    CookshelfError,
    DivideByZeroError,
    MissingFileError,
    ReportSyntaxError,
    RootInvalidError,
    WatchError,
)
from tests.utils import write_global_config, write_recipe


def _run(capsys: pytest.CaptureFixture[str], shelf: Path, project: Path, *args: str) -> tuple[int, str, str]:
    code = cli.main([*args, "--shelf", str(shelf), "--project", str(project)])
    out, err = capsys.readouterr()
    return code, out, err


# Purpose: verify no command prints help.
def test_cli_no_command(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([]) == 1
    assert "usage:" in capsys.readouterr().err


# Purpose: verify list output.
def test_cli_list(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "list")
    assert code == 0
    assert out.splitlines() == [
        "Breads/focaccia.cook\tFocaccia\tbread,baking",
        "Mains/chicken_curry.cook\tChicken Curry\tdinner",
        "Soups/tomato-soup.cook\tTomato Soup\tsoup,vegetarian",
    ]


# Purpose: verify list tag filter and json output.
def test_cli_list_json(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "list", "--tag", "bread", "--format", "json")
    assert code == 0
    assert [row["path"] for row in json.loads(out)] == ["Breads/focaccia.cook"]


# Purpose: verify search ranks the closest recipe first.
def test_cli_search(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "search", "tomato sop", "--limit", "1")
    assert code == 0
    assert out.startswith("Soups/tomato-soup.cook\t")
    assert len(out.splitlines()) == 1


# Purpose: verify recipe scaling from the command line.
def test_cli_recipe_servings(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "recipe", "tomato bisque", "--servings", "8")
    assert code == 0
    lines = out.splitlines()
    assert lines[:2] == ["Tomato Soup", "Servings: 8"]
    assert "  tomato: 1600 g" in lines
    assert "  basil: 5 g" in lines


# Purpose: verify scaling a recipe without servings fails.
def test_cli_recipe_unscalable(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, _, err = _run(capsys, example_shelf, tmp_path, "recipe", "chicken curry", "--servings", "2")
    assert code == 5
    assert "declares no servings" in err


# Purpose: verify unknown recipes exit with the missing-file code.
def test_cli_recipe_not_found(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, _, err = _run(capsys, example_shelf, tmp_path, "recipe", "beef wellington")
    assert code == 3
    assert "beef wellington" in err


# Purpose: verify ambiguous references list candidates.
def test_cli_recipe_ambiguous(tmp_path: Path, temp_home: Path, capsys) -> None:
    shelf = tmp_path / "Shelf"
    write_recipe(shelf, "a/bread.cook", "Bake.\n")
    write_recipe(shelf, "b/bread.cook", "Bake.\n")
    code, out, _ = _run(capsys, shelf, tmp_path, "recipe", "bread")
    assert code == cli.EXIT_AMBIGUOUS
    assert out.splitlines() == ["'bread' matches several recipes:", "  a/bread.cook", "  b/bread.cook"]


# Purpose: verify the picker choice is used for ambiguous references.
def test_cli_recipe_pick(tmp_path: Path, temp_home: Path, capsys, monkeypatch) -> None:
    shelf = tmp_path / "Shelf"
    write_recipe(shelf, "a/bread.cook", ">> title: Rye\n\nBake.\n")
    write_recipe(shelf, "b/bread.cook", ">> title: Wheat\n\nBake.\n")
    monkeypatch.setattr("cookshelf.tui.pick_candidate", lambda reference, candidates: candidates[1].entry)
    code, out, _ = _run(capsys, shelf, tmp_path, "recipe", "bread", "--pick")
    assert code == 0
    assert out.splitlines()[0] == "Wheat"


# Purpose: verify the combined shopping list.
def test_cli_shopping_list(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "shopping-list", "tomato soup:2", "focaccia")
    assert code == 0
    assert out == (
        "[produce]\n"
        "  basil: 5 g\n"
        "  onion: 2\n"
        "  tomato: 1600 g\n"
        "\n"
        "[pantry]\n"
        "  flour: 500 g\n"
        "  salt: 10 g, a pinch\n"
        "  vegetable stock: 1000 ml\n"
        "\n"
        "[other]\n"
        "  water: 350 ml\n"
    )


# Purpose: verify bad scale factors are rejected by the parser.
def test_cli_shopping_list_bad_factor(example_shelf: Path, tmp_path: Path, temp_home: Path) -> None:
    with pytest.raises(SystemExit):
        cli.main(["shopping-list", "tomato soup:0", "--shelf", str(example_shelf)])


# Purpose: verify report evaluation.
def test_cli_report(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "report", "weekly")
    assert code == 0
    assert out.splitlines()[:3] == ["Soup night", "", "Tomatoes: 1600 g"]


# Purpose: verify report json output carries provenance.
def test_cli_report_json(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "report", "weekly.report", "--format", "json")
    assert code == 0
    data = json.loads(out)
    assert data["lines"][1]["provenance"] == [
        {"recipe": "tomato soup", "path": "Soups/tomato-soup.cook", "ingredient": "tomato"}
    ]


# Purpose: verify report error exit codes.
@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ("{{ 1 + }}\n", 4),
        ('{{ recipe("tomato soup").calories }}\n', 5),
        ('{{ recipe("nothing like it").title }}\n', 5),
    ],
)
def test_cli_report_errors(
    example_shelf: Path, tmp_path: Path, temp_home: Path, capsys, body: str, expected: int
) -> None:
    report = tmp_path / "bad.report"
    report.write_text(body, encoding="utf-8")
    code, _, err = _run(capsys, example_shelf, tmp_path, "report", str(report))
    assert code == expected
    assert err


# Purpose: verify missing reports.
def test_cli_report_missing(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, _, err = _run(capsys, example_shelf, tmp_path, "report", "monthly")
    assert code == 3
    assert "monthly" in err


# Purpose: verify doctor output and exit codes.
def test_cli_doctor(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys) -> None:
    code, out, _ = _run(capsys, example_shelf, tmp_path, "doctor")
    assert code == 0
    assert out.splitlines()[0] == "warning: Mains/chicken_curry.cook: no servings metadata; recipe cannot be scaled"

    shelf = tmp_path / "Broken"
    write_recipe(shelf, "bad.cook", "Mix @flour{1.\n")
    code, out, _ = _run(capsys, shelf, tmp_path, "doctor", "--format", "yaml")
    assert code == 4
    assert "level: error" in out


# Purpose: verify doctor on a clean shelf.
def test_cli_doctor_clean(tmp_path: Path, temp_home: Path, capsys) -> None:
    shelf = tmp_path / "Shelf"
    write_recipe(shelf, "soup.cook", ">> servings: 2\n\nBoil @water{1%l}.\n")
    code, out, _ = _run(capsys, shelf, tmp_path, "doctor")
    assert code == 0
    assert out == "1 recipes checked, no issues\n"


# Purpose: verify watch stops after the requested cycles.
def test_cli_watch(example_shelf: Path, tmp_path: Path, temp_home: Path, capsys, monkeypatch) -> None:
    monkeypatch.setattr("cookshelf.watch.time.sleep", lambda seconds: None)
    code, out, _ = _run(capsys, example_shelf, tmp_path, "watch", "--interval", "1", "--max-cycles", "1")
    assert code == 0
    assert out == ""


# Purpose: verify config output merges the global file.
def test_cli_config(tmp_path: Path, temp_home: Path, capsys) -> None:
    write_global_config(temp_home, 'shelf_path = "/shelf"\n[resolver]\nthreshold = 0.7\n')
    assert cli.main(["config", "--project", str(tmp_path), "--no-fuzzy"]) == 0
    out = capsys.readouterr().out
    assert "shelf_path = '/shelf'" in out
    assert "fuzzy = false" in out
    assert "threshold = 0.7" in out


# Purpose: verify a missing shelf setting is a config error.
def test_cli_missing_shelf(tmp_path: Path, temp_home: Path, capsys) -> None:
    assert cli.main(["list", "--project", str(tmp_path)]) == 2
    assert "shelf_path is required" in capsys.readouterr().err


# Purpose: verify an invalid shelf root exits with the index code.
def test_cli_invalid_shelf(tmp_path: Path, temp_home: Path, capsys) -> None:
    code, _, err = _run(capsys, tmp_path / "nope", tmp_path, "list")
    assert code == 7
    assert "not a directory" in err


# Purpose: verify exit code mapping.
@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ConfigError("x"), 2),
        (MissingFileError("x"), 3),
        (ReportSyntaxError("x", 1, 1), 4),
        (AisleError("x"), 4),
        (DivideByZeroError("x"), 5),
        (WatchError("x"), 6),
        (RootInvalidError("/nope"), 7),
        (CookshelfError("x"), 1),
    ],
)
def test_exit_code(exc: CookshelfError, expected: int) -> None:
    assert cli._exit_code(exc) == expected


# Purpose: verify keyboard interrupts exit quietly.
def test_cli_keyboard_interrupt(example_shelf: Path, tmp_path: Path, temp_home: Path, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr("cookshelf.watch.time.sleep", boom)
    assert cli.main(["watch", "--shelf", str(example_shelf), "--project", str(tmp_path)]) == 130
