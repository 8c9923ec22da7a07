from __future__ import annotations

from pathlib import Path

from cookshelf.index import RecipeIndex
from cookshelf.listing import list_recipes
from tests.utils import write_recipe


# Purpose: verify listing and tag filters.
def test_list_recipes_filters(example_shelf: Path) -> None:
    index = RecipeIndex(example_shelf)
    all_recipes = list_recipes(index)
    assert [r["path"] for r in all_recipes] == [
        "Breads/focaccia.cook",
        "Mains/chicken_curry.cook",
        "Soups/tomato-soup.cook",
    ]
    assert all_recipes[0] == {
        "name": "focaccia",
        "title": "Focaccia",
        "path": "Breads/focaccia.cook",
        "tags": ["bread", "baking"],
    }
    assert [r["name"] for r in list_recipes(index, "SOUP")] == ["tomato-soup"]
    assert list_recipes(index, "dessert") == []


# Purpose: verify empty shelves.
def test_list_recipes_empty(tmp_path: Path) -> None:
    assert list_recipes(RecipeIndex(tmp_path)) == []


# Purpose: verify recipes with broken front matter are skipped.
def test_list_recipes_skips_bad_files(tmp_path: Path) -> None:
    write_recipe(tmp_path, "bad-yaml.cook", "---\n[bad\n---\nBoil.\n")
    write_recipe(tmp_path, "list-frontmatter.cook", "---\n- a\n---\nBoil.\n")
    write_recipe(tmp_path, "plain.cook", "Boil @water.\n")
    rows = list_recipes(RecipeIndex(tmp_path))
    assert rows == [{"name": "plain", "title": None, "path": "plain.cook", "tags": []}]
