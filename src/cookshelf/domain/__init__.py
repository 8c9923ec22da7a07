from .cooklang import FRONTMATTER_RE, parse_recipe, read_metadata
from .models import (
    Amount,
    Cookware,
    Ingredient,
    RecipeDocument,
    Step,
    Timer,
    metadata_aliases,
    normalize_list,
    parse_servings,
)

__all__ = [
    "FRONTMATTER_RE",
    "Amount",
    "Cookware",
    "Ingredient",
    "RecipeDocument",
    "Step",
    "Timer",
    "metadata_aliases",
    "normalize_list",
    "parse_recipe",
    "parse_servings",
    "read_metadata",
]
