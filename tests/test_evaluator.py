from __future__ import annotations

from fractions import Fraction
from pathlib import Path
import pytest

from cookshelf.aisle import load_aisle
from cookshelf.errors import (
    DepthLimitError,
    DivideByZeroError,
    IncompatibleUnitsError,
    ParseFailedError,
    TypeMismatchError,
    UnknownFieldError,
    UnresolvedReferenceError,
    UnscalableRecipeError,
)
from cookshelf.index import RecipeIndex
from cookshelf.report import Evaluator, Provenance, evaluate_report, parse_report, parse_report_file
from cookshelf.resolver import Resolver
from tests.utils import write_recipe


SOUP = "---\nservings: 8\nrecipes:\n  soup: tomato soup\n---\n"


def _run(root: Path, text: str, **kwargs) -> list[str]:
    definition = parse_report(text)
    result = Evaluator(**kwargs).run(definition, Resolver(RecipeIndex(root)))
    return [line.text for line in result.lines]


# Purpose: verify the example report scales the soup to eight servings.
def test_example_report(example_shelf: Path) -> None:
    definition = parse_report_file(example_shelf / "Reports" / "weekly.report")
    result = evaluate_report(definition, Resolver(RecipeIndex(example_shelf)))
    assert result.title == "Soup night"
    assert [line.text for line in result.lines] == [
        "Tomatoes: 1600 g",
        "- tomato: 1600 g",
        "- onion: 2",
        "- vegetable stock: 1000 ml",
        "- salt: a pinch",
        "- basil: 5 g",
    ]


# Purpose: verify scaled ingredient renders doubled quantity.
def test_scaled_ingredient_renders_doubled_quantity(example_shelf: Path) -> None:
    text = '---\nservings: 8\n---\n{{ recipe("tomato soup").ingredient("tomato") }}\n'
    assert _run(example_shelf, text) == ["1600 g"]


# Purpose: verify scaling applied once per reference.
def test_scaling_applied_once_per_reference(example_shelf: Path) -> None:
    text = SOUP + (
        '{{ soup.ingredient("tomato") }}\n'
        '{{ soup.ingredient("tomato") }}\n'
        '{{ soup.ingredient("tomato") + soup.ingredient("tomato") }}\n'
        '{{ recipe("Tomato-Soup").ingredient("tomato") }}\n'
    )
    assert _run(example_shelf, text) == ["1600 g", "1600 g", "3200 g", "1600 g"]


# Purpose: verify bind records scale factor.
def test_bind_records_scale_factor(example_shelf: Path) -> None:
    definition = parse_report(SOUP + "{{ soup.servings }}\n")
    bindings = Evaluator().bind(definition, Resolver(RecipeIndex(example_shelf)))
    bound = bindings["tomato soup"]
    assert bound.factor == Fraction(2)
    assert bound.document.servings == 8
    assert bound.entry.relative == "Soups/tomato-soup.cook"


# Purpose: verify unscaled report uses native quantities.
def test_unscaled_report_uses_native_quantities(example_shelf: Path) -> None:
    text = '{{ recipe("tomato soup").ingredient("tomato") }} for {{ recipe("tomato soup").servings }}\n'
    assert _run(example_shelf, text) == ["800 g for 4"]


# Purpose: verify deterministic results.
def test_deterministic_results(example_shelf: Path) -> None:
    definition = parse_report_file(example_shelf / "Reports" / "weekly.report")
    resolver = Resolver(RecipeIndex(example_shelf))
    evaluator = Evaluator()
    first = evaluator.run(definition, resolver)
    second = evaluator.run(definition, resolver)
    assert first == second
    assert first.text() == second.text()


# Purpose: verify unresolved reference aborts before output.
def test_unresolved_reference_aborts_before_output(example_shelf: Path) -> None:
    text = 'heading\n{{ recipe("tomato soup").title }}\n{{ recipe("beef wellington").title }}\n'
    definition = parse_report(text)
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        Evaluator().bind(definition, Resolver(RecipeIndex(example_shelf)))
    assert excinfo.value.reference == "beef wellington"
    assert excinfo.value.location == (3, 4)
    with pytest.raises(UnresolvedReferenceError):
        _run(example_shelf, text)


# Purpose: verify ambiguous reference is unresolved.
def test_ambiguous_reference_is_unresolved(tmp_path: Path) -> None:
    write_recipe(tmp_path, "a/bread.cook", "Bake.\n")
    write_recipe(tmp_path, "b/bread.cook", "Bake.\n")
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        _run(tmp_path, '{{ recipe("bread").name }}\n')
    assert excinfo.value.candidates == ("a/bread.cook", "b/bread.cook")


# Purpose: verify parse failure propagates.
def test_parse_failure_propagates(tmp_path: Path) -> None:
    write_recipe(tmp_path, "broken.cook", "Mix @flour{500%g\n")
    with pytest.raises(ParseFailedError):
        _run(tmp_path, '{{ recipe("broken").name }}\n')


# Purpose: verify unscalable recipe.
def test_unscalable_recipe(example_shelf: Path) -> None:
    text = '---\nservings: 4\n---\n{{ recipe("chicken curry").title }}\n'
    with pytest.raises(UnscalableRecipeError):
        _run(example_shelf, text)


# Purpose: verify mass plus volume is incompatible.
def test_mass_plus_volume_is_incompatible(example_shelf: Path) -> None:
    text = SOUP + '{{ soup.ingredient("tomato") + soup.ingredient("vegetable stock") }}\n'
    with pytest.raises(IncompatibleUnitsError) as excinfo:
        _run(example_shelf, text)
    assert (excinfo.value.left, excinfo.value.right) == ("g", "ml")
    assert excinfo.value.location is not None


# Purpose: verify expression values.
@pytest.mark.parametrize(
    ("expr", "expected"),
    [
        ('quantity(1, "kg") + quantity(500, "g")', "1.5 kg"),
        ('quantity(1, "kg") - quantity(250, "g")', "0.75 kg"),
        ('quantity(2, "kg") * 3', "6 kg"),
        ('3 * quantity(2, "kg")', "6 kg"),
        ('quantity(1, "kg") / quantity(500, "g")', "2"),
        ('quantity(1, "kg") / 4', "0.25 kg"),
        ('quantity(3, "tsp") to "tbsp"', "1 tbsp"),
        ('quantity(1, "cup") to "ml" | fixed(1)', "236.6 ml"),
        ('quantity(3, "cup") / 2 | fraction', "1 1/2 cup"),
        ('-quantity(2, "g")', "-2 g"),
        ('1 + 2 * 3', "7"),
        ('(1 + 2) * 3', "9"),
        ('"to" + "mato"', "tomato"),
        ('quantity(1, "kg") == quantity(1000, "g")', "true"),
        ('quantity(1, "kg") > quantity(999, "g")', "true"),
        ('"apple" < "banana"', "true"),
        ('"mat" in "tomato"', "true"),
        ("not false", "true"),
        ("true or false", "true"),
    ],
)
def test_expression_values(example_shelf: Path, expr: str, expected: str) -> None:
    assert _run(example_shelf, "{{ " + expr + " }}\n") == [expected]


# Purpose: verify expression errors.
@pytest.mark.parametrize(
    ("expr", "error"),
    [
        ('quantity(1, "g") + quantity(1, "ml")', IncompatibleUnitsError),
        ('quantity(1, "g") * quantity(1, "g")', IncompatibleUnitsError),
        ('2 + quantity(1, "g")', IncompatibleUnitsError),
        ('2 / quantity(1, "g")', IncompatibleUnitsError),
        ('quantity(1, "g") to "ml"', IncompatibleUnitsError),
        ('2 to "g"', IncompatibleUnitsError),
        ('quantity(1, "g") == quantity(1, "ml")', IncompatibleUnitsError),
        ("1 / 0", DivideByZeroError),
        ('quantity(1, "g") / quantity(0, "kg")', DivideByZeroError),
        ('"a" + 1', TypeMismatchError),
        ('"a" == 1', TypeMismatchError),
        ("1 and true", TypeMismatchError),
        ("not 1", TypeMismatchError),
        ('-"a"', TypeMismatchError),
        ("1 < true", TypeMismatchError),
        ("1 in 2", TypeMismatchError),
    ],
)
def test_expression_errors(example_shelf: Path, expr: str, error: type) -> None:
    with pytest.raises(error):
        _run(example_shelf, "{{ " + expr + " }}\n")


# Purpose: verify short circuit skips right operand.
def test_short_circuit_skips_right_operand(example_shelf: Path) -> None:
    text = SOUP + "{{ false and soup.calories }} {{ true or soup.calories }}\n"
    assert _run(example_shelf, text) == ["false true"]


# Purpose: verify recipe fields.
def test_recipe_fields(example_shelf: Path) -> None:
    text = SOUP + (
        "{{ soup.title }}|{{ soup.name }}|{{ soup.servings }}|{{ soup.tags }}\n"
        '{{ soup.has_tag("Soup") }}|{{ "vegetarian" in soup.tags }}|{{ "onion" in soup.ingredients }}\n'
        '{{ soup.cookware }}|{{ soup.meta("title") }}\n'
        "{% for step in soup.steps %}{{ step.number }}:{{ step.section }}{% endfor %}\n"
    )
    assert _run(example_shelf, text) == [
        "Tomato Soup|tomato-soup|8|soup, vegetarian",
        "true|true|true",
        "pot|Tomato Soup",
        "1:2:3:",
    ]


# Purpose: verify ingredient and quantity fields.
def test_ingredient_and_quantity_fields(example_shelf: Path) -> None:
    text = SOUP + (
        "{% for item in soup.ingredients %}"
        "{{ item.name }};{{ item.note }};{{ item.fixed }}"
        "{% if item.name == \"tomato\" %};{{ item.quantity.value }};{{ item.quantity.unit }}{% endif %}\n"
        "{% endfor %}"
    )
    assert _run(example_shelf, text) == [
        "tomato;;false;1600;g",
        "onion;diced;false",
        "vegetable stock;;false",
        "salt;;false",
        "basil;;true",
    ]


# Purpose: verify loop filter by category.
def test_loop_filter_by_category(example_shelf: Path) -> None:
    aisle = load_aisle(example_shelf / "config" / "aisle.conf")
    text = SOUP + (
        '{% for item in soup.ingredients if item.category == "produce" %}{{ item.name }} {% endfor %}\n'
    )
    assert _run(example_shelf, text, aisle=aisle) == ["tomato onion basil "]


# Purpose: verify loop restarts each use.
def test_loop_restarts_each_use(example_shelf: Path) -> None:
    text = SOUP + (
        "{% for c in soup.cookware %}{{ c.name }}{% endfor %}-"
        "{% for c in soup.cookware %}{{ c.name }}{% endfor %}\n"
    )
    assert _run(example_shelf, text) == ["pot-pot"]


# Purpose: verify conditional branches.
def test_conditional_branches(example_shelf: Path) -> None:
    text = SOUP + (
        '{% if soup.servings > 10 %}big{% elif soup.has_tag("soup") %}soupy{% else %}other{% endif %}\n'
    )
    assert _run(example_shelf, text) == ["soupy"]


# Purpose: verify condition must be boolean.
def test_condition_must_be_boolean(example_shelf: Path) -> None:
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, SOUP + "{% if soup.servings %}x{% endif %}\n")
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, SOUP + "{% for i in soup.ingredients if i.name %}x{% endfor %}\n")


# Purpose: verify loop needs a list.
def test_loop_needs_a_list(example_shelf: Path) -> None:
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, SOUP + "{% for i in soup.title %}x{% endfor %}\n")


# Purpose: verify unknown fields.
@pytest.mark.parametrize(
    "expr",
    ["soup.calories", 'soup.ingredient("saffron")', 'soup.meta("rating")', "soup.title.length"],
)
def test_unknown_fields(example_shelf: Path, expr: str) -> None:
    with pytest.raises(UnknownFieldError) as excinfo:
        _run(example_shelf, SOUP + "{{ " + expr + " }}\n")
    assert excinfo.value.location is not None


# Purpose: verify field argument checks.
def test_field_argument_checks(example_shelf: Path) -> None:
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, SOUP + "{{ soup.has_tag }}\n")
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, SOUP + '{{ soup.title("x") }}\n')
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, SOUP + "{{ soup.ingredient(1) }}\n")


# Purpose: verify ingredient total sums units.
def test_ingredient_total_sums_units(tmp_path: Path) -> None:
    write_recipe(tmp_path, "bread.cook", ">> servings: 1\n\nAdd @flour{200%g}.\n\nDust with @Flour{0.5%kg}.\n")
    text = '{{ recipe("bread").ingredient("flour") }}\n'
    assert _run(tmp_path, text) == ["700 g"]


# Purpose: verify ingredient total rejects text amounts.
def test_ingredient_total_rejects_text_amounts(tmp_path: Path) -> None:
    write_recipe(tmp_path, "bread.cook", "Add @salt{1%g}.\n\nAdd @salt{a pinch}.\n")
    with pytest.raises(TypeMismatchError):
        _run(tmp_path, '{{ recipe("bread").ingredient("salt") }}\n')


# Purpose: verify depth limit.
def test_depth_limit(example_shelf: Path) -> None:
    with pytest.raises(DepthLimitError):
        _run(example_shelf, "{{ 1 + (1 + (1 + (1 + 1))) }}\n", max_depth=4)


# Purpose: verify a long flat sum counts as one nesting level.
def test_long_flat_sum_within_depth_limit(example_shelf: Path) -> None:
    chain = " + ".join(["1"] * 70)
    assert _run(example_shelf, "{{ " + chain + " }}\n") == ["70"]


# Purpose: verify flattened chains keep left-to-right grouping.
def test_flat_chain_is_left_associative(example_shelf: Path) -> None:
    assert _run(example_shelf, "{{ 10 - 2 - 3 + 1 }}\n") == ["6"]
    assert _run(example_shelf, "{{ 24 / 2 / 3 * 2 }}\n") == ["8"]


# Purpose: verify long logical chains evaluate and short-circuit.
def test_long_logical_chain(example_shelf: Path) -> None:
    chain = " and ".join(["true"] * 80)
    assert _run(example_shelf, "{{ " + chain + " }}\n") == ["true"]
    assert _run(example_shelf, "{{ false or false or true or 1 }}\n") == ["true"]
    with pytest.raises(TypeMismatchError):
        _run(example_shelf, "{{ true and true and 1 }}\n")


# Purpose: verify line provenance.
def test_line_provenance(example_shelf: Path) -> None:
    definition = parse_report_file(example_shelf / "Reports" / "weekly.report")
    result = Evaluator().run(definition, Resolver(RecipeIndex(example_shelf)))
    soup = Provenance("tomato soup", "Soups/tomato-soup.cook")
    tomato = Provenance("tomato soup", "Soups/tomato-soup.cook", "tomato")
    assert result.lines[0].provenance == (soup, tomato)
    assert result.lines[1].provenance == (tomato,)
    assert result.lines[2].provenance == (Provenance("tomato soup", "Soups/tomato-soup.cook", "onion"),)


# Purpose: verify plain text has no provenance.
def test_plain_text_has_no_provenance(example_shelf: Path) -> None:
    definition = parse_report("hello\n\nworld\n")
    result = Evaluator().run(definition, Resolver(RecipeIndex(example_shelf)))
    assert [(line.text, line.provenance) for line in result.lines] == [("hello", ()), ("", ()), ("world", ())]
    assert result.text() == "hello\n\nworld\n"
