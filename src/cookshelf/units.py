from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction
import re
from typing import Any, Mapping

from .errors import ConfigError


MIXED_RE = re.compile(r"^(?P<whole>\d+)\s+(?P<num>\d+)/(?P<den>\d+)$")
SPACE_RE = re.compile(r"\s+")

UNIT_ALIASES = {
    "tsp": "tsp",
    "teaspoon": "tsp",
    "teaspoons": "tsp",
    "tbsp": "tbsp",
    "tablespoon": "tbsp",
    "tablespoons": "tbsp",
    "mg": "mg",
    "milligram": "mg",
    "milligrams": "mg",
    "g": "g",
    "gr": "g",
    "gram": "g",
    "grams": "g",
    "kg": "kg",
    "kilogram": "kg",
    "kilograms": "kg",
    "ml": "ml",
    "milliliter": "ml",
    "milliliters": "ml",
    "millilitre": "ml",
    "millilitres": "ml",
    "cl": "cl",
    "dl": "dl",
    "l": "l",
    "liter": "l",
    "liters": "l",
    "litre": "l",
    "litres": "l",
    "cup": "cup",
    "cups": "cup",
    "fl oz": "fl oz",
    "fluid ounce": "fl oz",
    "fluid ounces": "fl oz",
    "pint": "pint",
    "pints": "pint",
    "quart": "quart",
    "quarts": "quart",
    "gallon": "gallon",
    "gallons": "gallon",
    "oz": "oz",
    "ounce": "oz",
    "ounces": "oz",
    "lb": "lb",
    "lbs": "lb",
    "pound": "lb",
    "pounds": "lb",
    "piece": "piece",
    "pieces": "piece",
    "pc": "piece",
    "pcs": "piece",
    "dozen": "dozen",
    "clove": "clove",
    "cloves": "clove",
    "can": "can",
    "cans": "can",
    "tin": "can",
    "tins": "can",
    "packet": "packet",
    "packets": "packet",
}

# Factors are relative to the first unit of each dimension.
DEFAULT_CONVERSIONS: dict[str, dict[str, str]] = {
    "mass": {
        "g": "1",
        "mg": "0.001",
        "kg": "1000",
        "oz": "28.349523125",
        "lb": "453.59237",
    },
    "volume": {
        "ml": "1",
        "cl": "10",
        "dl": "100",
        "l": "1000",
        "tsp": "4.92892159375",
        "tbsp": "14.78676478125",
        "fl oz": "29.5735295625",
        "cup": "236.5882365",
        "pint": "473.176473",
        "quart": "946.352946",
        "gallon": "3785.411784",
    },
    "count": {
        "piece": "1",
        "dozen": "12",
    },
}


@dataclass(frozen=True)
class Quantity:
    magnitude: Fraction
    unit: str | None = None

    def scaled(self, factor: Fraction) -> Quantity:
        return Quantity(self.magnitude * factor, self.unit)

    def __str__(self) -> str:
        return format_quantity(self)


class UnitTable:
    """Conversion factors between units that share a dimension."""

    def __init__(self, conversions: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        table: dict[str, dict[str, Any]] = {dim: dict(units) for dim, units in DEFAULT_CONVERSIONS.items()}
        for dim, units in (conversions or {}).items():
            if not isinstance(units, Mapping):
                raise ConfigError(f"units.{dim} must be a table of conversion factors")
            table.setdefault(str(dim), {}).update(units)

        self._units: dict[str, tuple[str, Fraction]] = {}
        for dim, units in table.items():
            for unit, factor in units.items():
                key = canonical_unit(str(unit))
                if key is None:
                    raise ConfigError(f"units.{dim} has an empty unit name")
                self._units[key] = (dim, _factor(dim, key, factor))

    def dimension(self, unit: str | None) -> str | None:
        if unit is None:
            return None
        found = self._units.get(unit)
        return found[0] if found else None

    def factor(self, from_unit: str | None, to_unit: str | None) -> Fraction | None:
        if from_unit == to_unit:
            return Fraction(1)
        if from_unit is None or to_unit is None:
            return None
        src = self._units.get(from_unit)
        dst = self._units.get(to_unit)
        if src is None or dst is None or src[0] != dst[0]:
            return None
        return src[1] / dst[1]

    def convert(self, quantity: Quantity, to_unit: str | None) -> Quantity | None:
        factor = self.factor(quantity.unit, to_unit)
        if factor is None:
            return None
        return Quantity(quantity.magnitude * factor, to_unit)

    def as_dict(self) -> dict[str, dict[str, str]]:
        out: dict[str, dict[str, str]] = {}
        for unit, (dim, factor) in self._units.items():
            out.setdefault(dim, {})[unit] = format_number(factor)
        return out


def _factor(dim: str, unit: str, value: Any) -> Fraction:
    try:
        factor = Fraction(str(value))
    except (ValueError, ZeroDivisionError) as exc:
        raise ConfigError(f"units.{dim}.{unit} must be a number, got {value!r}") from exc
    if factor <= 0:
        raise ConfigError(f"units.{dim}.{unit} must be positive")
    return factor


def canonical_unit(token: str | None) -> str | None:
    if token is None:
        return None
    cleaned = SPACE_RE.sub(" ", token.strip().lower().rstrip(".,")).strip()
    if not cleaned:
        return None
    return UNIT_ALIASES.get(cleaned, cleaned)


def parse_amount(text: str) -> Fraction | None:
    text = text.strip()
    if not text:
        return None

    mixed = MIXED_RE.match(text)
    if mixed:
        den = int(mixed.group("den"))
        if den == 0:
            return None
        return int(mixed.group("whole")) + Fraction(int(mixed.group("num")), den)

    if "/" in text:
        num_text, den_text = text.split("/", 1)
        try:
            return Fraction(int(num_text.strip()), int(den_text.strip()))
        except (ValueError, ZeroDivisionError):
            return None

    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return Fraction(number)


def format_number(value: Fraction, style: str = "auto", decimals: int = 3) -> str:
    if style == "fraction":
        return _format_fraction(value)
    if style == "fixed":
        return str(_to_decimal(value, decimals))
    if value.denominator == 1:
        return str(value.numerator)
    text = str(_to_decimal(value, decimals))
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_quantity(quantity: Quantity, style: str = "auto", decimals: int = 3) -> str:
    number = format_number(quantity.magnitude, style, decimals)
    if quantity.unit:
        return f"{number} {quantity.unit}"
    return number


def _to_decimal(value: Fraction, decimals: int) -> Decimal:
    exact = Decimal(value.numerator) / Decimal(value.denominator)
    return exact.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def _format_fraction(value: Fraction) -> str:
    if value.denominator == 1:
        return str(value.numerator)

    sign = "-" if value < 0 else ""
    value = abs(value)
    whole = value.numerator // value.denominator
    remainder = value - whole
    if whole == 0:
        return f"{sign}{remainder.numerator}/{remainder.denominator}"
    return f"{sign}{whole} {remainder.numerator}/{remainder.denominator}"
