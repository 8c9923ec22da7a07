from __future__ import annotations

from pathlib import Path
from typing import Sequence


class CookshelfError(Exception):
    pass


class ConfigError(CookshelfError):
    pass


class MissingFileError(CookshelfError):
    pass


class RecipeParseError(CookshelfError):
    def __init__(self, message: str, line: int | None = None, source: str | None = None) -> None:
        self.message = message
        self.line = line
        self.source = source
        where = source or "<recipe>"
        if line is not None:
            where = f"{where}:{line}"
        super().__init__(f"{where}: {message}")


class AisleError(CookshelfError):
    pass


class ShelfIndexError(CookshelfError):
    pass


class RootInvalidError(ShelfIndexError):
    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        super().__init__(f"Recipe root is not a directory: {root}")


class ResolveError(CookshelfError):
    pass


class ParseFailedError(ResolveError):
    def __init__(self, path: Path, error: Exception) -> None:
        self.path = path
        self.error = error
        super().__init__(f"Failed to parse {path}: {error}")


class RecipeReadError(ResolveError):
    def __init__(self, path: Path, error: OSError) -> None:
        self.path = path
        self.error = error
        super().__init__(f"Failed to read {path}: {error.strerror or error}")


class ReportSyntaxError(CookshelfError):
    def __init__(self, message: str, line: int | None = None, column: int | None = None) -> None:
        self.message = message
        self.line = line
        self.column = column
        if line is not None:
            message = f"line {line}, column {column}: {message}"
        super().__init__(message)


class EvalError(CookshelfError):
    """Base for failures raised while evaluating a report.

    ``location`` is the ``(line, column)`` of the offending node in the report
    source when it is known.
    """

    def __init__(self, message: str, location: tuple[int, int] | None = None) -> None:
        self.message = message
        self.location = location
        if location is not None:
            message = f"line {location[0]}, column {location[1]}: {message}"
        super().__init__(message)


class UnresolvedReferenceError(EvalError):
    def __init__(
        self,
        reference: str,
        candidates: Sequence[str] = (),
        location: tuple[int, int] | None = None,
    ) -> None:
        self.reference = reference
        self.candidates = tuple(candidates)
        if self.candidates:
            message = f"Recipe reference {reference!r} is ambiguous: " + ", ".join(self.candidates)
        else:
            message = f"Recipe reference {reference!r} matches no recipe"
        super().__init__(message, location)


class UnknownFieldError(EvalError):
    def __init__(self, field: str, target: str, location: tuple[int, int] | None = None) -> None:
        self.field = field
        self.target = target
        super().__init__(f"Unknown field {field!r} on {target}", location)


class IncompatibleUnitsError(EvalError):
    def __init__(
        self,
        left: str | None,
        right: str | None,
        location: tuple[int, int] | None = None,
    ) -> None:
        self.left = left
        self.right = right
        super().__init__(
            f"Incompatible units: {left or 'no unit'} and {right or 'no unit'}",
            location,
        )


class TypeMismatchError(EvalError):
    pass


class DivideByZeroError(EvalError):
    pass


class UnscalableRecipeError(EvalError):
    pass


class DepthLimitError(EvalError):
    pass


class WatchError(CookshelfError):
    pass
