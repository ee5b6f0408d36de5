"""Exception types for Gorgon.

Every failure that belongs to a single unit carries the unit's identifier so that
one bad file never aborts a whole build: the engine records the error against the
unit and moves on.

Hierarchy:
- GorgonError
  - ConfigError
  - BuildError
  - UnitError
    - ParseError
    - RegistrationConflict
    - RenderError
      - RenderLimitExceeded
      - UnknownUnitError
"""

from __future__ import annotations

from pathlib import Path


class GorgonError(Exception):
    """Base class for all Gorgon errors."""


class ConfigError(GorgonError):
    """Raised when gorgon.yaml or a variables file cannot be used."""


class BuildError(GorgonError):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class UnitError(GorgonError):
    """Error attributed to one renderable unit."""

    def __init__(self, unit_id: str, message: str):
        self.unit_id = unit_id
        self.message = message
        super().__init__(f"{unit_id}: {message}")


class ParseError(UnitError):
    """Malformed invocation syntax inside a unit.

    Attributes:
        line: 1-based line of the offending markup.
        column: 1-based column of the offending markup.
    """

    def __init__(self, unit_id: str, message: str, line: int = 0, column: int = 0):
        self.line = line
        self.column = column
        location = f" (line {line}, column {column})" if line else ""
        super().__init__(unit_id, f"{message}{location}")
        self.message = message


class RegistrationConflict(UnitError):
    """Two source files derive the same unit identifier.

    The first registration stays in place; the second is rejected.
    """

    def __init__(self, unit_id: str, existing_path: Path | None, new_path: Path | None):
        self.existing_path = existing_path
        self.new_path = new_path
        super().__init__(
            unit_id,
            f"identifier already registered from {existing_path}; rejected {new_path}",
        )


class RenderError(UnitError):
    """A unit could not be rendered."""


class RenderLimitExceeded(RenderError):
    """Expansion went deeper than the configured recursion ceiling."""

    def __init__(self, unit_id: str, limit: int, path: tuple[str, ...] = ()):
        self.limit = limit
        self.path = path
        super().__init__(unit_id, f"recursion depth exceeded the limit of {limit}")


class UnknownUnitError(RenderError, KeyError):
    """No content page or component exists under the requested identifier."""

    def __str__(self) -> str:
        return f"{self.unit_id}: {self.message}"
