"""Result types returned by ProjectClient operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Position:
    """1-based line/offset position, as the server reports it."""

    line: int
    offset: int

    @classmethod
    def from_body(cls, data: dict[str, Any] | None) -> Position:
        data = data or {}
        return cls(line=int(data.get("line", 1)), offset=int(data.get("offset", 1)))


@dataclass(frozen=True)
class Location:
    """A span in a file."""

    file: str
    start: Position
    end: Position

    @classmethod
    def from_body(cls, data: dict[str, Any], file: str | None = None) -> Location:
        return cls(
            file=file or data.get("file", ""),
            start=Position.from_body(data.get("start")),
            end=Position.from_body(data.get("end")),
        )


@dataclass(frozen=True)
class Reference:
    """One reference to a symbol."""

    location: Location
    line_text: str = ""
    is_definition: bool = False


@dataclass(frozen=True)
class QuickInfo:
    """Type and documentation of the symbol at a position."""

    display_string: str
    documentation: str = ""
    kind: str = ""
    kind_modifiers: str = ""


@dataclass(frozen=True)
class CompletionEntry:
    name: str
    kind: str = ""
    sort_text: str = ""
    kind_modifiers: str = ""


@dataclass(frozen=True)
class TextEdit:
    """Replace start..end with new_text."""

    start: Position
    end: Position
    new_text: str


@dataclass
class RenameResult:
    can_rename: bool
    display_name: str = ""
    error: str | None = None
    locations: dict[str, list[Location]] = field(default_factory=dict)


@dataclass(frozen=True)
class Diagnostic:
    text: str
    start: Position
    end: Position
    category: str = "error"
    code: int | None = None

    @classmethod
    def from_body(cls, data: dict[str, Any]) -> Diagnostic:
        return cls(
            text=data.get("text", ""),
            start=Position.from_body(data.get("start")),
            end=Position.from_body(data.get("end")),
            category=data.get("category", "error"),
            code=data.get("code"),
        )


@dataclass
class DiagnosticsReport:
    """Syntactic and semantic diagnostics for one file.

    success is False when either event was a synthesized failure (the
    session died or the file was closed before both events arrived).
    """

    file: str
    syntactic: list[Diagnostic] = field(default_factory=list)
    semantic: list[Diagnostic] = field(default_factory=list)
    success: bool = True
    message: str | None = None

    @property
    def all(self) -> list[Diagnostic]:
        return [*self.syntactic, *self.semantic]

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.all if d.category == "error")
