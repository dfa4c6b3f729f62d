"""
Diagnostics emitted by every analysis stage.

No stage is fail-fast: problems are collected as Diagnostic values attached to
the source range of the node that caused them.
"""

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from arazzo_workbench.core.tree import EMPTY_RANGE, Range


class Severity(str, Enum):
    """Diagnostic severity."""

    ERROR = "error"
    WARNING = "warning"


class DiagnosticKind(str, Enum):
    """
    Error taxonomy.

    - SYNTAX: malformed underlying document, passed through from the parser
    - STRUCTURAL: missing, invalid or mutually exclusive fields
    - REFERENCE: dangling step, workflow, source or component reference
    - EXPRESSION: malformed or unresolvable runtime expression
    - GRAPH: unreachable step, redundant default-edge suppression
    """

    SYNTAX = "syntax"
    STRUCTURAL = "structural"
    REFERENCE = "reference"
    EXPRESSION = "expression"
    GRAPH = "graph"


class Diagnostic(BaseModel):
    """A single problem found in a document."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = Field(..., description="error or warning")
    message: str = Field(..., description="Human readable message")
    range: Range = Field(default=EMPTY_RANGE, description="(start, end) character offsets")
    kind: DiagnosticKind = Field(default=DiagnosticKind.STRUCTURAL)
    code: Optional[str] = Field(default=None, description="Stable machine-readable code")

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


class DiagnosticCollector:
    """
    Accumulates diagnostics for one analysis pass.

    Mirrors the add_error/add_warning style used by the validators.
    """

    def __init__(self) -> None:
        self.diagnostics: list[Diagnostic] = []

    def add_error(
        self,
        kind: DiagnosticKind,
        code: str,
        message: str,
        range: Range,
    ) -> Diagnostic:
        """Add an error diagnostic."""
        diagnostic = Diagnostic(
            severity=Severity.ERROR, message=message, range=range, kind=kind, code=code
        )
        self.diagnostics.append(diagnostic)
        return diagnostic

    def add_warning(
        self,
        kind: DiagnosticKind,
        code: str,
        message: str,
        range: Range,
    ) -> Diagnostic:
        """Add a warning diagnostic."""
        diagnostic = Diagnostic(
            severity=Severity.WARNING, message=message, range=range, kind=kind, code=code
        )
        self.diagnostics.append(diagnostic)
        return diagnostic

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self.diagnostics.extend(diagnostics)

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)


def dedupe_diagnostics(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    """Drop exact duplicates while preserving first-seen order."""
    seen: set[Diagnostic] = set()
    result: list[Diagnostic] = []
    for diagnostic in diagnostics:
        if diagnostic in seen:
            continue
        seen.add(diagnostic)
        result.append(diagnostic)
    return result
