"""Execution outcomes and the closed error taxonomy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

Row = dict[str, Any]


class ErrorClassification(str, Enum):
    """Every failure a turn can surface to the user."""

    AMBIGUOUS_RELATION = "AMBIGUOUS_RELATION"
    GENERATION_FAILED = "GENERATION_FAILED"
    UNSAFE_QUERY = "UNSAFE_QUERY"
    RELATION_NOT_FOUND = "RELATION_NOT_FOUND"
    FIELD_NOT_FOUND = "FIELD_NOT_FOUND"
    INCOMPLETE_QUERY = "INCOMPLETE_QUERY"
    UNKNOWN = "UNKNOWN"


_RECOVERY_HINTS: dict[ErrorClassification, str] = {
    ErrorClassification.AMBIGUOUS_RELATION: "Pick one of the suggested tables to continue.",
    ErrorClassification.GENERATION_FAILED: (
        "I could not turn that question into a query. Try rephrasing it."
    ),
    ErrorClassification.UNSAFE_QUERY: (
        "Only read-only queries can be run. The generated query was not executed."
    ),
    ErrorClassification.RELATION_NOT_FOUND: (
        "Table '{detail}' does not exist. Check the schema view for available tables."
    ),
    ErrorClassification.FIELD_NOT_FOUND: (
        "Column '{detail}' does not exist. Check the schema view for available columns."
    ),
    ErrorClassification.INCOMPLETE_QUERY: (
        "The generated query was incomplete. Try asking again with more detail."
    ),
    ErrorClassification.UNKNOWN: "The query failed to run.",
}


def recovery_hint(classification: ErrorClassification, detail: str | None = None) -> str:
    """User-facing recovery suggestion for a classification."""
    template = _RECOVERY_HINTS[classification]
    return template.format(detail=detail or "unknown")


@dataclass(frozen=True)
class ExecutionSuccess:
    rows: list[Row] = field(default_factory=list)
    truncated: bool = False


@dataclass(frozen=True)
class ExecutionError:
    classification: ErrorClassification
    message: str
    detail: str | None = None


ExecutionOutcome = Union[ExecutionSuccess, ExecutionError]
