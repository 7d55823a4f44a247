"""Responses returned from a single pipeline turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from nl2query.models.clarification import ClarificationContext
from nl2query.models.execution import ErrorClassification, Row, recovery_hint


class TurnKind(str, Enum):
    CLARIFY = "clarify"
    ANSWER = "answer"
    ERROR = "error"


@dataclass(frozen=True)
class ClarifyResponse:
    question: str
    options: tuple[str, ...]
    context: ClarificationContext

    @property
    def kind(self) -> TurnKind:
        return TurnKind.CLARIFY


@dataclass(frozen=True)
class AnswerResponse:
    summary: str
    query: str
    rows: list[Row] = field(default_factory=list)
    summary_source: str = "fallback"
    query_source: str = "unknown"
    truncated: bool = False

    @property
    def kind(self) -> TurnKind:
        return TurnKind.ANSWER


@dataclass(frozen=True)
class ErrorResponse:
    classification: ErrorClassification
    message: str
    detail: str | None = None
    query: str | None = None

    @property
    def kind(self) -> TurnKind:
        return TurnKind.ERROR

    @property
    def hint(self) -> str:
        return recovery_hint(self.classification, self.detail)


TurnResponse = Union[ClarifyResponse, AnswerResponse, ErrorResponse]
