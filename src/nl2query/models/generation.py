"""Generation request and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from nl2query.models.schema import Dialect, NameMapping, SchemaDescriptor, freeze_mapping


class GenerationKind(str, Enum):
    QUERY = "query"
    NEEDS_CLARIFICATION = "needs_clarification"
    FAILED = "failed"


@dataclass(frozen=True)
class ClarificationAnswer:
    """Relation chosen by the user to resolve an ambiguity."""

    selected_relation: str
    earlier_selections: tuple[str, ...] = ()

    @property
    def all_selections(self) -> tuple[str, ...]:
        return (*self.earlier_selections, self.selected_relation)


@dataclass(frozen=True)
class GenerationRequest:
    """Everything the generator needs for one user turn."""

    message: str
    schema: SchemaDescriptor
    mapping: NameMapping = field(default_factory=freeze_mapping)
    clarification_answer: ClarificationAnswer | None = None

    @property
    def dialect(self) -> Dialect:
        return self.schema.dialect


@dataclass(frozen=True)
class QueryGenerated:
    text: str
    source: str = "unknown"

    @property
    def kind(self) -> GenerationKind:
        return GenerationKind.QUERY


@dataclass(frozen=True)
class NeedsClarification:
    question: str
    options: tuple[str, ...] = ()

    @property
    def kind(self) -> GenerationKind:
        return GenerationKind.NEEDS_CLARIFICATION


@dataclass(frozen=True)
class GenerationFailed:
    reason: str

    @property
    def kind(self) -> GenerationKind:
        return GenerationKind.FAILED


GenerationResult = Union[QueryGenerated, NeedsClarification, GenerationFailed]
