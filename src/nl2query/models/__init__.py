"""Typed data model shared across the pipeline."""

from nl2query.models.audit import AuditRecord
from nl2query.models.clarification import ClarificationContext
from nl2query.models.execution import (
    ErrorClassification,
    ExecutionError,
    ExecutionOutcome,
    ExecutionSuccess,
    Row,
    recovery_hint,
)
from nl2query.models.generation import (
    ClarificationAnswer,
    GenerationFailed,
    GenerationKind,
    GenerationRequest,
    GenerationResult,
    NeedsClarification,
    QueryGenerated,
)
from nl2query.models.schema import (
    Dialect,
    FieldDescriptor,
    NameMapping,
    RelationDescriptor,
    SchemaDescriptor,
    SchemaFormatError,
    freeze_mapping,
)
from nl2query.models.turn import (
    AnswerResponse,
    ClarifyResponse,
    ErrorResponse,
    TurnKind,
    TurnResponse,
)

__all__ = [
    "AnswerResponse",
    "AuditRecord",
    "ClarificationAnswer",
    "ClarificationContext",
    "ClarifyResponse",
    "Dialect",
    "ErrorClassification",
    "ErrorResponse",
    "ExecutionError",
    "ExecutionOutcome",
    "ExecutionSuccess",
    "FieldDescriptor",
    "GenerationFailed",
    "GenerationKind",
    "GenerationRequest",
    "GenerationResult",
    "NameMapping",
    "NeedsClarification",
    "QueryGenerated",
    "RelationDescriptor",
    "Row",
    "SchemaDescriptor",
    "SchemaFormatError",
    "TurnKind",
    "TurnResponse",
    "freeze_mapping",
    "recovery_hint",
]
