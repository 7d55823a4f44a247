"""Read-only validation of generated query text before execution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlglot import exp

from nl2query.models.schema import Dialect
from nl2query.query.document import parse_document_query
from nl2query.query.parser import QueryParseError, parse_postgres_statements
from nl2query.query.rules import (
    ALLOWED_QUERY_ROOT_TYPES,
    DEFAULT_NON_AGGREGATE_LIMIT,
    DOCUMENT_CURSOR_MODIFIERS,
    DOCUMENT_READ_OPERATIONS,
    DOCUMENT_WRITE_STAGES,
    FORBIDDEN_STATEMENT_TYPES,
    RELATIONAL_READ_KEYWORD,
)

logger = logging.getLogger(__name__)


class QueryValidationError(RuntimeError):
    """Raised when query text fails the read-only guardrails."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__("\n".join(f"- {item}" for item in self.violations))


@dataclass(frozen=True)
class QueryValidationResult:
    """Structured validation result."""

    is_valid: bool
    dialect: Dialect
    text: str
    normalized_text: str
    violations: list[str] = field(default_factory=list)
    limit_added: bool = False


@dataclass(frozen=True)
class ValidatedQuery:
    """Query text that passed validation; the only input the executor accepts."""

    text: str
    original_text: str
    dialect: Dialect
    limit_added: bool = False


def _non_aggregate_query(expression: exp.Expression) -> bool:
    return not any(True for _ in expression.find_all(exp.AggFunc))


def _validate_relational(text: str, default_limit: int | None) -> QueryValidationResult:
    stripped = text.strip()
    if not stripped.lower().startswith(RELATIONAL_READ_KEYWORD):
        return QueryValidationResult(
            is_valid=False,
            dialect=Dialect.RELATIONAL,
            text=text,
            normalized_text=stripped,
            violations=["Only SELECT queries are allowed."],
        )

    try:
        statements = parse_postgres_statements(stripped)
    except QueryParseError as exc:
        return QueryValidationResult(
            is_valid=False,
            dialect=Dialect.RELATIONAL,
            text=text,
            normalized_text=stripped,
            violations=[str(exc)],
        )

    violations: list[str] = []
    if len(statements) > 1:
        violations.append("Multiple statements are not allowed.")

    expression = statements[0]
    if not isinstance(expression, ALLOWED_QUERY_ROOT_TYPES):
        violations.append("Only SELECT query forms are allowed.")

    forbidden_types = {
        node.key.upper()
        for statement in statements
        for forbidden_type in FORBIDDEN_STATEMENT_TYPES
        for node in statement.find_all(forbidden_type)
    }
    if forbidden_types:
        violations.append(
            "Forbidden SQL statement(s) detected: " + ", ".join(sorted(forbidden_types))
        )

    for select in expression.find_all(exp.Select):
        if select.args.get("into"):
            violations.append("SELECT ... INTO is not allowed.")
        if select.args.get("locks"):
            violations.append("Row locking clauses are not allowed.")

    normalized_text = stripped.rstrip(";").rstrip()
    limit_added = False
    if (
        default_limit is not None
        and not violations
        and _non_aggregate_query(expression)
        and expression.args.get("limit") is None
    ):
        expression = expression.limit(default_limit)
        normalized_text = expression.sql(dialect="postgres")
        limit_added = True

    return QueryValidationResult(
        is_valid=not violations,
        dialect=Dialect.RELATIONAL,
        text=text,
        normalized_text=normalized_text,
        violations=violations,
        limit_added=limit_added,
    )


def _validate_document(text: str) -> QueryValidationResult:
    stripped = text.strip()
    try:
        query = parse_document_query(stripped)
    except QueryParseError as exc:
        return QueryValidationResult(
            is_valid=False,
            dialect=Dialect.DOCUMENT,
            text=text,
            normalized_text=stripped,
            violations=[str(exc)],
        )

    violations: list[str] = []
    if query.operation not in DOCUMENT_READ_OPERATIONS:
        violations.append(
            f"Operation '{query.operation}' is not allowed; use one of: "
            + ", ".join(sorted(DOCUMENT_READ_OPERATIONS))
            + "."
        )
    for modifier in query.modifiers:
        if modifier.name not in DOCUMENT_CURSOR_MODIFIERS:
            violations.append(f"Cursor method '{modifier.name}' is not allowed.")
    if query.operation == "aggregate":
        for stage in DOCUMENT_WRITE_STAGES:
            if stage in query.arguments:
                violations.append(f"Aggregation stage '{stage}' is not allowed.")

    return QueryValidationResult(
        is_valid=not violations,
        dialect=Dialect.DOCUMENT,
        text=text,
        normalized_text=stripped.rstrip(";").rstrip(),
        violations=violations,
    )


def validate_query(
    text: str,
    dialect: Dialect,
    *,
    default_limit: int | None = DEFAULT_NON_AGGREGATE_LIMIT,
) -> QueryValidationResult:
    """Check that ``text`` is a single read-only statement for ``dialect``.

    Relational queries without a LIMIT that do not aggregate get
    ``default_limit`` appended in ``normalized_text``.
    """
    if not text.strip():
        return QueryValidationResult(
            is_valid=False,
            dialect=dialect,
            text=text,
            normalized_text="",
            violations=["Query cannot be empty."],
        )
    if dialect is Dialect.DOCUMENT:
        return _validate_document(text)
    return _validate_relational(text, default_limit)


def ensure_valid_query(
    text: str,
    dialect: Dialect,
    *,
    default_limit: int | None = DEFAULT_NON_AGGREGATE_LIMIT,
) -> ValidatedQuery:
    """Validate query text and raise when violations are present."""
    result = validate_query(text, dialect, default_limit=default_limit)
    if not result.is_valid:
        logger.warning(
            "Rejected %s query: %s", dialect.value, "; ".join(result.violations)
        )
        raise QueryValidationError(result.violations)
    return ValidatedQuery(
        text=result.normalized_text,
        original_text=text,
        dialect=dialect,
        limit_added=result.limit_added,
    )
