"""Query parsing and read-only validation utilities."""

from nl2query.query.document import DocumentQuery, parse_document_query
from nl2query.query.parser import QueryParseError, parse_postgres_statements
from nl2query.query.validator import (
    QueryValidationError,
    QueryValidationResult,
    ValidatedQuery,
    ensure_valid_query,
    validate_query,
)

__all__ = [
    "DocumentQuery",
    "QueryParseError",
    "QueryValidationError",
    "QueryValidationResult",
    "ValidatedQuery",
    "ensure_valid_query",
    "parse_document_query",
    "parse_postgres_statements",
    "validate_query",
]
