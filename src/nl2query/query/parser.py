"""SQL parsing helpers backed by SQLGlot."""

from __future__ import annotations

from sqlglot import exp, parse
from sqlglot.errors import ParseError, TokenError


class QueryParseError(RuntimeError):
    """Raised when query text cannot be parsed safely."""


def parse_postgres_statements(sql: str) -> list[exp.Expression]:
    """Parse every statement in ``sql`` using PostgreSQL dialect semantics."""
    normalized = sql.strip()
    if not normalized:
        raise QueryParseError("SQL cannot be empty.")

    try:
        statements = parse(normalized, read="postgres")
    except (ParseError, TokenError) as exc:
        raise QueryParseError(f"Invalid SQL: {exc}") from exc

    parsed = [statement for statement in statements if statement is not None]
    if not parsed:
        raise QueryParseError("SQL does not contain a statement.")
    return parsed
