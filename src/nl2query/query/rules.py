"""Read-only safety rules for query validation."""

from __future__ import annotations

from sqlglot import exp

def _optional_exp(name: str) -> type[exp.Expression] | None:
    candidate = getattr(exp, name, None)
    if isinstance(candidate, type) and issubclass(candidate, exp.Expression):
        return candidate
    return None


_FORBIDDEN_NAMES = (
    "Insert",
    "Update",
    "Delete",
    "Merge",
    "Drop",
    "Alter",
    "Create",
    # sqlglot renamed this node in newer versions.
    "Truncate",
    "TruncateTable",
    "Grant",
    "Revoke",
    "Copy",
    "Command",
)

FORBIDDEN_STATEMENT_TYPES: tuple[type[exp.Expression], ...] = tuple(
    statement_type
    for statement_type in (_optional_exp(name) for name in _FORBIDDEN_NAMES)
    if statement_type is not None
)

ALLOWED_QUERY_ROOT_TYPES: tuple[type[exp.Expression], ...] = (
    exp.Select,
    exp.Union,
    exp.Intersect,
    exp.Except,
)

RELATIONAL_READ_KEYWORD = "select"

DEFAULT_NON_AGGREGATE_LIMIT = 100

DOCUMENT_READ_OPERATIONS = frozenset(
    {
        "find",
        "findOne",
        "aggregate",
        "count",
        "countDocuments",
        "estimatedDocumentCount",
        "distinct",
    }
)

DOCUMENT_CURSOR_MODIFIERS = frozenset({"sort", "limit", "skip", "project"})

# Aggregation stages that write their output somewhere.
DOCUMENT_WRITE_STAGES = ("$out", "$merge")
