"""PostgreSQL schema introspection into dialect-neutral descriptors."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import psycopg
from psycopg.rows import dict_row

from nl2query.db.connection import DatabaseConnectionError, connect_readonly
from nl2query.db.queries import RELATION_COLUMNS_QUERY
from nl2query.models.schema import (
    Dialect,
    FieldDescriptor,
    RelationDescriptor,
    SchemaDescriptor,
)

logger = logging.getLogger(__name__)

_SYSTEM_SCHEMAS = {"pg_catalog", "information_schema"}


class IntrospectionError(RuntimeError):
    """Raised when schema introspection fails."""


def _target_schemas(default_schema: str, include_schemas: list[str] | None) -> list[str]:
    if include_schemas:
        targets = {schema.strip() for schema in include_schemas if schema.strip()}
    else:
        targets = {default_schema.strip() or "public"}
    return sorted(targets - _SYSTEM_SCHEMAS)


def _relation_name(schema_name: str, table_name: str, default_schema: str) -> str:
    if schema_name == default_schema:
        return table_name
    return f"{schema_name}.{table_name}"


def relations_from_rows(
    rows: Iterable[Mapping[str, Any]], default_schema: str = "public"
) -> tuple[RelationDescriptor, ...]:
    """Group catalog column rows into relations, keeping catalog order."""
    fields: dict[str, list[FieldDescriptor]] = {}
    for row in rows:
        name = _relation_name(row["schema_name"], row["relation_name"], default_schema)
        fields.setdefault(name, []).append(
            FieldDescriptor(
                name=row["column_name"],
                type=row["data_type"],
                is_primary_key=bool(row["is_primary_key"]),
            )
        )
    return tuple(
        RelationDescriptor(name=name, fields=tuple(columns))
        for name, columns in fields.items()
    )


def introspect_schema(
    postgres_dsn: str,
    default_schema: str = "public",
    include_schemas: list[str] | None = None,
) -> SchemaDescriptor:
    """Describe every table and view in the target schemas.

    Relations in ``default_schema`` are named bare; others are schema-qualified.
    """
    target_schemas = _target_schemas(default_schema, include_schemas)
    if not target_schemas:
        raise IntrospectionError("No target schemas selected for introspection.")

    try:
        with connect_readonly(postgres_dsn) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(RELATION_COLUMNS_QUERY, {"schemas": target_schemas})
                rows = cur.fetchall()
    except DatabaseConnectionError as exc:
        raise IntrospectionError(str(exc)) from exc
    except psycopg.Error as exc:
        raise IntrospectionError(f"Schema introspection query failed: {exc}") from exc

    relations = relations_from_rows(rows, default_schema)
    logger.info(
        "Introspected %d relation(s) across schemas %s",
        len(relations),
        ", ".join(target_schemas),
    )
    return SchemaDescriptor(dialect=Dialect.RELATIONAL, relations=relations)
