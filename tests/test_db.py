"""Tests for the database helpers that need no live server."""

from __future__ import annotations

from nl2query.db.connection import SessionOptions
from nl2query.db.introspect import relations_from_rows


def _row(schema: str, relation: str, column: str, data_type: str, pk: bool = False) -> dict:
    return {
        "schema_name": schema,
        "relation_name": relation,
        "column_name": column,
        "data_type": data_type,
        "is_primary_key": pk,
    }


class TestSessionOptions:
    def test_read_only_with_timeout(self) -> None:
        options = SessionOptions(statement_timeout_ms=1500).to_libpq()

        assert "-c default_transaction_read_only=on" in options
        assert "-c statement_timeout=1500" in options
        assert "-c application_name=nl2query" in options

    def test_without_timeout(self) -> None:
        assert "statement_timeout" not in SessionOptions().to_libpq()


class TestRelationsFromRows:
    def test_groups_columns_in_order(self) -> None:
        relations = relations_from_rows(
            [
                _row("public", "orders", "id", "integer", pk=True),
                _row("public", "orders", "amount", "numeric(10,2)"),
                _row("public", "users", "id", "integer", pk=True),
                _row("sales", "targets", "quarter", "text"),
            ]
        )

        assert [relation.name for relation in relations] == [
            "orders",
            "users",
            "sales.targets",
        ]
        orders = relations[0]
        assert [field.name for field in orders.fields] == ["id", "amount"]
        assert orders.fields[0].is_primary_key is True
        assert orders.fields[1].is_primary_key is False
        assert orders.fields[1].type == "numeric(10,2)"

    def test_default_schema_is_named_bare(self) -> None:
        relations = relations_from_rows(
            [_row("analytics", "events", "id", "bigint")], default_schema="analytics"
        )

        assert relations[0].name == "events"
