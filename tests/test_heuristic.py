"""Tests for the deterministic keyword tier."""

from __future__ import annotations

import pytest

from nl2query.llm.base import ProviderError
from nl2query.llm.heuristic import KeywordQueryGenerator
from nl2query.models.schema import Dialect, SchemaDescriptor


def _generate(schema: SchemaDescriptor, message: str, *preferred: str) -> str:
    return KeywordQueryGenerator(
        schema=schema,
        message=message,
        preferred_relations=preferred,
    ).generate()


class TestRelationalTemplates:
    def test_count_with_week_window(self, shop_schema: SchemaDescriptor) -> None:
        query = _generate(shop_schema, "How many users signed up last week?")

        assert query == (
            "SELECT COUNT(*) AS count FROM users "
            "WHERE created_at >= NOW() - INTERVAL '7 days'"
        )

    def test_count_with_month_window(self, shop_schema: SchemaDescriptor) -> None:
        query = _generate(shop_schema, "count orders this month")

        assert query.startswith("SELECT COUNT(*) AS count FROM orders")
        assert "INTERVAL '30 days'" in query

    def test_average(self, shop_schema: SchemaDescriptor) -> None:
        query = _generate(shop_schema, "average order amount")

        assert query == "SELECT AVG(amount) AS average_amount FROM orders"

    def test_top(self, shop_schema: SchemaDescriptor) -> None:
        query = _generate(shop_schema, "top products by price")

        assert query == "SELECT * FROM products ORDER BY price DESC LIMIT 5"

    def test_recent(self, shop_schema: SchemaDescriptor) -> None:
        query = _generate(shop_schema, "latest orders")

        assert query == "SELECT * FROM orders ORDER BY created_at DESC LIMIT 10"

    def test_matched_relation_listing(self, shop_schema: SchemaDescriptor) -> None:
        assert _generate(shop_schema, "users by country") == "SELECT * FROM users LIMIT 10"

    def test_unmatched_message_uses_default_relation(
        self, shop_schema: SchemaDescriptor
    ) -> None:
        assert _generate(shop_schema, "hello there") == "SELECT * FROM users LIMIT 5"

    def test_entity_keyword_maps_to_relation(self, shop_schema: SchemaDescriptor) -> None:
        assert _generate(shop_schema, "list purchases") == "SELECT * FROM orders LIMIT 10"

    def test_preferred_relation_wins(self, ambiguous_schema: SchemaDescriptor) -> None:
        query = _generate(ambiguous_schema, "how many orders", "order_summary")

        assert query == "SELECT COUNT(*) AS count FROM order_summary"

    def test_empty_schema_fails(self) -> None:
        with pytest.raises(ProviderError):
            _generate(SchemaDescriptor(dialect=Dialect.RELATIONAL), "how many users")


class TestDocumentTemplates:
    def test_count(self, document_schema: SchemaDescriptor) -> None:
        assert _generate(document_schema, "how many orders") == "db.orders.countDocuments({})"

    def test_recent(self, document_schema: SchemaDescriptor) -> None:
        assert _generate(document_schema, "latest orders") == (
            'db.orders.find({}).sort({"createdAt": -1}).limit(10)'
        )

    def test_default(self, document_schema: SchemaDescriptor) -> None:
        assert _generate(document_schema, "show users") == "db.users.find({}).limit(10)"


class TestProviderInterface:
    def test_complete_ignores_prompt(self, shop_schema: SchemaDescriptor) -> None:
        generator = KeywordQueryGenerator(schema=shop_schema, message="latest orders")

        assert generator.name == "heuristic"
        assert generator.complete("system", "user", 500, 0.1) == generator.generate()
