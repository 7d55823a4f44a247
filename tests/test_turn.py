"""End-to-end turn scenarios against in-memory collaborators."""

from __future__ import annotations

import datetime as dt
import io
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from urllib import request

import pytest
from bson import ObjectId

from nl2query.audit import InMemoryAuditSink
from nl2query.config import load_settings
from nl2query.db.connection import DatabaseConnectionError
from nl2query.llm.openai_adapter import OpenAICompatibleProvider
from nl2query.models.execution import ErrorClassification
from nl2query.models.schema import SchemaDescriptor
from nl2query.models.turn import AnswerResponse, ClarifyResponse, ErrorResponse, TurnKind
from nl2query.pipeline.clarification import PendingClarificationError
from nl2query.pipeline.turn import QueryPipeline, build_pipeline
from nl2query.utils.timeouts import TurnCancelledError

from tests.conftest import (
    DSN,
    MONGODB_URI,
    FakeCollection,
    FakeDatabase,
    FakeDatabaseAdapter,
    FakeProvider,
    FakeSchemaProvider,
    PipelineHarness,
    failing_provider,
)


class _Body(io.BytesIO):
    def __enter__(self) -> "_Body":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class TestAmbiguity:
    def test_clarify_before_any_model_or_database_call(
        self, ambiguous_schema: SchemaDescriptor
    ) -> None:
        provider = FakeProvider(["SELECT * FROM orders LIMIT 10"])
        harness = PipelineHarness(ambiguous_schema, providers=[provider])

        response = harness.pipeline.handle_turn("show me orders", DSN)

        assert isinstance(response, ClarifyResponse)
        assert response.kind is TurnKind.CLARIFY
        assert response.options == ("orders", "order_summary")
        assert response.context.original_message == "show me orders"
        assert provider.calls == []
        assert harness.adapter.calls == []
        assert harness.audit.records == []

    def test_resolving_answer_uses_selection(self, ambiguous_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            ambiguous_schema,
            providers=[failing_provider()],
            adapter=FakeDatabaseAdapter([{"count": 4}]),
        )
        clarify = harness.pipeline.handle_turn("how many orders", DSN)
        assert isinstance(clarify, ClarifyResponse)

        response = harness.pipeline.handle_turn("order_summary", DSN, clarify.context)

        assert isinstance(response, AnswerResponse)
        assert response.query == "SELECT COUNT(*) AS count FROM order_summary"
        assert response.summary == "Count: 4"
        assert harness.audit.records[0].original_message == "how many orders"

    def test_nested_clarification(self, doubly_ambiguous_schema: SchemaDescriptor) -> None:
        provider = FakeProvider(["SELECT * FROM orders LIMIT 10"])
        harness = PipelineHarness(doubly_ambiguous_schema, providers=[provider])

        first = harness.pipeline.handle_turn("orders per customer", DSN)
        assert isinstance(first, ClarifyResponse)
        assert first.options == ("users", "customers")

        second = harness.pipeline.handle_turn("customers", DSN, first.context)
        assert isinstance(second, ClarifyResponse)
        assert second.options == ("orders", "order_summary")
        assert second.context.resolved_relations == ("customers",)

        third = harness.pipeline.handle_turn("orders", DSN, second.context)
        assert isinstance(third, AnswerResponse)
        _, user_prompt = provider.calls[0]
        assert '"customers", "orders"' in user_prompt

    def test_non_option_answer_is_rejected(self, ambiguous_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(ambiguous_schema)
        clarify = harness.pipeline.handle_turn("show me orders", DSN)

        with pytest.raises(PendingClarificationError):
            harness.pipeline.handle_turn("carts", DSN, clarify.context)

    def test_model_requested_clarification(self, shop_schema: SchemaDescriptor) -> None:
        provider = FakeProvider(["CLARIFICATION_NEEDED: Which product list do you mean?"])
        harness = PipelineHarness(shop_schema, providers=[provider])

        response = harness.pipeline.handle_turn("show the catalog", DSN)

        assert isinstance(response, ClarifyResponse)
        assert response.options == ("products",)
        assert harness.audit.records == []


class TestAnswers:
    def test_signups_last_week(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[failing_provider("primary"), failing_provider("secondary")],
            adapter=FakeDatabaseAdapter([{"count": 42}]),
        )

        response = harness.pipeline.handle_turn("How many users signed up last week?", DSN)

        assert isinstance(response, AnswerResponse)
        assert "COUNT(" in response.query
        assert "INTERVAL '7 days'" in response.query
        assert "42" in response.summary
        assert response.query_source == "heuristic"
        assert response.summary_source == "fallback"

    def test_every_model_tier_failing_still_answers(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[
                failing_provider("primary"),
                FakeProvider(["I'm sorry, I cannot answer that."], name="secondary"),
            ],
            adapter=FakeDatabaseAdapter([{"id": 1}, {"id": 2}]),
        )

        response = harness.pipeline.handle_turn("show products", DSN)

        assert isinstance(response, AnswerResponse)
        assert response.query == "SELECT * FROM products LIMIT 10"

    def test_limit_appended_before_execution(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(["SELECT email FROM users"])],
        )

        response = harness.pipeline.handle_turn("list user emails", DSN)

        assert isinstance(response, AnswerResponse)
        assert response.query.endswith("LIMIT 100")
        assert harness.adapter.calls == [(DSN, response.query)]

    def test_success_is_audited(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(["SELECT id FROM users LIMIT 5"], name="primary")],
            adapter=FakeDatabaseAdapter([{"id": 1}]),
        )

        harness.pipeline.handle_turn("list users", DSN, actor="U1", channel="slack")

        (record,) = harness.audit.records
        assert record.actor == "U1"
        assert record.channel == "slack"
        assert record.generated_query == "SELECT id FROM users LIMIT 5"
        assert record.rows == [{"id": 1}]
        assert record.error is None
        assert record.source == "primary"
        assert record.execution_time_ms >= 0

    def test_truncated_answer(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(["SELECT id FROM users LIMIT 50"])],
            adapter=FakeDatabaseAdapter([{"id": index} for index in range(4)]),
            max_rows=2,
        )

        response = harness.pipeline.handle_turn("list users", DSN)

        assert isinstance(response, AnswerResponse)
        assert response.truncated is True
        assert len(response.rows) == 2

    @pytest.mark.parametrize("body", [b"[]", b"\xff\xfe"])
    def test_malformed_completion_falls_through_to_heuristic(
        self,
        body: bytes,
        shop_schema: SchemaDescriptor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(request, "urlopen", lambda req, timeout: _Body(body))
        harness = PipelineHarness(
            shop_schema,
            providers=[
                OpenAICompatibleProvider(api_key="key", model="remote/model", timeout_seconds=1)
            ],
            adapter=FakeDatabaseAdapter([{"count": 5}]),
        )

        response = harness.pipeline.handle_turn("How many users signed up last week?", DSN)

        assert isinstance(response, AnswerResponse)
        assert response.query_source == "heuristic"
        assert response.summary == "Count: 5"
        assert len(harness.audit.records) == 1

    def test_unexpected_provider_exception_falls_through(
        self, shop_schema: SchemaDescriptor
    ) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(name="primary", error=RuntimeError("boom"))],
            adapter=FakeDatabaseAdapter([{"id": 1}]),
        )

        response = harness.pipeline.handle_turn("show products", DSN)

        assert isinstance(response, AnswerResponse)
        assert response.query_source == "heuristic"

    def test_summary_provider_crash_still_answers_and_audits(
        self, shop_schema: SchemaDescriptor
    ) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(["SELECT COUNT(*) AS count FROM users"])],
            adapter=FakeDatabaseAdapter([{"count": 9}]),
            summary_provider=FakeProvider(error=ConnectionResetError("reset")),
        )

        response = harness.pipeline.handle_turn("how many users", DSN)

        assert isinstance(response, AnswerResponse)
        assert response.summary == "Count: 9"
        assert response.summary_source == "fallback"
        (record,) = harness.audit.records
        assert record.rows == [{"count": 9}]


class TestErrors:
    def test_delete_is_never_executed(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(["SELECT 1; DELETE FROM users"])],
        )

        response = harness.pipeline.handle_turn("remove all users", DSN)

        assert isinstance(response, ErrorResponse)
        assert response.classification is ErrorClassification.UNSAFE_QUERY
        assert harness.adapter.calls == []
        (record,) = harness.audit.records
        assert record.classification is ErrorClassification.UNSAFE_QUERY
        assert record.rows is None

    def test_missing_relation(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(
            shop_schema,
            providers=[FakeProvider(["SELECT * FROM orders_archive LIMIT 10"])],
            adapter=FakeDatabaseAdapter(
                error=RuntimeError('relation "orders_archive" does not exist')
            ),
        )

        response = harness.pipeline.handle_turn("show archived orders", DSN)

        assert isinstance(response, ErrorResponse)
        assert response.classification is ErrorClassification.RELATION_NOT_FOUND
        assert response.detail == "orders_archive"
        assert "orders_archive" in response.hint
        (record,) = harness.audit.records
        assert record.error == 'relation "orders_archive" does not exist'
        assert record.generated_query == "SELECT * FROM orders_archive LIMIT 10"

    def test_generation_failure(self) -> None:
        harness = PipelineHarness(
            SchemaDescriptor.from_dict({"tables": []}),
            providers=[FakeProvider(["SELECT 1"])],
        )

        response = harness.pipeline.handle_turn("how many users", DSN)

        assert isinstance(response, ErrorResponse)
        assert response.classification is ErrorClassification.GENERATION_FAILED
        assert harness.audit.records[0].classification is ErrorClassification.GENERATION_FAILED

    def test_cancelled_turn_is_not_audited(self, shop_schema: SchemaDescriptor) -> None:
        harness = PipelineHarness(shop_schema, providers=[FakeProvider(["SELECT 1"])])
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(TurnCancelledError):
            harness.pipeline.handle_turn("list users", DSN, cancel_event=cancel)

        assert harness.audit.records == []
        assert harness.schema_provider.calls == []


class TestDocumentDatabase:
    @pytest.fixture
    def document_pipeline(
        self,
        monkeypatch: pytest.MonkeyPatch,
        document_schema: SchemaDescriptor,
    ) -> tuple[QueryPipeline, InMemoryAuditSink]:
        monkeypatch.setenv("MONGODB_URI", MONGODB_URI)
        audit = InMemoryAuditSink()
        pipeline = build_pipeline(
            load_settings(),
            schema_provider=FakeSchemaProvider(document_schema),
            audit_sink=audit,
        )
        return pipeline, audit

    def test_count_runs_against_collection(
        self,
        document_pipeline: tuple[QueryPipeline, InMemoryAuditSink],
        mongo_database: FakeDatabase,
    ) -> None:
        pipeline, audit = document_pipeline
        orders = FakeCollection([{"_id": index} for index in range(3)])
        mongo_database.collections["orders"] = orders

        response = pipeline.handle_turn("How many orders were placed last week?", MONGODB_URI)

        assert isinstance(response, AnswerResponse)
        assert response.query.startswith("db.orders.countDocuments(")
        assert response.summary == "Count: 3"
        assert mongo_database.connected == [MONGODB_URI]
        since = orders.calls[0][1][0]["createdAt"]["$gte"]
        assert isinstance(since, dt.datetime)
        assert audit.records[0].rows == [{"count": 3}]

    def test_object_ids_are_serialized(
        self,
        document_pipeline: tuple[QueryPipeline, InMemoryAuditSink],
        mongo_database: FakeDatabase,
    ) -> None:
        pipeline, _ = document_pipeline
        mongo_database.collections["orders"] = FakeCollection(
            [{"_id": ObjectId("65f0c0ffee0000000000abcd"), "amount": 12}]
        )

        response = pipeline.handle_turn("show me orders", MONGODB_URI)

        assert isinstance(response, AnswerResponse)
        assert response.rows == [{"_id": "65f0c0ffee0000000000abcd", "amount": 12}]

    def test_missing_database_name_is_an_error(
        self,
        document_pipeline: tuple[QueryPipeline, InMemoryAuditSink],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        pipeline, audit = document_pipeline

        @contextmanager
        def refuse(uri: str, **_: object) -> Iterator[None]:
            raise DatabaseConnectionError("MongoDB URI must name a database")
            yield  # pragma: no cover

        monkeypatch.setattr("nl2query.db.mongo.connect_mongo", refuse)

        response = pipeline.handle_turn("how many orders", MONGODB_URI)

        assert isinstance(response, ErrorResponse)
        assert "must name a database" in response.message
        assert audit.records[0].is_error
