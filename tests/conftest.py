"""Shared test fixtures for nl2query."""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import pytest

from nl2query.audit import InMemoryAuditSink
from nl2query.db.adapter import DatabaseAdapter
from nl2query.llm.base import ProviderError, TextProvider
from nl2query.llm.fallback import ModelFallbackChain
from nl2query.models.schema import (
    Dialect,
    FieldDescriptor,
    NameMapping,
    RelationDescriptor,
    SchemaDescriptor,
    freeze_mapping,
)
from nl2query.pipeline.executor import QueryExecutor
from nl2query.pipeline.generator import QueryGenerator
from nl2query.pipeline.summarizer import ResultSummarizer
from nl2query.pipeline.turn import QueryPipeline
from nl2query.schema.provider import SchemaProvider

DSN = "postgresql://readonly@localhost:5432/app"
MONGODB_URI = "mongodb://reader@localhost:27017/shop"

# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeProvider(TextProvider):
    """Scripted ``TextProvider``.

    Returns ``responses`` in order (the last one repeats), raises ``error``
    when set, and records every call for assertions.
    """

    def __init__(
        self,
        responses: Iterable[str] = (),
        *,
        name: str = "fake-model",
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self.responses = list(responses)
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:  # type: ignore[override]
        return self._name

    def complete(
        self,
        prompt: str,
        text: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        self.calls.append((prompt, text))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not self.responses:
            return ""
        if len(self.responses) == 1:
            return self.responses[0]
        return self.responses.pop(0)


def failing_provider(name: str = "broken-model") -> FakeProvider:
    return FakeProvider(name=name, error=ProviderError(f"{name} is unavailable"))


class FakeDatabaseAdapter(DatabaseAdapter):
    """In-memory adapter returning canned rows or raising a canned error."""

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.rows = rows if rows is not None else []
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def run(self, connection_ref: str, text: str) -> list[dict[str, Any]]:
        self.calls.append((connection_ref, text))
        if self.error is not None:
            raise self.error
        return [dict(row) for row in self.rows]


class FakeSchemaProvider(SchemaProvider):
    def __init__(
        self,
        schema: SchemaDescriptor,
        mapping: Mapping[str, str] | None = None,
    ) -> None:
        self.schema = schema
        self.mapping = freeze_mapping(mapping)
        self.calls: list[str] = []

    def get_schema(self, connection_ref: str) -> SchemaDescriptor:
        self.calls.append(connection_ref)
        return self.schema

    def get_mapping(self, connection_ref: str) -> NameMapping:
        return self.mapping


class FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self.documents = documents
        self.closed = False

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.documents)

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.closed = True


class FakeCollection:
    """Records pymongo ``Collection`` calls and serves canned documents."""

    def __init__(self, documents: list[dict[str, Any]] | None = None) -> None:
        self.documents = documents or []
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.cursors: list[FakeCursor] = []

    def find(self, *args: Any, **kwargs: Any) -> list[dict[str, Any]]:
        self.calls.append(("find", args, kwargs))
        skip = kwargs.get("skip", 0)
        return self.documents[skip : skip + kwargs["limit"]]

    def find_one(self, *args: Any) -> dict[str, Any] | None:
        self.calls.append(("find_one", args, {}))
        return self.documents[0] if self.documents else None

    def aggregate(self, pipeline: list[Any]) -> FakeCursor:
        self.calls.append(("aggregate", (pipeline,), {}))
        cursor = FakeCursor(self.documents)
        self.cursors.append(cursor)
        return cursor

    def count_documents(self, query: dict[str, Any]) -> int:
        self.calls.append(("count_documents", (query,), {}))
        return len(self.documents)

    def estimated_document_count(self) -> int:
        return len(self.documents)

    def distinct(self, key: str, query: dict[str, Any]) -> list[Any]:
        self.calls.append(("distinct", (key, query), {}))
        return sorted({document[key] for document in self.documents if key in document})


class FakeDatabase:
    def __init__(self, collections: dict[str, FakeCollection]) -> None:
        self.collections = collections
        self.connected: list[str] = []

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())

    def list_collection_names(self) -> list[str]:
        return list(self.collections)


# ---------------------------------------------------------------------------
# Schema builders
# ---------------------------------------------------------------------------


def relation(name: str, *fields: tuple[str, str]) -> RelationDescriptor:
    """Build a relation; a field named ``id`` is the primary key."""
    return RelationDescriptor(
        name=name,
        fields=tuple(
            FieldDescriptor(name=field_name, type=field_type, is_primary_key=field_name == "id")
            for field_name, field_type in fields
        ),
    )


def relational_schema(*relations: RelationDescriptor) -> SchemaDescriptor:
    return SchemaDescriptor(dialect=Dialect.RELATIONAL, relations=tuple(relations))


USERS = relation(
    "users",
    ("id", "integer"),
    ("email", "text"),
    ("country", "text"),
    ("created_at", "timestamp with time zone"),
)
CUSTOMERS = relation("customers", ("id", "integer"), ("name", "text"))
ORDERS = relation(
    "orders",
    ("id", "integer"),
    ("user_id", "integer"),
    ("amount", "numeric"),
    ("status", "text"),
    ("created_at", "timestamp with time zone"),
)
ORDER_SUMMARY = relation(
    "order_summary",
    ("id", "integer"),
    ("total", "numeric"),
)
PRODUCTS = relation(
    "products",
    ("id", "integer"),
    ("name", "text"),
    ("price", "numeric"),
)


@pytest.fixture
def shop_schema() -> SchemaDescriptor:
    """One relation per keyword bucket: nothing is ambiguous."""
    return relational_schema(USERS, ORDERS, PRODUCTS)


@pytest.fixture
def ambiguous_schema() -> SchemaDescriptor:
    """Two order-like relations."""
    return relational_schema(USERS, ORDERS, ORDER_SUMMARY, PRODUCTS)


@pytest.fixture
def doubly_ambiguous_schema() -> SchemaDescriptor:
    """Two user-like and two order-like relations."""
    return relational_schema(USERS, CUSTOMERS, ORDERS, ORDER_SUMMARY)


@pytest.fixture
def document_schema() -> SchemaDescriptor:
    return SchemaDescriptor(
        dialect=Dialect.DOCUMENT,
        relations=(
            relation("orders", ("_id", "objectId"), ("amount", "number"), ("createdAt", "date")),
            relation("users", ("_id", "objectId"), ("email", "string")),
        ),
    )


@pytest.fixture
def mongo_database(monkeypatch: pytest.MonkeyPatch) -> FakeDatabase:
    """Route ``connect_mongo`` to an in-memory database."""
    database = FakeDatabase({})

    @contextmanager
    def connect(uri: str, **_: Any) -> Iterator[FakeDatabase]:
        database.connected.append(uri)
        yield database

    monkeypatch.setattr("nl2query.db.mongo.connect_mongo", connect)
    return database


# ---------------------------------------------------------------------------
# Pipeline builder
# ---------------------------------------------------------------------------


class PipelineHarness:
    """A ``QueryPipeline`` wired to fakes, with the fakes exposed."""

    def __init__(
        self,
        schema: SchemaDescriptor,
        *,
        providers: Iterable[TextProvider] = (),
        adapter: FakeDatabaseAdapter | None = None,
        summary_provider: TextProvider | None = None,
        max_rows: int = 1000,
        timeout_seconds: float = 2.0,
    ) -> None:
        self.schema_provider = FakeSchemaProvider(schema)
        self.providers = list(providers)
        self.adapter = adapter or FakeDatabaseAdapter()
        self.audit = InMemoryAuditSink()
        self.pipeline = QueryPipeline(
            schema_provider=self.schema_provider,
            generator=QueryGenerator(
                ModelFallbackChain(self.providers, timeout_seconds=timeout_seconds)
            ),
            executor=QueryExecutor(
                self.adapter,
                max_rows=max_rows,
                timeout_seconds=timeout_seconds,
            ),
            summarizer=ResultSummarizer(summary_provider, timeout_seconds=timeout_seconds),
            audit_sink=self.audit,
        )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host environment variables out of settings-driven tests."""
    for name in (
        "POSTGRES_DSN",
        "MONGODB_URI",
        "LLM_API_KEY",
        "HUGGING_FACE_API_KEY",
        "HUGGINGFACE_API_KEY",
        "HF_TOKEN",
        "OPENAI_API_KEY",
        "LLM_BASE_URL",
        "PRIMARY_MODEL",
        "SECONDARY_MODEL",
        "SUMMARY_MODEL",
        "PROVIDER_TIMEOUT_SECONDS",
        "STATEMENT_TIMEOUT_MS",
        "MAX_ROWS",
        "DEFAULT_ROW_LIMIT",
        "SCHEMA_CACHE_PATH",
        "DEFAULT_SCHEMA",
        "AUDIT_LOG_PATH",
        "NL2QUERY_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
