"""MongoDB execution and introspection for the document dialect."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from itertools import islice
from typing import Any

from bson import Decimal128, ObjectId
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConfigurationError, PyMongoError

from nl2query.db.adapter import DatabaseAdapter
from nl2query.db.connection import DatabaseConnectionError
from nl2query.db.introspect import IntrospectionError
from nl2query.models.schema import (
    Dialect,
    FieldDescriptor,
    RelationDescriptor,
    SchemaDescriptor,
)
from nl2query.query.document import DocumentQuery, parse_document_query
from nl2query.query.shell import ShellSyntaxError, parse_shell_arguments

logger = logging.getLogger(__name__)

# bool before int: bool is an int subclass.
_TYPE_NAMES: tuple[tuple[type, str], ...] = (
    (bool, "bool"),
    (int, "int"),
    (float, "double"),
    (str, "string"),
    (dt.datetime, "date"),
    (ObjectId, "objectId"),
    (Decimal128, "decimal"),
    (bytes, "binData"),
    (list, "array"),
    (Mapping, "object"),
)


@contextmanager
def connect_mongo(
    uri: str,
    *,
    socket_timeout_ms: int | None = None,
    connect_timeout_ms: int = 5000,
) -> Iterator[Database]:
    """Yield the database named in ``uri``; the client is closed on exit."""
    options: dict[str, Any] = {
        "serverSelectionTimeoutMS": connect_timeout_ms,
        "connectTimeoutMS": connect_timeout_ms,
        "appname": "nl2query",
    }
    if socket_timeout_ms is not None:
        options["socketTimeoutMS"] = socket_timeout_ms
    try:
        client: MongoClient = MongoClient(uri, **options)
    except PyMongoError as exc:
        raise DatabaseConnectionError(f"Could not connect to MongoDB: {exc}") from exc

    try:
        try:
            database = client.get_default_database()
        except ConfigurationError as exc:
            raise DatabaseConnectionError(
                "MongoDB URI must name a database, e.g. mongodb://host:27017/app_db"
            ) from exc
        yield database
    finally:
        client.close()


@dataclass(frozen=True)
class CursorOptions:
    sort: list[tuple[str, Any]] | None = None
    skip: int = 0
    limit: int | None = None
    projection: Mapping[str, Any] | None = None


def cursor_options(query: DocumentQuery) -> CursorOptions:
    """Collect ``.sort()``, ``.skip()``, ``.limit()`` and ``.project()`` calls."""
    sort: list[tuple[str, Any]] | None = None
    skip = 0
    limit: int | None = None
    projection: Mapping[str, Any] | None = None
    for modifier in query.modifiers:
        arguments = parse_shell_arguments(modifier.arguments)
        value = arguments[0] if arguments else None
        if modifier.name == "sort" and isinstance(value, Mapping):
            sort = list(value.items())
        elif modifier.name == "skip" and isinstance(value, int):
            skip = value
        elif modifier.name == "limit" and isinstance(value, int):
            limit = abs(value) or None
        elif modifier.name == "project" and isinstance(value, Mapping):
            projection = value
        else:
            raise ShellSyntaxError(f"Invalid argument for .{modifier.name}().")
    return CursorOptions(sort=sort, skip=skip, limit=limit, projection=projection)


def _argument(arguments: Sequence[Any], index: int, default: Any) -> Any:
    return arguments[index] if len(arguments) > index else default


def run_document_query(
    collection: Any, query: DocumentQuery, row_cap: int
) -> list[dict[str, Any]]:
    """Run one read operation against a pymongo ``Collection``.

    At most ``row_cap`` documents are returned.
    """
    arguments = parse_shell_arguments(query.arguments)
    operation = query.operation
    if query.modifiers and operation != "find":
        raise ShellSyntaxError(f"Cursor methods cannot follow {operation}().")

    if operation == "find":
        options = cursor_options(query)
        limit = min(options.limit or row_cap, row_cap)
        cursor = collection.find(
            _argument(arguments, 0, {}),
            options.projection or _argument(arguments, 1, None),
            sort=options.sort,
            skip=options.skip,
            limit=limit,
        )
        return [dict(document) for document in cursor]

    if operation == "findOne":
        document = collection.find_one(
            _argument(arguments, 0, {}), _argument(arguments, 1, None)
        )
        return [dict(document)] if document is not None else []

    if operation == "aggregate":
        pipeline = _argument(arguments, 0, [])
        if not isinstance(pipeline, list):
            raise ShellSyntaxError("aggregate() expects a list of stages.")
        with collection.aggregate(pipeline) as cursor:
            return [dict(document) for document in islice(cursor, row_cap)]

    if operation in ("count", "countDocuments"):
        return [{"count": collection.count_documents(_argument(arguments, 0, {}))}]

    if operation == "estimatedDocumentCount":
        return [{"count": collection.estimated_document_count()}]

    if operation == "distinct":
        field_name = _argument(arguments, 0, None)
        if not isinstance(field_name, str):
            raise ShellSyntaxError("distinct() expects a field name.")
        values = collection.distinct(field_name, _argument(arguments, 1, {}))
        return [{field_name: value} for value in values[:row_cap]]

    raise ShellSyntaxError(f"Operation '{operation}' is not supported.")


@dataclass(frozen=True)
class MongoAdapter(DatabaseAdapter):
    """Run shell-style read queries; ``connection_ref`` is a MongoDB URI.

    Driver errors propagate unchanged so that they can be classified.
    """

    statement_timeout_ms: int = 15000
    max_rows: int = 1000

    def run(self, connection_ref: str, text: str) -> list[dict[str, Any]]:
        query = parse_document_query(text)
        with connect_mongo(
            connection_ref, socket_timeout_ms=self.statement_timeout_ms
        ) as database:
            return run_document_query(database[query.collection], query, self.max_rows + 1)


def bson_type_name(value: Any) -> str:
    if value is None:
        return "null"
    for python_type, name in _TYPE_NAMES:
        if isinstance(value, python_type):
            return name
    return type(value).__name__


def describe_collections(
    samples: Iterable[tuple[str, Mapping[str, Any] | None]],
) -> SchemaDescriptor:
    """Build a document schema from one sample document per collection.

    An empty collection is listed with no fields.
    """
    relations = tuple(
        RelationDescriptor(
            name=name,
            fields=tuple(
                FieldDescriptor(
                    name=key,
                    type=bson_type_name(value),
                    is_primary_key=key == "_id",
                )
                for key, value in (sample or {}).items()
            ),
        )
        for name, sample in samples
    )
    return SchemaDescriptor(dialect=Dialect.DOCUMENT, relations=relations)


def introspect_collections(uri: str) -> SchemaDescriptor:
    """Sample the first document of every non-system collection."""
    try:
        with connect_mongo(uri) as database:
            names = sorted(
                name
                for name in database.list_collection_names()
                if not name.startswith("system.")
            )
            samples = [(name, database[name].find_one()) for name in names]
    except DatabaseConnectionError as exc:
        raise IntrospectionError(str(exc)) from exc
    except PyMongoError as exc:
        raise IntrospectionError(f"MongoDB introspection failed: {exc}") from exc

    schema = describe_collections(samples)
    logger.info("Introspected %d collection(s)", len(schema.relations))
    return schema


@dataclass(frozen=True)
class MongoHealthcheckResult:
    database: str
    server_version: str


def check_mongo_health(uri: str) -> MongoHealthcheckResult:
    try:
        with connect_mongo(uri) as database:
            info = database.command("buildInfo")
            name = database.name
    except DatabaseConnectionError:
        raise
    except PyMongoError as exc:
        raise DatabaseConnectionError(f"MongoDB health check failed: {exc}") from exc
    return MongoHealthcheckResult(database=name, server_version=str(info.get("version", "")))
