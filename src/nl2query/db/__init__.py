"""Database helpers for nl2query."""

from nl2query.db.adapter import (
    ConnectionRoutingAdapter,
    DatabaseAdapter,
    PostgresAdapter,
    is_mongodb_uri,
)
from nl2query.db.connection import (
    DatabaseConnectionError,
    HealthcheckResult,
    check_postgres_health,
    connect_readonly,
)
from nl2query.db.introspect import IntrospectionError, introspect_schema
from nl2query.db.mongo import (
    MongoAdapter,
    MongoHealthcheckResult,
    check_mongo_health,
    connect_mongo,
    introspect_collections,
)

__all__ = [
    "ConnectionRoutingAdapter",
    "DatabaseAdapter",
    "DatabaseConnectionError",
    "HealthcheckResult",
    "IntrospectionError",
    "MongoAdapter",
    "MongoHealthcheckResult",
    "PostgresAdapter",
    "check_mongo_health",
    "check_postgres_health",
    "connect_mongo",
    "connect_readonly",
    "introspect_collections",
    "introspect_schema",
    "is_mongodb_uri",
]
