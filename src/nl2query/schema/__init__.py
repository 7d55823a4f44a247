"""Schema cache and provider helpers."""

from nl2query.schema.cache import (
    CACHE_FORMAT_VERSION,
    CacheError,
    CachedSchema,
    load_schema_cache,
    refresh_schema_cache,
    save_schema_cache,
)
from nl2query.schema.provider import (
    CachedSchemaProvider,
    MongoSchemaProvider,
    PostgresSchemaProvider,
    SchemaProvider,
    SchemaProviderError,
    StaticSchemaProvider,
    live_schema_provider,
)

__all__ = [
    "CACHE_FORMAT_VERSION",
    "CacheError",
    "CachedSchema",
    "CachedSchemaProvider",
    "MongoSchemaProvider",
    "PostgresSchemaProvider",
    "SchemaProvider",
    "SchemaProviderError",
    "StaticSchemaProvider",
    "live_schema_provider",
    "load_schema_cache",
    "refresh_schema_cache",
    "save_schema_cache",
]
