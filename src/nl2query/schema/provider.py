"""Schema providers: where the pipeline gets relation metadata from."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from nl2query.db.adapter import is_mongodb_uri
from nl2query.db.introspect import IntrospectionError, introspect_schema
from nl2query.db.mongo import introspect_collections
from nl2query.models.schema import (
    NameMapping,
    SchemaDescriptor,
    SchemaFormatError,
    freeze_mapping,
)
from nl2query.schema.cache import CacheError, load_schema_cache


class SchemaProviderError(RuntimeError):
    """Raised when schema metadata cannot be produced for a connection."""


class SchemaProvider(ABC):
    """Read-only source of schema metadata.

    Calls must be idempotent and side-effect free from the pipeline's point
    of view.
    """

    @abstractmethod
    def get_schema(self, connection_ref: str) -> SchemaDescriptor:
        """Return relation metadata for a connection."""

    def get_mapping(self, connection_ref: str) -> NameMapping:
        """Return the semantic-name mapping for a connection, if any."""
        return freeze_mapping(None)


@dataclass(frozen=True)
class StaticSchemaProvider(SchemaProvider):
    """Serve one fixed schema regardless of connection."""

    schema: SchemaDescriptor
    mapping: NameMapping = field(default_factory=freeze_mapping)

    def get_schema(self, connection_ref: str) -> SchemaDescriptor:
        return self.schema

    def get_mapping(self, connection_ref: str) -> NameMapping:
        return self.mapping

    @classmethod
    def from_file(cls, path: Path) -> StaticSchemaProvider:
        """Load ``{"schema": ..., "mapping": ...}`` or a bare schema payload."""
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise SchemaProviderError(f"Failed to read schema file: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise SchemaProviderError(f"Schema file is not valid JSON: {exc}") from exc

        if not isinstance(payload, Mapping):
            raise SchemaProviderError("Schema file root must be a JSON object.")
        schema_payload = payload.get("schema", payload)
        mapping_payload = payload.get("mapping") or {}
        if not isinstance(schema_payload, Mapping) or not isinstance(
            mapping_payload, Mapping
        ):
            raise SchemaProviderError("Schema file has invalid 'schema' or 'mapping'.")
        try:
            schema = SchemaDescriptor.from_dict(schema_payload)
        except SchemaFormatError as exc:
            raise SchemaProviderError(str(exc)) from exc
        return cls(schema=schema, mapping=freeze_mapping(mapping_payload))


@dataclass(frozen=True)
class CachedSchemaProvider(SchemaProvider):
    """Serve the schema stored by ``refresh-schema``."""

    cache_path: Path

    def get_schema(self, connection_ref: str) -> SchemaDescriptor:
        try:
            return load_schema_cache(self.cache_path).schema
        except CacheError as exc:
            raise SchemaProviderError(str(exc)) from exc

    def get_mapping(self, connection_ref: str) -> NameMapping:
        try:
            return load_schema_cache(self.cache_path).mapping
        except CacheError as exc:
            raise SchemaProviderError(str(exc)) from exc


@dataclass(frozen=True)
class PostgresSchemaProvider(SchemaProvider):
    """Introspect the live database on every call; ``connection_ref`` is a DSN."""

    default_schema: str = "public"
    include_schemas: tuple[str, ...] = ()
    mapping: NameMapping = field(default_factory=freeze_mapping)

    def get_schema(self, connection_ref: str) -> SchemaDescriptor:
        try:
            return introspect_schema(
                postgres_dsn=connection_ref,
                default_schema=self.default_schema,
                include_schemas=list(self.include_schemas) or None,
            )
        except IntrospectionError as exc:
            raise SchemaProviderError(str(exc)) from exc

    def get_mapping(self, connection_ref: str) -> NameMapping:
        return self.mapping


@dataclass(frozen=True)
class MongoSchemaProvider(SchemaProvider):
    """Sample every collection on each call; ``connection_ref`` is a MongoDB URI."""

    mapping: NameMapping = field(default_factory=freeze_mapping)

    def get_schema(self, connection_ref: str) -> SchemaDescriptor:
        try:
            return introspect_collections(connection_ref)
        except IntrospectionError as exc:
            raise SchemaProviderError(str(exc)) from exc

    def get_mapping(self, connection_ref: str) -> NameMapping:
        return self.mapping


def live_schema_provider(
    connection_ref: str,
    *,
    default_schema: str = "public",
    include_schemas: tuple[str, ...] = (),
) -> SchemaProvider:
    """Pick the introspecting provider that matches the connection scheme."""
    if is_mongodb_uri(connection_ref):
        return MongoSchemaProvider()
    return PostgresSchemaProvider(
        default_schema=default_schema, include_schemas=include_schemas
    )
