"""Schema cache persistence and refresh routines."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from nl2query.db.adapter import is_mongodb_uri
from nl2query.db.introspect import IntrospectionError, introspect_schema
from nl2query.db.mongo import introspect_collections
from nl2query.models.schema import (
    NameMapping,
    SchemaDescriptor,
    SchemaFormatError,
    freeze_mapping,
)

CACHE_FORMAT_VERSION = "2.0"


class CacheError(RuntimeError):
    """Raised when schema cache operations fail."""


@dataclass(frozen=True)
class CachedSchema:
    """Versioned schema cache representation."""

    cache_format_version: str
    generated_at: str
    schema: SchemaDescriptor
    mapping: NameMapping = field(default_factory=freeze_mapping)

    def to_dict(self) -> dict[str, object]:
        return {
            "cache_format_version": self.cache_format_version,
            "generated_at": self.generated_at,
            "schema": self.schema.to_dict(),
            "mapping": dict(self.mapping),
        }


def _now_iso() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat()


def _parse_mapping(payload: Any) -> NameMapping:
    if payload is None:
        return freeze_mapping(None)
    if not isinstance(payload, Mapping) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in payload.items()
    ):
        raise CacheError("Cached 'mapping' must be an object of string to string.")
    return freeze_mapping(payload)


def save_schema_cache(
    cache_path: Path,
    schema: SchemaDescriptor,
    mapping: Mapping[str, str] | None = None,
) -> CachedSchema:
    """Persist a schema descriptor to cache JSON with format metadata."""
    try:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CacheError(f"Failed to create cache directory: {exc}") from exc

    cached = CachedSchema(
        cache_format_version=CACHE_FORMAT_VERSION,
        generated_at=_now_iso(),
        schema=schema,
        mapping=freeze_mapping(mapping),
    )
    try:
        cache_path.write_text(
            json.dumps(cached.to_dict(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
    except OSError as exc:
        raise CacheError(f"Failed to write schema cache file: {exc}") from exc
    return cached


def load_schema_cache(cache_path: Path) -> CachedSchema:
    """Load and validate cached schema JSON."""
    if not cache_path.exists():
        raise CacheError(f"Schema cache file does not exist: {cache_path}")

    try:
        payload = json.loads(cache_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CacheError(f"Schema cache file is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise CacheError(f"Failed to read schema cache file: {exc}") from exc

    if not isinstance(payload, dict):
        raise CacheError("Schema cache payload root must be a JSON object.")

    cache_format_version = payload.get("cache_format_version")
    if cache_format_version != CACHE_FORMAT_VERSION:
        raise CacheError(
            "Unsupported schema cache format version: "
            f"{cache_format_version!r}. Expected {CACHE_FORMAT_VERSION!r}."
        )

    generated_at = payload.get("generated_at")
    if not isinstance(generated_at, str) or not generated_at.strip():
        raise CacheError("Schema cache is missing a valid 'generated_at' value.")

    schema_payload = payload.get("schema")
    if not isinstance(schema_payload, dict):
        raise CacheError("Schema cache is missing a valid 'schema' object.")
    try:
        schema = SchemaDescriptor.from_dict(schema_payload)
    except SchemaFormatError as exc:
        raise CacheError(f"Cached schema is invalid: {exc}") from exc

    return CachedSchema(
        cache_format_version=cache_format_version,
        generated_at=generated_at,
        schema=schema,
        mapping=_parse_mapping(payload.get("mapping")),
    )


def refresh_schema_cache(
    connection_ref: str,
    cache_path: Path,
    default_schema: str = "public",
    include_schemas: list[str] | None = None,
) -> CachedSchema:
    """Introspect the database behind ``connection_ref`` and persist the cache.

    MongoDB URIs are sampled per collection; anything else is treated as a
    PostgreSQL DSN.

    An existing semantic-name mapping in the cache file is carried over.
    """
    mapping: NameMapping | None = None
    if cache_path.exists():
        try:
            mapping = load_schema_cache(cache_path).mapping
        except CacheError:
            mapping = None

    try:
        if is_mongodb_uri(connection_ref):
            schema = introspect_collections(connection_ref)
        else:
            schema = introspect_schema(
                postgres_dsn=connection_ref,
                default_schema=default_schema,
                include_schemas=include_schemas,
            )
    except IntrospectionError as exc:
        raise CacheError(str(exc)) from exc

    return save_schema_cache(cache_path=cache_path, schema=schema, mapping=mapping)
