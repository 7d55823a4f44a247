"""Tests for schema descriptors, the schema cache and schema providers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from nl2query.models.schema import Dialect, SchemaDescriptor, SchemaFormatError
from nl2query.schema.cache import (
    CACHE_FORMAT_VERSION,
    CacheError,
    load_schema_cache,
    save_schema_cache,
)
from nl2query.schema.provider import (
    CachedSchemaProvider,
    SchemaProviderError,
    StaticSchemaProvider,
)


class TestSchemaDescriptor:
    def test_tables_layout(self) -> None:
        schema = SchemaDescriptor.from_dict(
            {
                "tables": [
                    {
                        "name": "users",
                        "columns": [
                            {"name": "id", "type": "integer", "isPrimary": True},
                            {"name": "email", "type": "text"},
                        ],
                    }
                ]
            }
        )

        assert schema.dialect is Dialect.RELATIONAL
        assert schema.relation_names == ["users"]
        users = schema.get("USERS")
        assert users is not None
        assert users.fields[0].is_primary_key is True
        assert users.has_field("email")

    def test_collections_layout(self) -> None:
        schema = SchemaDescriptor.from_dict(
            {"collections": [{"name": "events", "fields": [{"name": "_id", "type": "objectId"}]}]}
        )

        assert schema.dialect is Dialect.DOCUMENT
        assert schema.relations[0].field_names == ["_id"]

    def test_native_layout_round_trip(self, shop_schema: SchemaDescriptor) -> None:
        assert SchemaDescriptor.from_dict(shop_schema.to_dict()) == shop_schema

    def test_unknown_layout(self) -> None:
        with pytest.raises(SchemaFormatError):
            SchemaDescriptor.from_dict({"things": []})

    def test_bad_dialect(self) -> None:
        with pytest.raises(SchemaFormatError):
            SchemaDescriptor.from_dict({"dialect": "graph", "relations": []})


class TestSchemaCache:
    def test_save_and_load(self, tmp_path: Path, shop_schema: SchemaDescriptor) -> None:
        path = tmp_path / "cache" / "schema.json"

        save_schema_cache(path, shop_schema, {"buyers": "users"})
        cached = load_schema_cache(path)

        assert cached.cache_format_version == CACHE_FORMAT_VERSION
        assert cached.schema == shop_schema
        assert dict(cached.mapping) == {"buyers": "users"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(CacheError, match="does not exist"):
            load_schema_cache(tmp_path / "absent.json")

    def test_version_mismatch(self, tmp_path: Path, shop_schema: SchemaDescriptor) -> None:
        path = tmp_path / "schema.json"
        save_schema_cache(path, shop_schema)
        payload = json.loads(path.read_text(encoding="utf-8"))
        payload["cache_format_version"] = "1.0"
        path.write_text(json.dumps(payload), encoding="utf-8")

        with pytest.raises(CacheError, match="Unsupported"):
            load_schema_cache(path)

    def test_mapping_must_be_strings(self, tmp_path: Path, shop_schema: SchemaDescriptor) -> None:
        path = tmp_path / "schema.json"
        save_schema_cache(path, shop_schema)
        payload = json.loads(path.read_text(encoding="utf-8"))
        payload["mapping"] = {"buyers": 3}
        path.write_text(json.dumps(payload), encoding="utf-8")

        with pytest.raises(CacheError):
            load_schema_cache(path)


class TestSchemaProviders:
    def test_static_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "schema.json"
        path.write_text(
            json.dumps(
                {
                    "schema": {"tables": [{"name": "orders", "columns": []}]},
                    "mapping": {"sales": "orders"},
                }
            ),
            encoding="utf-8",
        )

        provider = StaticSchemaProvider.from_file(path)

        assert provider.get_schema("any").relation_names == ["orders"]
        assert dict(provider.get_mapping("any")) == {"sales": "orders"}

    def test_static_from_bad_file(self, tmp_path: Path) -> None:
        path = tmp_path / "schema.json"
        path.write_text("[]", encoding="utf-8")

        with pytest.raises(SchemaProviderError):
            StaticSchemaProvider.from_file(path)

    def test_cached_provider(self, tmp_path: Path, shop_schema: SchemaDescriptor) -> None:
        path = tmp_path / "schema.json"
        save_schema_cache(path, shop_schema)

        provider = CachedSchemaProvider(path)

        assert provider.get_schema("dsn") == shop_schema
        assert dict(provider.get_mapping("dsn")) == {}

    def test_cached_provider_without_cache(self, tmp_path: Path) -> None:
        with pytest.raises(SchemaProviderError):
            CachedSchemaProvider(tmp_path / "absent.json").get_schema("dsn")
