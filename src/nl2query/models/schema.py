"""Dialect-neutral schema descriptors consumed by the query pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

NameMapping = Mapping[str, str]


class Dialect(str, Enum):
    """Query language family targeted for a connection."""

    RELATIONAL = "relational"
    DOCUMENT = "document"


class SchemaFormatError(ValueError):
    """Raised when a schema payload cannot be turned into a descriptor."""


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: str
    is_primary_key: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "type": self.type,
            "is_primary_key": self.is_primary_key,
        }


@dataclass(frozen=True)
class RelationDescriptor:
    """A table (relational) or collection (document)."""

    name: str
    fields: tuple[FieldDescriptor, ...] = ()

    @property
    def field_names(self) -> list[str]:
        return [item.name for item in self.fields]

    def has_field(self, name: str) -> bool:
        return any(item.name == name for item in self.fields)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "fields": [item.to_dict() for item in self.fields],
        }


@dataclass(frozen=True)
class SchemaDescriptor:
    """Ordered relation metadata for one connection. Immutable per request."""

    dialect: Dialect
    relations: tuple[RelationDescriptor, ...] = field(default_factory=tuple)

    @property
    def relation_names(self) -> list[str]:
        return [relation.name for relation in self.relations]

    def get(self, name: str) -> RelationDescriptor | None:
        for relation in self.relations:
            if relation.name == name:
                return relation
        lowered = name.lower()
        for relation in self.relations:
            if relation.name.lower() == lowered:
                return relation
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "dialect": self.dialect.value,
            "relations": [relation.to_dict() for relation in self.relations],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SchemaDescriptor:
        """Parse a JSON-style schema payload.

        Accepts the native ``{"dialect", "relations"}`` layout as well as the
        ``{"tables": [...]}`` / ``{"collections": [...]}`` layouts returned by
        typical schema browsers.
        """
        if "relations" in payload:
            try:
                dialect = Dialect(payload.get("dialect", Dialect.RELATIONAL.value))
            except ValueError as exc:
                raise SchemaFormatError(
                    f"Unsupported dialect: {payload.get('dialect')!r}"
                ) from exc
            entries = payload["relations"]
            fields_key = "fields"
        elif "tables" in payload:
            dialect = Dialect.RELATIONAL
            entries = payload["tables"]
            fields_key = "columns"
        elif "collections" in payload:
            dialect = Dialect.DOCUMENT
            entries = payload["collections"]
            fields_key = "fields"
        else:
            raise SchemaFormatError(
                "Schema payload must contain 'relations', 'tables' or 'collections'."
            )

        if not isinstance(entries, list):
            raise SchemaFormatError("Schema relations must be a list.")

        relations: list[RelationDescriptor] = []
        for entry in entries:
            if not isinstance(entry, Mapping) or not isinstance(entry.get("name"), str):
                raise SchemaFormatError(f"Invalid relation entry: {entry!r}")
            raw_fields = entry.get(fields_key) or entry.get("fields") or []
            if not isinstance(raw_fields, list):
                raise SchemaFormatError(
                    f"Relation '{entry['name']}' has invalid field list."
                )
            fields: list[FieldDescriptor] = []
            for raw in raw_fields:
                if not isinstance(raw, Mapping) or not isinstance(raw.get("name"), str):
                    raise SchemaFormatError(
                        f"Relation '{entry['name']}' has invalid field entry: {raw!r}"
                    )
                fields.append(
                    FieldDescriptor(
                        name=raw["name"],
                        type=str(raw.get("type", "unknown")),
                        is_primary_key=bool(
                            raw.get("is_primary_key", raw.get("isPrimary", False))
                        ),
                    )
                )
            relations.append(RelationDescriptor(name=entry["name"], fields=tuple(fields)))

        return cls(dialect=dialect, relations=tuple(relations))


def freeze_mapping(mapping: Mapping[str, str] | None = None) -> NameMapping:
    """Return a read-only copy of a semantic-name mapping."""
    return MappingProxyType(dict(mapping or {}))
