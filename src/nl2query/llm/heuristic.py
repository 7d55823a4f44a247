"""Deterministic keyword-to-query generator used as the last fallback tier.

No network, no model: phrase patterns in the user's message select a canned
template, parameterized by the relation and fields the message most likely
refers to. It only fails when the schema has no relations at all.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from nl2query.llm.base import ProviderError, TextProvider
from nl2query.models.schema import (
    Dialect,
    FieldDescriptor,
    RelationDescriptor,
    SchemaDescriptor,
)
from nl2query.pipeline.ambiguity import KEYWORD_BUCKETS

_SIMPLE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

_COUNT_PHRASES = ("how many", "count", "number of")
_AVERAGE_PHRASES = ("average", "avg", "mean")
_TOP_PHRASES = ("top", "highest", "largest", "most", "biggest")
_RECENT_PHRASES = ("recent", "latest", "newest", "last")

# phrase -> interval in days
_TIME_WINDOWS = (
    ("today", 1),
    ("week", 7),
    ("month", 30),
    ("year", 365),
)

_TIME_FIELD_PREFERENCE = ("created_at", "createdat", "created", "timestamp", "date")
_NUMERIC_TYPE_MARKERS = (
    "int",
    "numeric",
    "decimal",
    "double",
    "real",
    "float",
    "money",
    "number",
)
_TIME_TYPE_MARKERS = ("timestamp", "date", "time")
_VALUE_FIELD_PREFERENCE = ("amount", "total", "price", "revenue", "value", "score")

DEFAULT_LIST_LIMIT = 10
DEFAULT_FALLBACK_LIMIT = 5
DEFAULT_TOP_LIMIT = 5


def _contains_any(text: str, phrases: tuple[str, ...]) -> bool:
    return any(re.search(rf"\b{re.escape(phrase)}s?\b", text) for phrase in phrases)


def _quote_identifier(name: str) -> str:
    parts = name.split(".")
    return ".".join(
        part if _SIMPLE_IDENTIFIER.match(part) else '"' + part.replace('"', '""') + '"'
        for part in parts
    )


def _relation_stems(relation: RelationDescriptor) -> set[str]:
    base = relation.name.split(".")[-1].lower()
    spaced = base.replace("_", " ")
    stems = {base, spaced}
    for stem in (base, spaced):
        if stem.endswith("s") and len(stem) > 3:
            stems.add(stem[:-1])
    return stems


def _time_window_days(text: str) -> int | None:
    for phrase, days in _TIME_WINDOWS:
        if re.search(rf"\b{phrase}s?\b", text):
            return days
    return None


def _time_field(relation: RelationDescriptor) -> FieldDescriptor | None:
    by_name = {item.name.lower(): item for item in relation.fields}
    for preferred in _TIME_FIELD_PREFERENCE:
        if preferred in by_name:
            return by_name[preferred]
    for item in relation.fields:
        if item.name.lower().endswith("_at") or any(
            marker in item.type.lower() for marker in _TIME_TYPE_MARKERS
        ):
            return item
    return None


def _is_numeric(item: FieldDescriptor) -> bool:
    lowered = item.type.lower()
    return any(marker in lowered for marker in _NUMERIC_TYPE_MARKERS)


def _value_field(relation: RelationDescriptor, text: str) -> FieldDescriptor | None:
    candidates = [
        item
        for item in relation.fields
        if _is_numeric(item)
        and not item.is_primary_key
        and not item.name.lower().endswith("id")
    ]
    if not candidates:
        return None
    for item in candidates:
        if item.name.lower().replace("_", " ") in text:
            return item
    for preferred in _VALUE_FIELD_PREFERENCE:
        for item in candidates:
            if preferred in item.name.lower():
                return item
    return candidates[0]


@dataclass(frozen=True)
class KeywordQueryGenerator(TextProvider):
    """Request-bound deterministic tier of the fallback chain."""

    schema: SchemaDescriptor
    message: str
    preferred_relations: tuple[str, ...] = ()

    @property
    def name(self) -> str:  # type: ignore[override]
        return "heuristic"

    def complete(
        self,
        prompt: str,
        text: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        return self.generate()

    def generate(self) -> str:
        if not self.schema.relations:
            raise ProviderError("Schema has no relations to query.")

        lowered = self.message.lower()
        relation, matched = self._pick_relation(lowered)
        if self.schema.dialect is Dialect.DOCUMENT:
            return self._document_query(relation, matched, lowered)
        return self._relational_query(relation, matched, lowered)

    def _pick_relation(self, text: str) -> tuple[RelationDescriptor, bool]:
        for selected in reversed(self.preferred_relations):
            relation = self.schema.get(selected)
            if relation is not None:
                return relation, True

        best: tuple[int, RelationDescriptor] | None = None
        for relation in self.schema.relations:
            for stem in _relation_stems(relation):
                if re.search(rf"\b{re.escape(stem)}", text):
                    if best is None or len(stem) > best[0]:
                        best = (len(stem), relation)
        if best is not None:
            return best[1], True

        for keywords in KEYWORD_BUCKETS.values():
            if not any(keyword in text for keyword in keywords):
                continue
            for relation in self.schema.relations:
                if any(keyword in relation.name.lower() for keyword in keywords):
                    return relation, True

        return self.schema.relations[0], False

    def _relational_query(
        self,
        relation: RelationDescriptor,
        matched: bool,
        text: str,
    ) -> str:
        table = _quote_identifier(relation.name)
        window = _time_window_days(text)
        time_field = _time_field(relation)
        where = ""
        if window is not None and time_field is not None:
            where = (
                f" WHERE {_quote_identifier(time_field.name)} >= "
                f"NOW() - INTERVAL '{window} days'"
            )

        if _contains_any(text, _COUNT_PHRASES):
            return f"SELECT COUNT(*) AS count FROM {table}{where}"

        value_field = _value_field(relation, text)
        if _contains_any(text, _AVERAGE_PHRASES) and value_field is not None:
            column = _quote_identifier(value_field.name)
            return (
                f"SELECT AVG({column}) AS average_{value_field.name.lower()} "
                f"FROM {table}{where}"
            )
        if _contains_any(text, _TOP_PHRASES) and value_field is not None:
            column = _quote_identifier(value_field.name)
            return (
                f"SELECT * FROM {table}{where} ORDER BY {column} DESC "
                f"LIMIT {DEFAULT_TOP_LIMIT}"
            )
        if _contains_any(text, _RECENT_PHRASES) and time_field is not None:
            column = _quote_identifier(time_field.name)
            return (
                f"SELECT * FROM {table}{where} ORDER BY {column} DESC "
                f"LIMIT {DEFAULT_LIST_LIMIT}"
            )

        limit = DEFAULT_LIST_LIMIT if matched else DEFAULT_FALLBACK_LIMIT
        return f"SELECT * FROM {table}{where} LIMIT {limit}"

    def _document_query(
        self,
        relation: RelationDescriptor,
        matched: bool,
        text: str,
    ) -> str:
        collection = f"db.{relation.name}"
        window = _time_window_days(text)
        time_field = _time_field(relation)
        match = "{}"
        if window is not None and time_field is not None:
            match = (
                f'{{"{time_field.name}": {{"$gte": '
                f"new Date(Date.now() - {window} * 24 * 60 * 60 * 1000)}}}}"
            )

        if _contains_any(text, _COUNT_PHRASES):
            return f"{collection}.countDocuments({match})"

        value_field = _value_field(relation, text)
        if _contains_any(text, _AVERAGE_PHRASES) and value_field is not None:
            return (
                f'{collection}.aggregate([{{"$match": {match}}}, '
                f'{{"$group": {{"_id": null, "average_{value_field.name}": '
                f'{{"$avg": "${value_field.name}"}}}}}}])'
            )
        if _contains_any(text, _TOP_PHRASES) and value_field is not None:
            return (
                f'{collection}.find({match}).sort({{"{value_field.name}": -1}})'
                f".limit({DEFAULT_TOP_LIMIT})"
            )
        if _contains_any(text, _RECENT_PHRASES) and time_field is not None:
            return (
                f'{collection}.find({match}).sort({{"{time_field.name}": -1}})'
                f".limit({DEFAULT_LIST_LIMIT})"
            )

        limit = DEFAULT_LIST_LIMIT if matched else DEFAULT_FALLBACK_LIMIT
        return f"{collection}.find({match}).limit({limit})"
