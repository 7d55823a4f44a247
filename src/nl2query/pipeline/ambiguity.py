"""Schema-aware ambiguity detection, run before any model call."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from nl2query.models.schema import SchemaDescriptor

# Checked in this order; the first ambiguous bucket wins.
KEYWORD_BUCKETS: dict[str, tuple[str, ...]] = {
    "user": ("user", "customer", "client"),
    "order": ("order", "purchase", "transaction"),
    "product": ("product", "item", "goods"),
}


@dataclass(frozen=True)
class AmbiguityResult:
    ambiguous: bool
    bucket: str | None = None
    question: str | None = None
    options: tuple[str, ...] = field(default_factory=tuple)


def _bucket_relations(bucket: str, schema: SchemaDescriptor) -> list[str]:
    keywords = KEYWORD_BUCKETS[bucket]
    return [
        name
        for name in schema.relation_names
        if any(keyword in name.lower() for keyword in keywords)
    ]


def _mentions(text: str, bucket: str) -> bool:
    return any(keyword in text for keyword in KEYWORD_BUCKETS[bucket])


def _question_for(bucket: str, relations: list[str]) -> str:
    return (
        f"I found multiple {bucket}-related tables: {', '.join(relations)}. "
        f"Which one contains the {bucket} data you're looking for?"
    )


def detect_ambiguity(
    message: str,
    schema: SchemaDescriptor,
    *,
    resolved: Iterable[str] = (),
) -> AmbiguityResult:
    """Flag a message whose keyword bucket matches more than one relation.

    Buckets containing an already ``resolved`` relation are skipped, so a
    follow-up round only surfaces a different ambiguity.
    """
    text = message.lower()
    resolved_names = {name.lower() for name in resolved}
    for bucket in KEYWORD_BUCKETS:
        if not _mentions(text, bucket):
            continue
        relations = _bucket_relations(bucket, schema)
        if len(relations) <= 1:
            continue
        if resolved_names & {name.lower() for name in relations}:
            continue
        return AmbiguityResult(
            ambiguous=True,
            bucket=bucket,
            question=_question_for(bucket, relations),
            options=tuple(relations),
        )
    return AmbiguityResult(ambiguous=False)


def clarification_options(text: str, schema: SchemaDescriptor) -> tuple[str, ...]:
    """Relations a free-text clarification question is most likely about.

    Uses the same buckets as ``detect_ambiguity``; falls back to every
    relation when no bucket applies so the user always has a choice.
    """
    lowered = text.lower()
    for bucket in KEYWORD_BUCKETS:
        if not _mentions(lowered, bucket):
            continue
        relations = _bucket_relations(bucket, schema)
        if relations:
            return tuple(relations)
    return tuple(schema.relation_names)
