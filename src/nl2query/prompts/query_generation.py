"""Prompt builder for natural-language-to-query generation requests."""

from __future__ import annotations

from dataclasses import dataclass

from nl2query.models.generation import GenerationRequest
from nl2query.models.schema import Dialect, NameMapping, SchemaDescriptor

CLARIFICATION_SENTINEL = "CLARIFICATION_NEEDED"


class PromptBuildError(RuntimeError):
    """Raised when a generation prompt cannot be built safely."""


@dataclass(frozen=True)
class PromptBundle:
    """Inspectable prompt pair handed to the fallback chain."""

    question: str
    dialect: Dialect
    relation_names: list[str]
    schema_text: str
    system_prompt: str
    user_prompt: str


_DIALECT_HEADERS = {
    Dialect.RELATIONAL: (
        "You are a PostgreSQL query generation assistant. "
        "Generate a single read-only SELECT statement."
    ),
    Dialect.DOCUMENT: (
        "You are a MongoDB query generation assistant. "
        "Generate a single read-only shell query of the form "
        "db.<collection>.<method>(...)."
    ),
}

_RELATIONAL_EXAMPLES = (
    "- SELECT u.first_name, u.last_name, COUNT(o.id) AS order_count FROM orders o "
    "JOIN users u ON o.user_id = u.id GROUP BY u.id, u.first_name, u.last_name "
    "ORDER BY order_count DESC LIMIT 10\n"
    "- SELECT * FROM products WHERE category = 'Electronics' LIMIT 100"
)

_DOCUMENT_EXAMPLES = (
    '- db.orders.find({"status": "shipped"}).sort({"created_at": -1}).limit(10)\n'
    '- db.orders.aggregate([{"$group": {"_id": "$customer_id", '
    '"total": {"$sum": "$amount"}}}, {"$limit": 10}])'
)


def describe_schema(schema: SchemaDescriptor) -> str:
    """Enumerate relations and fields, one field per line."""
    label = "Table" if schema.dialect is Dialect.RELATIONAL else "Collection"
    lines: list[str] = []
    for relation in schema.relations:
        lines.append(f"{label}: {relation.name}")
        for item in relation.fields:
            marker = (
                " [PRIMARY KEY]"
                if item.is_primary_key and schema.dialect is Dialect.RELATIONAL
                else ""
            )
            lines.append(f"  - {item.name} ({item.type}){marker}")
    return "\n".join(lines)


def describe_mapping(mapping: NameMapping) -> str:
    if not mapping:
        return ""
    lines = ["Name mappings:"]
    for semantic_name in sorted(mapping):
        lines.append(f"  - {semantic_name} -> {mapping[semantic_name]}")
    return "\n".join(lines)


def _instructions(dialect: Dialect) -> str:
    if dialect is Dialect.RELATIONAL:
        completeness = (
            "Generate COMPLETE statements including FROM, JOIN, WHERE, GROUP BY "
            "and ORDER BY clauses as needed. Never truncate the query."
        )
        limit = "Always include a LIMIT clause unless the query is a single aggregate."
        examples = _RELATIONAL_EXAMPLES
    else:
        completeness = (
            "Generate the COMPLETE shell expression with every argument and "
            "cursor method. Never truncate the query."
        )
        limit = "Always bound find() results with .limit(n)."
        examples = _DOCUMENT_EXAMPLES

    return (
        "Instructions:\n"
        "1. Use only the relations and fields listed in the schema.\n"
        "2. Follow foreign key naming (e.g. user_id references users.id) for joins.\n"
        f"3. {completeness}\n"
        f"4. {limit}\n"
        "5. Never emit statements that modify data or schema.\n"
        "6. If you are unsure which relation or field to use, do not guess: reply "
        f'with "{CLARIFICATION_SENTINEL}: <your specific question>".\n\n'
        "Response format:\n"
        "- If confident: return ONLY the query, with no explanation or comments.\n"
        f"- If uncertain: return {CLARIFICATION_SENTINEL}: <question>.\n\n"
        f"Example queries:\n{examples}"
    )


def _user_prompt(request: GenerationRequest, question: str) -> str:
    answer = request.clarification_answer
    if answer is None:
        return question

    chosen = ", ".join(f'"{name}"' for name in answer.all_selections)
    return (
        f"Original question: {question}\n"
        f"Clarification: the user selected {chosen}.\n"
        "Generate the query using the selected relation. "
        "Do not ask for clarification about this choice again."
    )


def build_query_generation_prompt(request: GenerationRequest) -> PromptBundle:
    """Build deterministic prompts for one generation request."""
    question = request.message.strip()
    if not question:
        raise PromptBuildError("Question cannot be empty.")

    schema = request.schema
    if not schema.relations:
        raise PromptBuildError("Schema has no relations to query.")

    schema_text = describe_schema(schema)
    sections = [
        _DIALECT_HEADERS[schema.dialect],
        f"Schema:\n{schema_text}",
    ]
    mapping_text = describe_mapping(request.mapping)
    if mapping_text:
        sections.append(mapping_text)
    sections.append(_instructions(schema.dialect))

    return PromptBundle(
        question=question,
        dialect=schema.dialect,
        relation_names=list(schema.relation_names),
        schema_text=schema_text,
        system_prompt="\n\n".join(sections),
        user_prompt=_user_prompt(request, question),
    )
