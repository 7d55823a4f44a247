"""Turn a generation request into a query, a clarification, or a failure."""

from __future__ import annotations

import logging
import re
import threading

from nl2query.llm.fallback import ChainExhaustedError, ModelFallbackChain
from nl2query.llm.heuristic import KeywordQueryGenerator
from nl2query.models.generation import (
    GenerationFailed,
    GenerationRequest,
    GenerationResult,
    NeedsClarification,
    QueryGenerated,
)
from nl2query.models.schema import Dialect, SchemaDescriptor
from nl2query.pipeline.ambiguity import clarification_options
from nl2query.prompts.query_generation import (
    CLARIFICATION_SENTINEL,
    PromptBuildError,
    build_query_generation_prompt,
)

logger = logging.getLogger(__name__)

# The language tag is optional and may share the line with the query
# (```sql SELECT 1```); a bare SELECT right after the fence is never a tag.
_FENCED_BLOCK = re.compile(
    r"```[ \t]*(?:(?!select\b)[a-z]+[ \t]*\n|(?:sql|json|javascript|js)\b)?\s*(.*?)```",
    re.DOTALL | re.IGNORECASE,
)
_REFUSAL_MARKERS = ("sorry", "cannot")
_DEFAULT_CLARIFICATION_QUESTION = "Which table should I use for this question?"


def strip_code_fences(text: str) -> str:
    """Return the body of the first Markdown code block, or the bare text."""
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return text.replace("```", "").strip()


def rejection_reason(text: str, dialect: Dialect) -> str | None:
    """Why model output cannot be used as a query, or ``None`` if it can."""
    if not text:
        return "Model returned an empty response."

    lowered = text.lower()
    if any(marker in lowered for marker in _REFUSAL_MARKERS):
        return "Model declined to produce a query."

    if dialect is Dialect.RELATIONAL and not lowered.startswith("select"):
        return "Model response is not a SELECT query."
    if dialect is Dialect.DOCUMENT and not lowered.startswith("db."):
        return "Model response is not a db.<collection> query."
    return None


def is_usable_response(text: str, dialect: Dialect) -> bool:
    cleaned = strip_code_fences(text)
    if CLARIFICATION_SENTINEL in cleaned:
        return True
    return rejection_reason(cleaned, dialect) is None


def interpret_response(
    text: str,
    schema: SchemaDescriptor,
    *,
    source: str = "unknown",
) -> GenerationResult:
    """Map raw chain output to a generation result."""
    cleaned = strip_code_fences(text)

    if CLARIFICATION_SENTINEL in cleaned:
        _, _, tail = cleaned.partition(CLARIFICATION_SENTINEL)
        question = tail.lstrip(":").strip() or _DEFAULT_CLARIFICATION_QUESTION
        return NeedsClarification(
            question=question,
            options=clarification_options(question, schema),
        )

    reason = rejection_reason(cleaned, schema.dialect)
    if reason is not None:
        return GenerationFailed(reason=reason)
    return QueryGenerated(text=cleaned, source=source)


class QueryGenerator:
    """Prompt the fallback chain and post-process whatever tier answered."""

    def __init__(self, chain: ModelFallbackChain) -> None:
        self._chain = chain

    def generate(
        self,
        request: GenerationRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> GenerationResult:
        try:
            bundle = build_query_generation_prompt(request)
        except PromptBuildError as exc:
            return GenerationFailed(reason=str(exc))

        logger.debug("Generation system prompt:\n%s", bundle.system_prompt)

        answer = request.clarification_answer
        terminal = KeywordQueryGenerator(
            schema=request.schema,
            message=request.message,
            preferred_relations=answer.all_selections if answer else (),
        )
        dialect = request.dialect

        try:
            response = self._chain.invoke(
                bundle.system_prompt,
                bundle.user_prompt,
                terminal=terminal,
                accept=lambda text: is_usable_response(text, dialect),
                cancel_event=cancel_event,
            )
        except ChainExhaustedError as exc:
            logger.warning("Query generation failed: %s", exc)
            return GenerationFailed(reason=str(exc))

        return interpret_response(response.text, request.schema, source=response.source)
