"""Single-turn orchestration: detect, generate, validate, execute, summarize."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence

from nl2query.audit import AuditSink, JsonlAuditSink
from nl2query.config import Settings
from nl2query.db.adapter import ConnectionRoutingAdapter, DatabaseAdapter, PostgresAdapter
from nl2query.db.mongo import MongoAdapter
from nl2query.llm import ModelFallbackChain, create_providers, create_summary_provider
from nl2query.models.audit import AuditRecord
from nl2query.models.clarification import ClarificationContext
from nl2query.models.execution import ErrorClassification, ExecutionError, Row
from nl2query.models.generation import (
    GenerationFailed,
    GenerationRequest,
    NeedsClarification,
)
from nl2query.models.turn import (
    AnswerResponse,
    ClarifyResponse,
    ErrorResponse,
    TurnResponse,
)
from nl2query.pipeline.ambiguity import detect_ambiguity
from nl2query.pipeline.clarification import begin_clarification, resolve_clarification
from nl2query.pipeline.executor import QueryExecutor
from nl2query.pipeline.generator import QueryGenerator
from nl2query.pipeline.summarizer import ResultSummarizer
from nl2query.query.validator import QueryValidationError, ensure_valid_query
from nl2query.schema.provider import CachedSchemaProvider, SchemaProvider
from nl2query.utils.timeouts import raise_if_cancelled

logger = logging.getLogger(__name__)

# Headroom on top of the server-side statement timeout.
_EXECUTION_GRACE_SECONDS = 5.0


class QueryPipeline:
    """Handle one user turn end to end.

    Holds only collaborators; pending clarification contexts belong to the
    caller and are passed back in as ``prior_clarification``.
    """

    def __init__(
        self,
        schema_provider: SchemaProvider,
        generator: QueryGenerator,
        executor: QueryExecutor,
        summarizer: ResultSummarizer,
        audit_sink: AuditSink,
        *,
        default_row_limit: int | None = 100,
    ) -> None:
        self._schema_provider = schema_provider
        self._generator = generator
        self._executor = executor
        self._summarizer = summarizer
        self._audit_sink = audit_sink
        self._default_row_limit = default_row_limit

    def handle_turn(
        self,
        message: str,
        connection_ref: str,
        prior_clarification: ClarificationContext | None = None,
        *,
        actor: str = "api",
        channel: str = "api",
        cancel_event: threading.Event | None = None,
    ) -> TurnResponse:
        """Run one turn.

        With ``prior_clarification`` set, ``message`` must be one of its
        options (``PendingClarificationError`` otherwise) and the original
        question is answered with that selection. Cancellation raises
        ``TurnCancelledError`` and writes no audit record.
        """
        raise_if_cancelled(cancel_event)
        started = time.monotonic()

        answer = None
        original_message = message
        if prior_clarification is not None:
            answer = resolve_clarification(prior_clarification, message)
            original_message = prior_clarification.original_message
            logger.info("Clarification resolved with %s", answer.selected_relation)
        resolved = answer.all_selections if answer else ()

        schema = self._schema_provider.get_schema(connection_ref)
        mapping = self._schema_provider.get_mapping(connection_ref)

        ambiguity = detect_ambiguity(original_message, schema, resolved=resolved)
        if ambiguity.ambiguous:
            logger.info("Ambiguous %s reference, asking for clarification", ambiguity.bucket)
            return self._clarify(
                original_message,
                ambiguity.question or "",
                ambiguity.options,
                resolved,
            )

        raise_if_cancelled(cancel_event)
        result = self._generator.generate(
            GenerationRequest(
                message=original_message,
                schema=schema,
                mapping=mapping,
                clarification_answer=answer,
            ),
            cancel_event=cancel_event,
        )
        raise_if_cancelled(cancel_event)

        def audit(**fields: object) -> None:
            self._audit_sink.append(
                AuditRecord(
                    actor=actor,
                    channel=channel,
                    original_message=original_message,
                    execution_time_ms=int((time.monotonic() - started) * 1000),
                    **fields,
                )
            )

        if isinstance(result, NeedsClarification):
            return self._clarify(original_message, result.question, result.options, resolved)

        if isinstance(result, GenerationFailed):
            audit(error=result.reason, classification=ErrorClassification.GENERATION_FAILED)
            return ErrorResponse(
                classification=ErrorClassification.GENERATION_FAILED,
                message=result.reason,
            )

        try:
            validated = ensure_valid_query(
                result.text,
                schema.dialect,
                default_limit=self._default_row_limit,
            )
        except QueryValidationError as exc:
            reason = "; ".join(exc.violations)
            audit(
                generated_query=result.text,
                error=reason,
                classification=ErrorClassification.UNSAFE_QUERY,
                source=result.source,
            )
            return ErrorResponse(
                classification=ErrorClassification.UNSAFE_QUERY,
                message=reason,
                query=result.text,
            )

        raise_if_cancelled(cancel_event)
        outcome = self._executor.execute(
            connection_ref,
            validated,
            cancel_event=cancel_event,
        )
        if isinstance(outcome, ExecutionError):
            audit(
                generated_query=validated.text,
                error=outcome.message,
                classification=outcome.classification,
                source=result.source,
            )
            return ErrorResponse(
                classification=outcome.classification,
                message=outcome.message,
                detail=outcome.detail,
                query=validated.text,
            )

        rows: list[Row] = outcome.rows
        summary = self._summarizer.summarize(
            validated.text,
            rows,
            original_message,
            truncated=outcome.truncated,
            cancel_event=cancel_event,
        )
        audit(generated_query=validated.text, rows=rows, source=result.source)
        return AnswerResponse(
            summary=summary.text,
            query=validated.text,
            rows=rows,
            summary_source=summary.source,
            query_source=result.source,
            truncated=outcome.truncated,
        )

    def _clarify(
        self,
        original_message: str,
        question: str,
        options: Sequence[str],
        resolved: Sequence[str],
    ) -> ClarifyResponse:
        context = begin_clarification(original_message, question, options, resolved)
        return ClarifyResponse(
            question=context.question,
            options=context.options,
            context=context,
        )


def _default_adapter(settings: Settings) -> DatabaseAdapter:
    return ConnectionRoutingAdapter(
        relational=PostgresAdapter(
            statement_timeout_ms=settings.statement_timeout_ms,
            max_rows=settings.max_rows,
        ),
        document=MongoAdapter(
            statement_timeout_ms=settings.statement_timeout_ms,
            max_rows=settings.max_rows,
        ),
    )


def build_pipeline(
    settings: Settings,
    *,
    schema_provider: SchemaProvider | None = None,
    adapter: DatabaseAdapter | None = None,
    audit_sink: AuditSink | None = None,
) -> QueryPipeline:
    """Wire a pipeline from settings; any collaborator can be overridden."""
    chain = ModelFallbackChain(
        create_providers(settings),
        timeout_seconds=settings.provider_timeout_seconds,
    )
    executor = QueryExecutor(
        adapter or _default_adapter(settings),
        max_rows=settings.max_rows,
        timeout_seconds=settings.statement_timeout_ms / 1000 + _EXECUTION_GRACE_SECONDS,
    )
    summarizer = ResultSummarizer(
        create_summary_provider(settings),
        timeout_seconds=settings.provider_timeout_seconds,
    )
    return QueryPipeline(
        schema_provider=schema_provider or CachedSchemaProvider(settings.schema_cache_path),
        generator=QueryGenerator(chain),
        executor=executor,
        summarizer=summarizer,
        audit_sink=audit_sink or JsonlAuditSink(settings.audit_log_path),
        default_row_limit=settings.default_row_limit,
    )
