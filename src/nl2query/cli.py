"""Command-line entrypoint for nl2query."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from nl2query import __version__
from nl2query.audit import AuditLogError, read_audit_log, summarize_audit_log
from nl2query.config import ConfigError, Settings, load_settings
from nl2query.db.adapter import is_mongodb_uri
from nl2query.db.connection import DatabaseConnectionError, check_postgres_health
from nl2query.db.mongo import check_mongo_health
from nl2query.llm import ModelFallbackChain, create_providers
from nl2query.models.generation import (
    ClarificationAnswer,
    GenerationRequest,
    NeedsClarification,
    QueryGenerated,
)
from nl2query.models.schema import Dialect, SchemaDescriptor
from nl2query.models.turn import AnswerResponse, ClarifyResponse, TurnResponse
from nl2query.pipeline.clarification import ConversationSession, PendingClarificationError
from nl2query.pipeline.generator import QueryGenerator
from nl2query.pipeline.turn import build_pipeline
from nl2query.prompts.query_generation import PromptBuildError, build_query_generation_prompt
from nl2query.query.validator import validate_query
from nl2query.schema.cache import CacheError, load_schema_cache, refresh_schema_cache
from nl2query.schema.provider import (
    CachedSchemaProvider,
    SchemaProvider,
    SchemaProviderError,
    StaticSchemaProvider,
    live_schema_provider,
)
from nl2query.utils.logging import configure_logging
from nl2query.utils.timeouts import TurnCancelledError

_MAX_PRINTED_ROWS = 20


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nl2query",
        description=(
            "Ask database questions in natural language and get back a "
            "validated read-only query, its rows and a summary."
        ),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        "config-check",
        help="Validate environment configuration for nl2query.",
    )
    subparsers.add_parser(
        "healthcheck",
        help="Check PostgreSQL connectivity with a read-only session.",
    )
    introspect_parser = subparsers.add_parser(
        "introspect-schema",
        help="Inspect PostgreSQL relations and fields.",
    )
    introspect_parser.add_argument(
        "--schema",
        action="append",
        default=None,
        help="Schema(s) to introspect. Repeat the flag to include multiple schemas.",
    )
    refresh_parser = subparsers.add_parser(
        "refresh-schema",
        help="Refresh local schema cache from PostgreSQL introspection.",
    )
    refresh_parser.add_argument(
        "--schema",
        action="append",
        default=None,
        help="Schema(s) to include in cache refresh. Repeat for multiple schemas.",
    )
    subparsers.add_parser(
        "show-cache",
        help="Show relations stored in the local schema cache file.",
    )

    prompt_parser = subparsers.add_parser(
        "build-prompt",
        help="Build the deterministic query-generation prompt.",
    )
    prompt_parser.add_argument("question", help="Natural language question.")
    _add_schema_file_argument(prompt_parser)
    prompt_parser.add_argument(
        "--selected",
        action="append",
        default=None,
        help="Relation already chosen in a clarification round. Repeatable.",
    )

    generate_parser = subparsers.add_parser(
        "generate-query",
        help="Generate a query through the model fallback chain without running it.",
    )
    generate_parser.add_argument("question", help="Natural language question.")
    _add_schema_file_argument(generate_parser)

    validate_parser = subparsers.add_parser(
        "validate-query",
        help="Validate a query against the read-only rules.",
    )
    validate_parser.add_argument("query", help="Query text to validate.")
    validate_parser.add_argument(
        "--dialect",
        choices=[dialect.value for dialect in Dialect],
        default=Dialect.RELATIONAL.value,
        help="Query dialect (default: relational).",
    )

    ask_parser = subparsers.add_parser(
        "ask",
        help="Answer one question: generate, validate, execute and summarize.",
    )
    ask_parser.add_argument("question", help="Natural language question.")
    _add_schema_file_argument(ask_parser)
    ask_parser.add_argument(
        "--select",
        default=None,
        help="Option to pick if the question needs clarification.",
    )

    repl_parser = subparsers.add_parser(
        "repl",
        help="Interactive conversation with clarification follow-ups.",
    )
    _add_schema_file_argument(repl_parser)

    logs_parser = subparsers.add_parser(
        "logs",
        help="Show audit log statistics and recent entries.",
    )
    logs_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of most recent entries to show (default: 10).",
    )
    logs_parser.add_argument(
        "--json",
        action="store_true",
        help="Print statistics and entries as JSON.",
    )
    return parser


def _add_schema_file_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--schema-file",
        type=Path,
        default=None,
        help="JSON schema file to use instead of the schema cache.",
    )


def _schema_provider(settings: Settings, schema_file: Path | None) -> SchemaProvider:
    if schema_file is not None:
        return StaticSchemaProvider.from_file(schema_file)
    return CachedSchemaProvider(settings.schema_cache_path)


def _print_schema_summary(schema: SchemaDescriptor) -> None:
    print(f"- dialect: {schema.dialect.value}")
    print(f"- relations: {len(schema.relations)}")
    for relation in schema.relations:
        print(f"  - {relation.name} ({len(relation.fields)} fields)")


def _print_rows(rows: list[dict[str, object]]) -> None:
    for row in rows[:_MAX_PRINTED_ROWS]:
        print(json.dumps(row, sort_keys=True))
    if len(rows) > _MAX_PRINTED_ROWS:
        print(f"... {len(rows) - _MAX_PRINTED_ROWS} more row(s)")


def _print_turn(response: TurnResponse) -> int:
    if isinstance(response, ClarifyResponse):
        print(response.question)
        for index, option in enumerate(response.options, start=1):
            print(f"  {index}. {option}")
        return 0

    if isinstance(response, AnswerResponse):
        print(response.summary)
        print(f"\nQuery ({response.query_source}):")
        print(response.query)
        print(f"\nRows ({len(response.rows)}{', truncated' if response.truncated else ''}):")
        _print_rows(response.rows)
        return 0

    print(f"{response.classification.value}: {response.hint}", file=sys.stderr)
    print(f"- details: {response.message}", file=sys.stderr)
    if response.query:
        print(f"- query: {response.query}", file=sys.stderr)
    return 1


def _resolve_option(response: ClarifyResponse, raw: str) -> str:
    """Accept either an option or its 1-based number."""
    text = raw.strip()
    if text.isdigit() and 1 <= int(text) <= len(response.options):
        return response.options[int(text) - 1]
    return text


def _cmd_config_check(args: argparse.Namespace) -> int:
    settings = load_settings()
    redacted = "***" if settings.has_llm_credentials else "(not set)"
    print("Configuration loaded successfully:")
    print(f"- POSTGRES_DSN: {settings.postgres_dsn or '(not set)'}")
    print(f"- MONGODB_URI: {settings.mongodb_uri or '(not set)'}")
    print(f"- LLM_API_KEY: {redacted}")
    print(f"- LLM_BASE_URL: {settings.llm_base_url}")
    print(f"- PRIMARY_MODEL: {settings.primary_model}")
    print(f"- SECONDARY_MODEL: {settings.secondary_model}")
    print(f"- SUMMARY_MODEL: {settings.summary_model}")
    print(f"- PROVIDER_TIMEOUT_SECONDS: {settings.provider_timeout_seconds:g}")
    print(f"- STATEMENT_TIMEOUT_MS: {settings.statement_timeout_ms}")
    print(f"- MAX_ROWS: {settings.max_rows}")
    print(f"- DEFAULT_ROW_LIMIT: {settings.default_row_limit}")
    print(f"- SCHEMA_CACHE_PATH: {settings.schema_cache_path}")
    print(f"- DEFAULT_SCHEMA: {settings.default_schema}")
    print(f"- AUDIT_LOG_PATH: {settings.audit_log_path}")
    return 0


def _cmd_healthcheck(args: argparse.Namespace) -> int:
    settings = load_settings()
    settings.validate_database_requirements()
    if is_mongodb_uri(settings.connection_ref):
        try:
            mongo_result = check_mongo_health(settings.connection_ref)
        except DatabaseConnectionError as exc:
            print(f"Healthcheck failed:\n{exc}", file=sys.stderr)
            return 1
        print("MongoDB healthcheck succeeded:")
        print(f"- database: {mongo_result.database}")
        print(f"- server_version: {mongo_result.server_version}")
        return 0

    try:
        result = check_postgres_health(
            settings.postgres_dsn,
            statement_timeout_ms=settings.statement_timeout_ms,
        )
    except DatabaseConnectionError as exc:
        print(f"Healthcheck failed:\n{exc}", file=sys.stderr)
        return 1

    print("PostgreSQL healthcheck succeeded:")
    print(f"- database: {result.current_database}")
    print(f"- user: {result.current_user}")
    print(f"- server_version: {result.server_version}")
    print(f"- transaction_read_only: {result.transaction_read_only}")
    print(f"- statement_timeout: {result.statement_timeout}")
    return 0


def _cmd_introspect_schema(args: argparse.Namespace) -> int:
    settings = load_settings()
    settings.validate_database_requirements()
    provider = live_schema_provider(
        settings.connection_ref,
        default_schema=settings.default_schema,
        include_schemas=tuple(args.schema or ()),
    )
    try:
        schema = provider.get_schema(settings.connection_ref)
    except SchemaProviderError as exc:
        print(f"Schema introspection failed:\n{exc}", file=sys.stderr)
        return 1

    print("Schema introspection succeeded:")
    _print_schema_summary(schema)
    return 0


def _cmd_refresh_schema(args: argparse.Namespace) -> int:
    settings = load_settings()
    settings.validate_database_requirements()
    try:
        cached = refresh_schema_cache(
            connection_ref=settings.connection_ref,
            cache_path=settings.schema_cache_path,
            default_schema=settings.default_schema,
            include_schemas=args.schema,
        )
    except CacheError as exc:
        print(f"Schema cache refresh failed:\n{exc}", file=sys.stderr)
        return 1

    print("Schema cache refresh succeeded:")
    print(f"- cache_path: {settings.schema_cache_path}")
    print(f"- cache_format_version: {cached.cache_format_version}")
    print(f"- generated_at: {cached.generated_at}")
    print(f"- mappings: {len(cached.mapping)}")
    _print_schema_summary(cached.schema)
    return 0


def _cmd_show_cache(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        cached = load_schema_cache(settings.schema_cache_path)
    except CacheError as exc:
        print(f"Schema cache read failed:\n{exc}", file=sys.stderr)
        return 1

    print("Schema cache loaded:")
    print(f"- cache_path: {settings.schema_cache_path}")
    print(f"- cache_format_version: {cached.cache_format_version}")
    print(f"- generated_at: {cached.generated_at}")
    print(f"- mappings: {len(cached.mapping)}")
    _print_schema_summary(cached.schema)
    return 0


def _cmd_build_prompt(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        provider = _schema_provider(settings, args.schema_file)
        schema = provider.get_schema(settings.connection_ref)
        answer = None
        if args.selected:
            answer = ClarificationAnswer(
                selected_relation=args.selected[-1],
                earlier_selections=tuple(args.selected[:-1]),
            )
        bundle = build_query_generation_prompt(
            GenerationRequest(
                message=args.question,
                schema=schema,
                mapping=provider.get_mapping(settings.connection_ref),
                clarification_answer=answer,
            )
        )
    except SchemaProviderError as exc:
        print(f"Schema load failed:\n{exc}", file=sys.stderr)
        return 1
    except PromptBuildError as exc:
        print(f"Prompt build failed:\n{exc}", file=sys.stderr)
        return 1

    print("Prompt build succeeded:")
    print(f"- question: {bundle.question}")
    print(f"- dialect: {bundle.dialect.value}")
    print(f"- relations: {', '.join(bundle.relation_names)}")
    print("\n--- SYSTEM PROMPT ---")
    print(bundle.system_prompt)
    print("\n--- USER PROMPT ---")
    print(bundle.user_prompt)
    return 0


def _cmd_generate_query(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        provider = _schema_provider(settings, args.schema_file)
        request = GenerationRequest(
            message=args.question,
            schema=provider.get_schema(settings.connection_ref),
            mapping=provider.get_mapping(settings.connection_ref),
        )
    except SchemaProviderError as exc:
        print(f"Schema load failed:\n{exc}", file=sys.stderr)
        return 1

    generator = QueryGenerator(
        ModelFallbackChain(
            create_providers(settings),
            timeout_seconds=settings.provider_timeout_seconds,
        )
    )
    result = generator.generate(request)

    if isinstance(result, NeedsClarification):
        print("Clarification needed:")
        print(f"- question: {result.question}")
        print(f"- options: {', '.join(result.options)}")
        return 0
    if not isinstance(result, QueryGenerated):
        print(f"Query generation failed:\n{result.reason}", file=sys.stderr)
        return 1

    validation = validate_query(
        result.text,
        request.dialect,
        default_limit=settings.default_row_limit,
    )
    if not validation.is_valid:
        print(f"Generated query failed validation (source: {result.source}):", file=sys.stderr)
        for violation in validation.violations:
            print(f"- {violation}", file=sys.stderr)
        return 1

    print("Query generation succeeded:")
    print(f"- source: {result.source}")
    print(f"- limit_added: {'yes' if validation.limit_added else 'no'}")
    print("\nQuery:")
    print(validation.normalized_text)
    return 0


def _cmd_validate_query(args: argparse.Namespace) -> int:
    settings = load_settings()
    validation = validate_query(
        args.query,
        Dialect(args.dialect),
        default_limit=settings.default_row_limit,
    )
    if not validation.is_valid:
        print("Query validation failed:")
        for violation in validation.violations:
            print(f"- {violation}")
        return 1

    print("Query validation succeeded:")
    print(f"- dialect: {validation.dialect.value}")
    print(f"- limit_added: {'yes' if validation.limit_added else 'no'}")
    print("\nNormalized query:")
    print(validation.normalized_text)
    return 0


def _cmd_ask(args: argparse.Namespace) -> int:
    settings = load_settings()
    settings.validate_database_requirements()
    pipeline = build_pipeline(
        settings,
        schema_provider=_schema_provider(settings, args.schema_file),
    )
    session = ConversationSession(pipeline, settings.connection_ref, channel="cli")

    response = session.send(args.question)
    if not isinstance(response, ClarifyResponse):
        return _print_turn(response)

    if args.select is not None:
        selection = _resolve_option(response, args.select)
    elif sys.stdin.isatty():
        _print_turn(response)
        selection = _resolve_option(response, input("Select an option: "))
    else:
        return _print_turn(response)
    return _print_turn(session.send(selection))


def _cmd_repl(args: argparse.Namespace) -> int:
    settings = load_settings()
    settings.validate_database_requirements()
    pipeline = build_pipeline(
        settings,
        schema_provider=_schema_provider(settings, args.schema_file),
    )
    session = ConversationSession(pipeline, settings.connection_ref, channel="repl")
    last_clarify: ClarifyResponse | None = None

    print("nl2query REPL. Type :restart to drop a pending question, :quit to exit.")
    while True:
        try:
            line = input("nl2query> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0

        if not line:
            continue
        if line in {":quit", ":exit"}:
            return 0
        if line == ":restart":
            session.restart()
            last_clarify = None
            print("Conversation restarted.")
            continue

        if last_clarify is not None:
            line = _resolve_option(last_clarify, line)
        try:
            response = session.send(line)
        except PendingClarificationError as exc:
            print(f"{exc} Pick an option or type :restart.")
            continue
        except SchemaProviderError as exc:
            print(f"Schema load failed:\n{exc}", file=sys.stderr)
            continue

        last_clarify = response if isinstance(response, ClarifyResponse) else None
        _print_turn(response)


def _cmd_logs(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        records = read_audit_log(settings.audit_log_path)
    except AuditLogError as exc:
        print(f"Audit log read failed:\n{exc}", file=sys.stderr)
        return 1

    stats = summarize_audit_log(records)
    recent = list(reversed(records))[: max(args.limit, 0)]
    if args.json:
        payload = {
            "summary": stats.to_dict(),
            "logs": [record.model_dump(mode="json") for record in recent],
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    print("Audit log summary:")
    print(f"- total: {stats.total}")
    print(f"- errors: {stats.errors}")
    print(f"- success: {stats.success}")
    print(f"- error_rate: {stats.error_rate}%")
    if recent:
        print("\nRecent entries:")
    for record in recent:
        status = record.classification.value if record.classification else "OK"
        print(
            f"- {record.timestamp.isoformat()} [{record.channel}/{record.actor}] "
            f"{status} {record.execution_time_ms}ms: {record.original_message}"
        )
    return 0


_COMMANDS = {
    "config-check": _cmd_config_check,
    "healthcheck": _cmd_healthcheck,
    "introspect-schema": _cmd_introspect_schema,
    "refresh-schema": _cmd_refresh_schema,
    "show-cache": _cmd_show_cache,
    "build-prompt": _cmd_build_prompt,
    "generate-query": _cmd_generate_query,
    "validate-query": _cmd_validate_query,
    "ask": _cmd_ask,
    "repl": _cmd_repl,
    "logs": _cmd_logs,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging()
    try:
        return _COMMANDS[args.command](args)
    except ConfigError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        return 2
    except SchemaProviderError as exc:
        print(f"Schema load failed:\n{exc}", file=sys.stderr)
        return 1
    except PendingClarificationError as exc:
        print(f"Clarification failed:\n{exc}", file=sys.stderr)
        return 1
    except AuditLogError as exc:
        print(f"Audit log write failed:\n{exc}", file=sys.stderr)
        return 1
    except TurnCancelledError:
        print("Cancelled.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
