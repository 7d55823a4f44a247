"""Execute validated queries and classify their failures."""

from __future__ import annotations

import datetime as dt
import logging
import re
import threading
import uuid
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from nl2query.db.adapter import DatabaseAdapter
from nl2query.models.execution import (
    ErrorClassification,
    ExecutionError,
    ExecutionOutcome,
    ExecutionSuccess,
    Row,
)
from nl2query.query.validator import ValidatedQuery
from nl2query.utils.timeouts import CallTimeoutError, TurnCancelledError, run_with_timeout

logger = logging.getLogger(__name__)

MAX_SAFE_INTEGER = 2**53 - 1

_RELATION_MISSING = re.compile(r'relation "([^"]+)" does not exist', re.IGNORECASE)
_FIELD_MISSING = re.compile(
    r'column (?:"([^"]+)"|([^\s"]+)) does not exist', re.IGNORECASE
)
_INCOMPLETE_MARKERS = ("missing from-clause entry", "syntax error at end of input")
_COLLECTION_MISSING = re.compile(
    r"collection ['\"]?([^\s'\"]+)['\"]? (?:does not exist|not found)", re.IGNORECASE
)
_NAMESPACE_MISSING = "ns not found"


def classify_execution_error(message: str) -> tuple[ErrorClassification, str | None]:
    """Map a raw database error message to a classification and detail."""
    match = _RELATION_MISSING.search(message)
    if match:
        return ErrorClassification.RELATION_NOT_FOUND, match.group(1)

    match = _FIELD_MISSING.search(message)
    if match:
        return ErrorClassification.FIELD_NOT_FOUND, match.group(1) or match.group(2)

    lowered = message.lower()
    if any(marker in lowered for marker in _INCOMPLETE_MARKERS):
        return ErrorClassification.INCOMPLETE_QUERY, None

    match = _COLLECTION_MISSING.search(message)
    if match:
        return ErrorClassification.RELATION_NOT_FOUND, match.group(1)
    if _NAMESPACE_MISSING in lowered:
        return ErrorClassification.RELATION_NOT_FOUND, None

    return ErrorClassification.UNKNOWN, None


def serialize_value(value: Any) -> Any:
    """Convert a driver value into something every JSON consumer can read.

    Integers beyond the 53-bit safe range and decimals become strings so
    that no precision is lost.
    """
    if value is None or isinstance(value, (bool, str, float)):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, dt.timedelta):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [serialize_value(item) for item in value]
    return str(value)


def serialize_row(row: Mapping[str, Any]) -> Row:
    return {str(key): serialize_value(value) for key, value in row.items()}


class QueryExecutor:
    """Run validated queries through a database adapter. Never retries."""

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        max_rows: int = 1000,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._adapter = adapter
        self._max_rows = max_rows
        self._timeout_seconds = timeout_seconds

    def execute(
        self,
        connection_ref: str,
        query: ValidatedQuery,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionOutcome:
        if not isinstance(query, ValidatedQuery):
            raise TypeError("QueryExecutor only runs ValidatedQuery instances.")

        try:
            rows = run_with_timeout(
                lambda: self._adapter.run(connection_ref, query.text),
                self._timeout_seconds,
                cancel_event=cancel_event,
            )
        except TurnCancelledError:
            raise
        except CallTimeoutError as exc:
            logger.warning("Query execution timed out: %s", exc)
            return ExecutionError(
                classification=ErrorClassification.UNKNOWN,
                message=f"Query timed out: {exc}",
            )
        except Exception as exc:  # adapters surface raw driver errors
            message = str(exc) or exc.__class__.__name__
            classification, detail = classify_execution_error(message)
            logger.warning(
                "Query execution failed (%s): %s", classification.value, message
            )
            return ExecutionError(
                classification=classification,
                message=message,
                detail=detail,
            )

        rows = list(rows or [])
        truncated = len(rows) > self._max_rows
        if truncated:
            logger.info("Result capped at %d rows", self._max_rows)
        return ExecutionSuccess(
            rows=[serialize_row(row) for row in rows[: self._max_rows]],
            truncated=truncated,
        )
