"""Read-only PostgreSQL sessions and the connectivity check."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import psycopg
from psycopg.rows import dict_row

from nl2query.db.queries import HEALTHCHECK_QUERY


class DatabaseConnectionError(RuntimeError):
    """Raised when a PostgreSQL connection or health check fails."""


@dataclass(frozen=True)
class HealthcheckResult:
    current_database: str
    current_user: str
    server_version: str
    transaction_read_only: bool
    statement_timeout: str


@dataclass(frozen=True)
class SessionOptions:
    """Settings applied to every session through libpq ``options``."""

    read_only: bool = True
    statement_timeout_ms: int | None = None
    application_name: str = "nl2query"

    def to_libpq(self) -> str:
        parts = [f"-c application_name={self.application_name}"]
        if self.read_only:
            parts.append("-c default_transaction_read_only=on")
        if self.statement_timeout_ms is not None:
            parts.append(f"-c statement_timeout={int(self.statement_timeout_ms)}")
        return " ".join(parts)


@contextmanager
def connect_readonly(
    postgres_dsn: str,
    *,
    statement_timeout_ms: int | None = None,
    connect_timeout: int = 5,
) -> Iterator[psycopg.Connection]:
    """Yield a connection whose transactions default to read-only.

    The connection is closed on exit; the transaction is rolled back on error.
    """
    options = SessionOptions(statement_timeout_ms=statement_timeout_ms)
    try:
        conn = psycopg.connect(
            postgres_dsn,
            connect_timeout=connect_timeout,
            options=options.to_libpq(),
        )
    except psycopg.Error as exc:
        raise DatabaseConnectionError(f"Could not connect to PostgreSQL: {exc}") from exc

    with conn:
        yield conn


def check_postgres_health(
    postgres_dsn: str, *, statement_timeout_ms: int | None = None
) -> HealthcheckResult:
    """Connect once, read the session settings and insist on read-only mode."""
    try:
        with connect_readonly(
            postgres_dsn, statement_timeout_ms=statement_timeout_ms
        ) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(HEALTHCHECK_QUERY)
                row = cur.fetchone()
    except DatabaseConnectionError:
        raise
    except psycopg.Error as exc:
        raise DatabaseConnectionError(f"PostgreSQL health check failed: {exc}") from exc

    if not row:
        raise DatabaseConnectionError("PostgreSQL health check returned no data.")
    if row["transaction_read_only"] != "on":
        raise DatabaseConnectionError(
            "Connected, but the session does not default to read-only transactions."
        )

    return HealthcheckResult(
        current_database=row["current_database"],
        current_user=row["current_user"],
        server_version=row["server_version"],
        transaction_read_only=True,
        statement_timeout=row["statement_timeout"],
    )
