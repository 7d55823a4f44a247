"""Database adapters that run validated query text."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from psycopg.rows import dict_row

from nl2query.db.connection import connect_readonly


class DatabaseAdapter(ABC):
    """Runs query text against a connection and returns rows as dicts.

    Implementations raise on failure; the raw error message is what gets
    classified, so adapters should not rewrite it.
    """

    @abstractmethod
    def run(self, connection_ref: str, text: str) -> list[dict[str, Any]]:
        """Execute ``text`` and return the result rows."""


@dataclass(frozen=True)
class PostgresAdapter(DatabaseAdapter):
    """Run SQL over a read-only psycopg session.

    ``connection_ref`` is a PostgreSQL DSN.
    """

    statement_timeout_ms: int = 15000
    max_rows: int = 1000

    def run(self, connection_ref: str, text: str) -> list[dict[str, Any]]:
        with connect_readonly(
            connection_ref,
            statement_timeout_ms=self.statement_timeout_ms,
        ) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(text)
                if cur.description is None:
                    return []
                return list(cur.fetchmany(self.max_rows + 1))


MONGODB_SCHEMES = ("mongodb://", "mongodb+srv://")


def is_mongodb_uri(connection_ref: str) -> bool:
    return connection_ref.strip().startswith(MONGODB_SCHEMES)


@dataclass(frozen=True)
class ConnectionRoutingAdapter(DatabaseAdapter):
    """Send MongoDB URIs to ``document`` and everything else to ``relational``."""

    relational: DatabaseAdapter
    document: DatabaseAdapter

    def run(self, connection_ref: str, text: str) -> list[dict[str, Any]]:
        if is_mongodb_uri(connection_ref):
            return self.document.run(connection_ref, text)
        return self.relational.run(connection_ref, text)
