"""Append-only audit record written once per terminal turn outcome."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from nl2query.models.execution import ErrorClassification


def _now() -> datetime:
    return datetime.now(tz=UTC)


class AuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_now)
    actor: str
    channel: str
    original_message: str
    generated_query: str = ""
    rows: list[dict[str, Any]] | None = None
    error: str | None = None
    classification: ErrorClassification | None = None
    source: str | None = None
    execution_time_ms: int = Field(ge=0)

    @property
    def is_error(self) -> bool:
        return self.error is not None
