"""Append-only audit sinks and query-log statistics."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from nl2query.models.audit import AuditRecord

logger = logging.getLogger(__name__)


class AuditLogError(RuntimeError):
    """Raised when an audit log cannot be written or read."""


class AuditSink(ABC):
    @abstractmethod
    def append(self, record: AuditRecord) -> None:
        """Persist one record. Records are never updated or removed."""


class InMemoryAuditSink(AuditSink):
    def __init__(self) -> None:
        self._records: list[AuditRecord] = []
        self._lock = threading.Lock()

    @property
    def records(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)


class JsonlAuditSink(AuditSink):
    """One JSON document per line, appended under a process-wide lock."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: AuditRecord) -> None:
        line = record.model_dump_json() + "\n"
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(line)
            except OSError as exc:
                raise AuditLogError(f"Failed to write audit log: {exc}") from exc
        logger.debug("Audit record appended to %s", self._path)


def read_audit_log(path: Path) -> list[AuditRecord]:
    """Load every record from a JSONL audit log, oldest first."""
    if not path.exists():
        return []

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise AuditLogError(f"Failed to read audit log: {exc}") from exc

    records: list[AuditRecord] = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            records.append(AuditRecord.model_validate_json(line))
        except ValidationError as exc:
            raise AuditLogError(
                f"Invalid audit record on line {number} of {path}: {exc}"
            ) from exc
    return records


@dataclass(frozen=True)
class AuditStats:
    total: int
    errors: int
    success: int
    error_rate: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "errors": self.errors,
            "success": self.success,
            "error_rate": self.error_rate,
        }


def summarize_audit_log(records: Iterable[AuditRecord]) -> AuditStats:
    """Totals plus the error rate as a whole percentage."""
    total = 0
    errors = 0
    for record in records:
        total += 1
        if record.is_error:
            errors += 1
    error_rate = round(errors / total * 100) if total else 0
    return AuditStats(
        total=total,
        errors=errors,
        success=total - errors,
        error_rate=error_rate,
    )
