"""Natural-language summaries of query results, with a deterministic fallback."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from nl2query.llm.base import TextProvider
from nl2query.models.execution import Row
from nl2query.prompts.summary import SUMMARY_SYSTEM_PROMPT, build_summary_prompt
from nl2query.utils.timeouts import TurnCancelledError, run_with_timeout

logger = logging.getLogger(__name__)

NO_RESULTS_SUMMARY = "No results found for your query."


@dataclass(frozen=True)
class Summary:
    text: str
    source: str


def column_label(key: str) -> str:
    """``average_amount`` -> ``Average Amount``."""
    return re.sub(r"\b\w", lambda match: match.group(0).upper(), key.replace("_", " "))


def fallback_summary(
    query: str,
    rows: Sequence[Row],
    *,
    truncated: bool = False,
) -> str:
    """Deterministic summary used whenever the model path is unavailable."""
    if not rows:
        return NO_RESULTS_SUMMARY

    first = rows[0]
    if len(rows) == 1 and len(first) == 1:
        key, value = next(iter(first.items()))
        return f"{column_label(key)}: {'null' if value is None else value}"

    noun = "result" if len(rows) == 1 else "results"
    text = f"Found {len(rows)} {noun} for your query."
    if truncated:
        text += f" Only the first {len(rows)} rows are shown."
    return text


class ResultSummarizer:
    """Summarize rows with a provider, falling back to ``fallback_summary``.

    Provider errors, timeouts and empty completions never reach the caller.
    """

    def __init__(
        self,
        provider: TextProvider | None = None,
        *,
        timeout_seconds: float = 30.0,
        max_tokens: int = 300,
        temperature: float = 0.3,
    ) -> None:
        self._provider = provider
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens
        self._temperature = temperature

    def summarize(
        self,
        query: str,
        rows: Sequence[Row],
        user_question: str,
        *,
        truncated: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> Summary:
        fallback = Summary(
            text=fallback_summary(query, rows, truncated=truncated),
            source="fallback",
        )
        if self._provider is None or not rows:
            return fallback

        provider = self._provider
        prompt = build_summary_prompt(user_question, query, rows)
        try:
            text = run_with_timeout(
                lambda: provider.complete(
                    SUMMARY_SYSTEM_PROMPT,
                    prompt,
                    self._max_tokens,
                    self._temperature,
                ),
                self._timeout_seconds,
                cancel_event=cancel_event,
            )
        except TurnCancelledError:
            raise
        except Exception as exc:
            logger.info("Summary provider unavailable, using fallback: %s", exc)
            return fallback

        text = text.strip() if isinstance(text, str) else ""
        if not text:
            logger.info("Summary provider returned no text, using fallback")
            return fallback
        return Summary(text=text, source=provider.name)
