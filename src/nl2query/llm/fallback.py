"""Ordered model fallback chain with a deterministic terminal tier."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from nl2query.llm.base import TextProvider
from nl2query.utils.timeouts import TurnCancelledError, run_with_timeout

logger = logging.getLogger(__name__)

Acceptor = Callable[[str], bool]


class ChainExhaustedError(RuntimeError):
    """Raised when every tier, including the terminal one, was exhausted."""

    def __init__(self, attempts: Sequence["TierAttempt"]) -> None:
        self.attempts = tuple(attempts)
        summary = "; ".join(f"{item.source}: {item.reason}" for item in self.attempts)
        super().__init__(f"All generation tiers failed ({summary}).")


@dataclass(frozen=True)
class TierAttempt:
    source: str
    reason: str


@dataclass(frozen=True)
class ChainResponse:
    text: str
    source: str
    attempts: tuple[TierAttempt, ...] = ()


def _accept_any(text: str) -> bool:
    return True


class ModelFallbackChain:
    """Try providers in order until one returns acceptable text.

    A tier is exhausted when it raises any error, exceeds its own timeout,
    returns an empty body, or returns text that ``accept`` rejects. Only
    ``TurnCancelledError`` escapes. Tiers are never retried and never run in
    parallel.
    """

    def __init__(
        self,
        providers: Sequence[TextProvider],
        *,
        timeout_seconds: float,
        max_tokens: int = 500,
        temperature: float = 0.1,
    ) -> None:
        self._providers = tuple(providers)
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def providers(self) -> tuple[TextProvider, ...]:
        return self._providers

    def invoke(
        self,
        prompt: str,
        user_text: str,
        *,
        terminal: TextProvider | None = None,
        accept: Acceptor = _accept_any,
        cancel_event: threading.Event | None = None,
    ) -> ChainResponse:
        tiers = list(self._providers)
        if terminal is not None:
            tiers.append(terminal)

        attempts: list[TierAttempt] = []
        for provider in tiers:
            source = provider.name
            try:
                text = run_with_timeout(
                    lambda provider=provider: provider.complete(
                        prompt,
                        user_text,
                        self._max_tokens,
                        self._temperature,
                    ),
                    self._timeout_seconds,
                    cancel_event=cancel_event,
                )
            except TurnCancelledError:
                raise
            except Exception as exc:
                reason = str(exc) or exc.__class__.__name__
                logger.warning("Tier %s exhausted: %s", source, reason)
                attempts.append(TierAttempt(source=source, reason=reason))
                continue

            text = text.strip() if isinstance(text, str) else ""
            if not text:
                logger.warning("Tier %s exhausted: empty response", source)
                attempts.append(TierAttempt(source=source, reason="empty response"))
                continue
            if not accept(text):
                logger.warning("Tier %s exhausted: unusable response", source)
                attempts.append(TierAttempt(source=source, reason="unusable response"))
                continue

            logger.info("Tier %s produced a response", source)
            return ChainResponse(text=text, source=source, attempts=tuple(attempts))

        raise ChainExhaustedError(attempts)
