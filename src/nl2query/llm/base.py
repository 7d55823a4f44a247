"""Provider-independent text-completion interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ProviderError(RuntimeError):
    """Raised when a provider call fails or returns unusable output."""


class TextProvider(ABC):
    """Pluggable text-completion backend.

    Implementations must raise ``ProviderError`` for transport or payload
    failures so callers can move on to the next provider.
    """

    name: str = "provider"

    @abstractmethod
    def complete(
        self,
        prompt: str,
        text: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Return the raw completion for a system ``prompt`` and user ``text``."""
