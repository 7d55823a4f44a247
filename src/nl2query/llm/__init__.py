"""Text providers, the fallback chain and factory helpers."""

from nl2query.config import Settings
from nl2query.llm.base import ProviderError, TextProvider
from nl2query.llm.fallback import (
    ChainExhaustedError,
    ChainResponse,
    ModelFallbackChain,
    TierAttempt,
)
from nl2query.llm.heuristic import KeywordQueryGenerator
from nl2query.llm.openai_adapter import OpenAICompatibleProvider


def create_providers(settings: Settings) -> list[TextProvider]:
    """Create the model tiers for current settings, primary first.

    Without credentials no model tier is configured and generation runs on
    the deterministic tier alone.
    """
    if not settings.has_llm_credentials:
        return []

    models = [settings.primary_model]
    if settings.secondary_model != settings.primary_model:
        models.append(settings.secondary_model)
    return [
        OpenAICompatibleProvider(
            api_key=settings.llm_api_key,
            model=model,
            base_url=settings.llm_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
        )
        for model in models
    ]


def create_summary_provider(settings: Settings) -> TextProvider | None:
    """Create the summarizer provider, or ``None`` to always use the fallback."""
    if not settings.has_llm_credentials:
        return None
    return OpenAICompatibleProvider(
        api_key=settings.llm_api_key,
        model=settings.summary_model,
        base_url=settings.llm_base_url,
        timeout_seconds=settings.provider_timeout_seconds,
    )


__all__ = [
    "ChainExhaustedError",
    "ChainResponse",
    "KeywordQueryGenerator",
    "ModelFallbackChain",
    "OpenAICompatibleProvider",
    "ProviderError",
    "TextProvider",
    "TierAttempt",
    "create_providers",
    "create_summary_provider",
]
