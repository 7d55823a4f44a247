"""Prompt builders for nl2query."""

from nl2query.prompts.query_generation import (
    CLARIFICATION_SENTINEL,
    PromptBuildError,
    PromptBundle,
    build_query_generation_prompt,
)
from nl2query.prompts.summary import SUMMARY_SYSTEM_PROMPT, build_summary_prompt

__all__ = [
    "CLARIFICATION_SENTINEL",
    "PromptBuildError",
    "PromptBundle",
    "SUMMARY_SYSTEM_PROMPT",
    "build_query_generation_prompt",
    "build_summary_prompt",
]
