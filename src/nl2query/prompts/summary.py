"""Prompt builder for natural-language result summaries."""

from __future__ import annotations

import json
from collections.abc import Sequence

from nl2query.models.execution import Row

SUMMARY_SYSTEM_PROMPT = (
    "You are a data analyst assistant. Analyze query results and give a clear, "
    "insightful summary in natural language.\n\n"
    "Instructions:\n"
    "1. Understand what was requested from the question and the query.\n"
    "2. Highlight key insights, patterns or notable data points.\n"
    "3. Use language a business user would understand.\n"
    "4. Mention interesting outliers when there are any.\n\n"
    "Keep your response to 2-3 sentences that give genuine insight rather "
    "than restating the numbers."
)


def build_summary_prompt(user_question: str, query: str, rows: Sequence[Row]) -> str:
    """User prompt carrying the question, the executed query and its rows."""
    return (
        f'User asked: "{user_question}"\n\n'
        f"Query executed:\n{query}\n\n"
        f"Results:\n{json.dumps(list(rows), indent=2, default=str)}\n\n"
        "Please provide an insightful summary of these results."
    )
