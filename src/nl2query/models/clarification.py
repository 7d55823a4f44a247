"""Pending clarification context stored by the caller between turns."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClarificationContext(BaseModel):
    """Question raised in one turn, awaiting a selection in the next."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    original_message: str = Field(min_length=1)
    question: str = Field(min_length=1)
    options: tuple[str, ...] = Field(min_length=1)
    resolved_relations: tuple[str, ...] = ()

    @field_validator("options")
    @classmethod
    def validate_unique_options(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError("options must be unique.")
        return value
