"""
Pydantic v2 schemas for name lookups.

Wire format is camelCase (enName, processedCount, …); Python attributes
stay snake_case through an alias generator.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

# Arabic-script letters and whitespace (Persian names)
PERSIAN_NAME_PATTERN = "^[\u0600-\u06FF\\s]+$"
NAME_MAX_LENGTH = 50

PersianNameStr = Annotated[
    str,
    StringConstraints(min_length=1, max_length=NAME_MAX_LENGTH, pattern=PERSIAN_NAME_PATTERN),
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Single lookup ───────────────────────────────────────────
class NameLookupOut(_CamelModel):
    """Gender and transliteration; both null when the name is unknown."""

    gender: str | None = Field(default=None, examples=["male"])
    en_name: str | None = Field(default=None, examples=["Ali"])


# ── Batch ───────────────────────────────────────────────────
class BatchRequest(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    names: list[PersianNameStr] = Field(
        ...,
        min_length=1,
        examples=[["علی", "زهرا", "محمد"]],
        description="Persian names to look up (max 100 per request).",
    )
    include_popularity: bool = Field(
        default=False,
        description="Include the popularity score for each name.",
    )


class BatchItemOut(_CamelModel):
    name: str
    gender: str | None
    en_name: str | None
    popularity: int | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)


class BatchResponse(_CamelModel):
    results: list[BatchItemOut]
    processed_count: int
    error_count: int
    processing_time: int = Field(..., description="Milliseconds.")
