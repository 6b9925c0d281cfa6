"""
Pydantic v2 schemas for the admin surface (keys, cache, counters).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.services.tiers import Tier


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── API keys ────────────────────────────────────────────────
class ApiKeyCreate(_CamelModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Acme integration"])
    tier: Tier = Field(default=Tier.FREE)


class ApiKeyCreated(_CamelModel):
    """Returned once — `key` is never retrievable again."""

    id: uuid.UUID
    key: str
    name: str
    tier: Tier
    request_limit: int
    request_count: int = 0
    is_active: bool = True
    created_at: datetime
    last_used_at: datetime | None = None


class ApiKeyOut(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: uuid.UUID
    name: str
    prefix: str
    tier: Tier
    request_limit: int
    request_count: int
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None


class ApiKeyRef(_CamelModel):
    key: str = Field(..., min_length=1)


class ApiKeyStatsOut(_CamelModel):
    request_count: int
    request_limit: int
    remaining_requests: int
    reset_time: datetime


# ── Cache / counters ────────────────────────────────────────
class CacheWarmOut(_CamelModel):
    message: str
    loaded: int
    stored: int
    outcome: str


class OperationOut(_CamelModel):
    message: str
    outcome: str


class RateLimitResetIn(_CamelModel):
    identifier: str = Field(..., min_length=1, examples=["ip:203.0.113.7"])
