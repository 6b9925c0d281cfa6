"""
Quota tiers.

The tier table maps each tier to its hourly request budget. It is built
from settings so deployments can retune quotas without code changes.
Quotas must be strictly increasing in tier order — a paid tier is never
cheaper than the one below it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from collections.abc import Mapping

from app.core.config import Settings


class Tier(str, enum.Enum):
    """Ordered access tiers (declaration order = quota order)."""

    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"

    @property
    def is_paid(self) -> bool:
        return self is not Tier.FREE

    def at_least(self, minimum: Tier) -> bool:
        order = list(Tier)
        return order.index(self) >= order.index(minimum)


@dataclass(frozen=True, slots=True)
class TierQuota:
    requests: int
    window_seconds: int


TierTable = Mapping[Tier, TierQuota]


def build_tier_table(settings: Settings) -> TierTable:
    """
    Build the immutable tier table from settings.

    Raises ValueError if quotas are not strictly increasing.
    """
    window = settings.RATE_LIMIT_WINDOW_SECONDS
    table = {
        Tier.FREE: TierQuota(settings.TIER_FREE_REQUESTS, window),
        Tier.BASIC: TierQuota(settings.TIER_BASIC_REQUESTS, window),
        Tier.PREMIUM: TierQuota(settings.TIER_PREMIUM_REQUESTS, window),
        Tier.ENTERPRISE: TierQuota(settings.TIER_ENTERPRISE_REQUESTS, window),
    }

    quotas = [table[tier].requests for tier in Tier]
    if any(lower >= upper for lower, upper in zip(quotas, quotas[1:])):
        raise ValueError(f"Tier quotas must be strictly increasing, got {quotas}")

    return MappingProxyType(table)
