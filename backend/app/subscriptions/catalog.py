"""Static pricing for subscription tiers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from .models import SubscriptionTier

DEFAULT_PERIOD_DAYS = 30


@dataclass(frozen=True)
class TierDefinition:
    """Describes a tier and its price per period in USDC base units (6 decimals)."""

    tier: SubscriptionTier
    price: int
    period_days: int = DEFAULT_PERIOD_DAYS


TIER_CATALOG: Dict[SubscriptionTier, TierDefinition] = {
    SubscriptionTier.BASIC: TierDefinition(
        tier=SubscriptionTier.BASIC,
        price=5_000_000,
    ),
    SubscriptionTier.PRO: TierDefinition(
        tier=SubscriptionTier.PRO,
        price=25_000_000,
    ),
}


def get_tier_definition(tier: SubscriptionTier) -> TierDefinition:
    """Return a tier definition, raising if unsupported."""

    try:
        return TIER_CATALOG[tier]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown subscription tier: {tier}") from exc


def price_for(tier: SubscriptionTier) -> int:
    return get_tier_definition(tier).price


def period_for(tier: SubscriptionTier) -> int:
    return get_tier_definition(tier).period_days
