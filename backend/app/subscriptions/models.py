"""Domain models for subscription entitlements."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionTier(str, Enum):
    """Ordered subscription tiers; ``pro`` includes everything in ``basic``."""

    BASIC = "basic"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @classmethod
    def highest(cls, first: "SubscriptionTier", second: "SubscriptionTier") -> "SubscriptionTier":
        """Return the higher of two tiers."""

        return first if first.rank >= second.rank else second


_TIER_RANK = {SubscriptionTier.BASIC: 0, SubscriptionTier.PRO: 1}


class EntitlementState(str, Enum):
    """Derived entitlement state for a payer at a point in time."""

    NO_SUBSCRIPTION = "no_subscription"
    ACTIVE_BASIC = "active_basic"
    ACTIVE_PRO = "active_pro"
    EXPIRED = "expired"


class PaymentAction(str, Enum):
    """What applying a payment did to the payer's subscription."""

    CREATED = "created"
    EXTENDED = "extended"
    REPLAYED = "replayed"


class Subscription(BaseModel):
    """Time-boxed entitlement for one payer identity."""

    id: str
    payer_id: str
    tier: SubscriptionTier
    amount_paid: int = Field(ge=0)
    payment_reference: Optional[str] = None
    started_at: datetime
    expires_at: datetime
    created_at: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("payment_reference")
    @classmethod
    def _blank_reference_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


class Entitlement(BaseModel):
    """The (tier, expires_at) pair a payer is currently authorized for."""

    tier: SubscriptionTier
    expires_at: datetime
    subscription_id: str

    model_config = ConfigDict(frozen=True)


class PaymentApplication(BaseModel):
    """Result of applying a confirmed payment."""

    action: PaymentAction
    subscription: Subscription

    model_config = ConfigDict(frozen=True)

    @property
    def replayed(self) -> bool:
        return self.action == PaymentAction.REPLAYED


class SubscriptionAuditEventType(str, Enum):
    """Audit event categories emitted by the entitlement engine."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_EXTENDED = "subscription_extended"
    PAYMENT_REPLAYED = "payment_replayed"


class SubscriptionAuditEvent(BaseModel):
    """Structured audit event describing a subscription mutation."""

    event_type: SubscriptionAuditEventType
    subscription_id: str
    payer_id: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime

    model_config = ConfigDict(frozen=True)
