"""Subscription entitlement domain package."""

from .catalog import DEFAULT_PERIOD_DAYS, TIER_CATALOG, get_tier_definition, period_for, price_for
from .exceptions import (
    DuplicatePaymentError,
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    NotFoundError,
    SubscriptionError,
    UnknownPayerError,
)
from .models import (
    Entitlement,
    EntitlementState,
    PaymentAction,
    PaymentApplication,
    Subscription,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionTier,
)
from .service import EntitlementEngine, SubscriptionEventLogger, SubscriptionRepository

__all__ = [
    "DEFAULT_PERIOD_DAYS",
    "TIER_CATALOG",
    "get_tier_definition",
    "period_for",
    "price_for",
    "DuplicatePaymentError",
    "InvalidWebhookPayloadError",
    "InvalidWebhookSignatureError",
    "NotFoundError",
    "SubscriptionError",
    "UnknownPayerError",
    "Entitlement",
    "EntitlementState",
    "PaymentAction",
    "PaymentApplication",
    "Subscription",
    "SubscriptionAuditEvent",
    "SubscriptionAuditEventType",
    "SubscriptionTier",
    "EntitlementEngine",
    "SubscriptionEventLogger",
    "SubscriptionRepository",
]
