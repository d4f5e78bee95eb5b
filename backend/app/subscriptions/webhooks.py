"""Signed payment-confirmation webhooks that activate or extend subscriptions."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..vault.exceptions import ConfigurationError
from .exceptions import InvalidWebhookPayloadError, InvalidWebhookSignatureError
from .models import PaymentAction, Subscription, SubscriptionTier
from .service import EntitlementEngine

logger = logging.getLogger("subscriptions")

PAYMENT_EVENTS = frozenset({"payment_link.payment", "product.payment"})


class PayerResolver(Protocol):
    """Maps the paying wallet address to the payer identity it belongs to."""

    def resolve_payer(self, payer_address: str) -> Optional[str]:
        ...


class WebhookPayment(BaseModel):
    payer_address: Optional[str] = Field(default=None, alias="payerAddress")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    amount: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, coerce_numbers_to_str=True)


class SubscriptionWebhookPayload(BaseModel):
    """Normalized body of a payment webhook."""

    event: str
    payment: Optional[WebhookPayment] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class WebhookAction(str, Enum):
    CREATED = "created"
    EXTENDED = "extended"
    REPLAYED = "replayed"
    IGNORED = "ignored"
    PAYER_NOT_FOUND = "payer_not_found"


class WebhookOutcome(BaseModel):
    """What the webhook did; ``subscription`` is set when a payment was applied or replayed."""

    action: WebhookAction
    payer_id: Optional[str] = None
    subscription: Optional[Subscription] = None

    model_config = ConfigDict(frozen=True)

    @property
    def success(self) -> bool:
        return self.action != WebhookAction.PAYER_NOT_FOUND


def compute_webhook_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature over the raw body."""

    if not signature or not secret:
        return False
    expected = compute_webhook_signature(body, secret)
    return hmac.compare_digest(signature.strip().lower(), expected)


class SubscriptionWebhookHandler:
    """Verifies payment webhooks and applies them through the entitlement engine."""

    def __init__(self, engine: EntitlementEngine, payer_resolver: PayerResolver, secret: str) -> None:
        if not secret:
            raise ConfigurationError("SUBSCRIPTION_WEBHOOK_SECRET must be set to accept subscription webhooks")
        self._engine = engine
        self._payer_resolver = payer_resolver
        self._secret = secret

    def handle(self, body: bytes, signature: Optional[str]) -> WebhookOutcome:
        if not signature:
            raise InvalidWebhookSignatureError("Missing signature")
        if not verify_webhook_signature(body, signature, self._secret):
            logger.warning("Rejected subscription webhook with invalid signature")
            raise InvalidWebhookSignatureError()

        payload = self._parse(body)
        if payload.event not in PAYMENT_EVENTS:
            logger.debug("Ignoring webhook event %s", payload.event)
            return WebhookOutcome(action=WebhookAction.IGNORED)

        payment = payload.payment
        if payment is None or not payment.payer_address or not payment.transaction_hash:
            raise InvalidWebhookPayloadError()

        payer_id = self._payer_resolver.resolve_payer(payment.payer_address)
        if payer_id is None:
            logger.warning("No payer found for wallet %s", payment.payer_address)
            return WebhookOutcome(action=WebhookAction.PAYER_NOT_FOUND)

        tier = self._tier_from_metadata(payload.metadata)
        application = self._engine.apply_payment(
            payer_id,
            tier,
            payment.transaction_hash,
            amount=_parse_amount(payment.amount),
        )
        logger.info(
            "Subscription webhook %s for payer %s, expires %s",
            application.action.value,
            payer_id,
            application.subscription.expires_at.isoformat(),
        )
        return WebhookOutcome(
            action=_ACTION_MAP[application.action],
            payer_id=payer_id,
            subscription=application.subscription,
        )

    def _parse(self, body: bytes) -> SubscriptionWebhookPayload:
        try:
            return SubscriptionWebhookPayload.model_validate(json.loads(body))
        except (ValueError, ValidationError) as exc:
            raise InvalidWebhookPayloadError("Malformed webhook body") from exc

    def _tier_from_metadata(self, metadata: Dict[str, Any]) -> SubscriptionTier:
        raw = str(metadata.get("tier") or SubscriptionTier.BASIC.value).strip().lower()
        try:
            return SubscriptionTier(raw)
        except ValueError as exc:
            raise InvalidWebhookPayloadError(f"Unknown subscription tier {raw!r}") from exc


_ACTION_MAP = {
    PaymentAction.CREATED: WebhookAction.CREATED,
    PaymentAction.EXTENDED: WebhookAction.EXTENDED,
    PaymentAction.REPLAYED: WebhookAction.REPLAYED,
}


def _parse_amount(raw: Optional[str]) -> Optional[int]:
    """Parse an amount in base units; zero means the sender did not price the payment."""

    if raw is None or raw.strip() == "":
        return None
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise InvalidWebhookPayloadError(f"Invalid payment amount {raw!r}") from exc
    if not value.is_finite() or value != value.to_integral_value() or value < 0:
        raise InvalidWebhookPayloadError(f"Invalid payment amount {raw!r}")
    amount = int(value)
    return amount if amount > 0 else None


__all__ = [
    "PAYMENT_EVENTS",
    "PayerResolver",
    "SubscriptionWebhookHandler",
    "SubscriptionWebhookPayload",
    "WebhookAction",
    "WebhookOutcome",
    "compute_webhook_signature",
    "verify_webhook_signature",
]
