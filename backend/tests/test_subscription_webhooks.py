from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from backend.app.subscriptions import (
    EntitlementEngine,
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    Subscription,
    SubscriptionTier,
)
from backend.app.subscriptions.webhooks import (
    SubscriptionWebhookHandler,
    WebhookAction,
    compute_webhook_signature,
    verify_webhook_signature,
)
from backend.app.vault import ConfigurationError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
SECRET = "whsec_test"
PAYER_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


class InMemorySubscriptionRepository:
    def __init__(self) -> None:
        self.subscriptions: Dict[str, Subscription] = {}
        self.payments: Dict[str, str] = {}

    def payer_exists(self, payer_id: str) -> bool:
        return payer_id == "user-1"

    def find_subscription_by_payment_reference(self, payment_reference: str) -> Optional[Subscription]:
        subscription_id = self.payments.get(payment_reference)
        return self.subscriptions.get(subscription_id) if subscription_id else None

    def find_latest_subscription(self, payer_id: str) -> Optional[Subscription]:
        rows = [row for row in self.subscriptions.values() if row.payer_id == payer_id]
        return max(rows, key=lambda row: row.expires_at) if rows else None

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    def insert_subscription(self, subscription: Subscription) -> Optional[Subscription]:
        if self.find_latest_subscription(subscription.payer_id) is not None:
            return None
        self.subscriptions[subscription.id] = subscription
        if subscription.payment_reference:
            self.payments[subscription.payment_reference] = subscription.id
        return subscription

    def update_subscription_expiry_tier_amount(
        self, subscription_id, *, now, additional_days, new_tier, delta_amount, payment_reference
    ):
        current = self.subscriptions[subscription_id]
        updated = current.model_copy(
            update={
                "expires_at": max(current.expires_at, now) + timedelta(days=additional_days),
                "tier": SubscriptionTier.highest(current.tier, new_tier),
                "amount_paid": current.amount_paid + delta_amount,
            }
        )
        self.subscriptions[subscription_id] = updated
        if payment_reference:
            self.payments[payment_reference] = subscription_id
        return updated

    def list_subscriptions(self, payer_id: str):
        return [row for row in self.subscriptions.values() if row.payer_id == payer_id]

    def list_subscriptions_expiring_between(self, start, end):
        return []


class FakePayerResolver:
    def __init__(self, wallets: Dict[str, str]) -> None:
        self._wallets = {address.lower(): user_id for address, user_id in wallets.items()}

    def resolve_payer(self, payer_address: str) -> Optional[str]:
        return self._wallets.get(payer_address.lower())


@pytest.fixture
def webhook_components():
    repository = InMemorySubscriptionRepository()
    engine = EntitlementEngine(repository, clock=lambda: NOW)
    handler = SubscriptionWebhookHandler(engine, FakePayerResolver({PAYER_ADDRESS: "user-1"}), SECRET)
    return repository, handler


def _body(event: str = "payment_link.payment", **overrides) -> bytes:
    payment = {
        "payerAddress": PAYER_ADDRESS,
        "transactionHash": "0xabc",
        "amount": "5000000",
    }
    payment.update(overrides.pop("payment", {}))
    payload = {"event": event, "payment": payment}
    payload.update(overrides)
    return json.dumps(payload).encode("utf-8")


def _deliver(handler: SubscriptionWebhookHandler, body: bytes):
    return handler.handle(body, compute_webhook_signature(body, SECRET))


def test_signature_round_trip():
    body = b'{"event":"product.payment"}'
    signature = compute_webhook_signature(body, SECRET)

    assert verify_webhook_signature(body, signature, SECRET)
    assert verify_webhook_signature(body, f"  {signature.upper()} ", SECRET)
    assert not verify_webhook_signature(body + b" ", signature, SECRET)
    assert not verify_webhook_signature(body, signature, "")
    assert not verify_webhook_signature(body, "", SECRET)


def test_payment_webhook_creates_subscription(webhook_components):
    repository, handler = webhook_components

    outcome = _deliver(handler, _body())

    assert outcome.action == WebhookAction.CREATED
    assert outcome.success
    assert outcome.payer_id == "user-1"
    assert outcome.subscription.tier == SubscriptionTier.BASIC
    assert outcome.subscription.amount_paid == 5_000_000
    assert outcome.subscription.expires_at == NOW + timedelta(days=30)
    assert repository.payments == {"0xabc": outcome.subscription.id}


def test_redelivered_webhook_is_replayed(webhook_components):
    _, handler = webhook_components
    first = _deliver(handler, _body())

    second = _deliver(handler, _body())

    assert second.action == WebhookAction.REPLAYED
    assert second.subscription == first.subscription


def test_new_transaction_extends_subscription(webhook_components):
    _, handler = webhook_components
    _deliver(handler, _body())

    outcome = _deliver(handler, _body(payment={"transactionHash": "0xdef"}))

    assert outcome.action == WebhookAction.EXTENDED
    assert outcome.subscription.expires_at == NOW + timedelta(days=60)
    assert outcome.subscription.amount_paid == 10_000_000


def test_tier_and_numeric_amount_come_from_payload(webhook_components):
    _, handler = webhook_components

    outcome = _deliver(
        handler,
        _body(event="product.payment", payment={"amount": 25_000_000}, metadata={"tier": "PRO"}),
    )

    assert outcome.subscription.tier == SubscriptionTier.PRO
    assert outcome.subscription.amount_paid == 25_000_000


def test_missing_amount_falls_back_to_catalog_price(webhook_components):
    _, handler = webhook_components

    outcome = _deliver(handler, _body(payment={"amount": None}, metadata={"tier": "pro"}))

    assert outcome.subscription.amount_paid == 25_000_000


def test_payer_address_lookup_ignores_case(webhook_components):
    _, handler = webhook_components

    outcome = _deliver(handler, _body(payment={"payerAddress": PAYER_ADDRESS.lower()}))

    assert outcome.payer_id == "user-1"


def test_invalid_signature_is_rejected(webhook_components):
    repository, handler = webhook_components

    with pytest.raises(InvalidWebhookSignatureError) as excinfo:
        handler.handle(_body(), "deadbeef")

    assert excinfo.value.to_http_exception().status_code == 401
    assert repository.subscriptions == {}


def test_missing_signature_is_rejected(webhook_components):
    _, handler = webhook_components

    with pytest.raises(InvalidWebhookSignatureError):
        handler.handle(_body(), None)


def test_non_payment_event_is_ignored(webhook_components):
    repository, handler = webhook_components

    outcome = _deliver(handler, _body(event="payment_link.created"))

    assert outcome.action == WebhookAction.IGNORED
    assert outcome.subscription is None
    assert repository.subscriptions == {}


@pytest.mark.parametrize("field", ["payerAddress", "transactionHash"])
def test_payment_without_required_fields_is_rejected(webhook_components, field):
    _, handler = webhook_components

    with pytest.raises(InvalidWebhookPayloadError) as excinfo:
        _deliver(handler, _body(payment={field: None}))

    assert excinfo.value.status_code == 400


def test_malformed_body_is_rejected(webhook_components):
    _, handler = webhook_components

    with pytest.raises(InvalidWebhookPayloadError):
        _deliver(handler, b"{not json")


def test_unknown_tier_is_rejected(webhook_components):
    _, handler = webhook_components

    with pytest.raises(InvalidWebhookPayloadError):
        _deliver(handler, _body(metadata={"tier": "platinum"}))


def test_unknown_payer_wallet_is_reported(webhook_components):
    repository, handler = webhook_components

    outcome = _deliver(handler, _body(payment={"payerAddress": "0x0000000000000000000000000000000000000001"}))

    assert outcome.action == WebhookAction.PAYER_NOT_FOUND
    assert not outcome.success
    assert repository.subscriptions == {}


def test_handler_requires_secret():
    engine = EntitlementEngine(InMemorySubscriptionRepository())

    with pytest.raises(ConfigurationError):
        SubscriptionWebhookHandler(engine, FakePayerResolver({}), "")


def test_integral_float_amount_is_accepted(webhook_components):
    _, handler = webhook_components

    outcome = _deliver(handler, _body(payment={"amount": 5000000.0}))

    assert outcome.subscription.amount_paid == 5_000_000


@pytest.mark.parametrize("amount", ["-5000000", -1, 1.5, "ten"])
def test_invalid_amount_is_rejected(webhook_components, amount):
    repository, handler = webhook_components

    with pytest.raises(InvalidWebhookPayloadError):
        _deliver(handler, _body(payment={"amount": amount}))

    assert repository.subscriptions == {}
