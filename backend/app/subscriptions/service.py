"""Entitlement engine: subscription creation, payment recording and extension."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, Sequence
from uuid import uuid4

from .catalog import period_for, price_for
from .exceptions import DuplicatePaymentError, NotFoundError, UnknownPayerError
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

logger = logging.getLogger("subscriptions")


class SubscriptionRepository(Protocol):
    """Persistence operations required by the entitlement engine.

    Implementations must make each mutation all-or-nothing and must enforce
    uniqueness of payment references across every applied payment, raising
    :class:`DuplicatePaymentError` when that constraint fires.

    ``insert_subscription`` is serialized per payer and returns ``None`` when
    the payer already holds a subscription. The update computes the new expiry
    from the stored row, as ``max(expires_at, now) + additional_days``, in the
    same atomic step that writes it.
    """

    def payer_exists(self, payer_id: str) -> bool:
        ...

    def find_subscription_by_payment_reference(self, payment_reference: str) -> Optional[Subscription]:
        ...

    def find_latest_subscription(self, payer_id: str) -> Optional[Subscription]:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def insert_subscription(self, subscription: Subscription) -> Optional[Subscription]:
        ...

    def update_subscription_expiry_tier_amount(
        self,
        subscription_id: str,
        *,
        now: datetime,
        additional_days: int,
        new_tier: SubscriptionTier,
        delta_amount: int,
        payment_reference: Optional[str],
    ) -> Optional[Subscription]:
        ...

    def list_subscriptions(self, payer_id: str) -> Sequence[Subscription]:
        ...

    def list_subscriptions_expiring_between(self, start: datetime, end: datetime) -> Sequence[Subscription]:
        ...


class SubscriptionEventLogger(Protocol):
    """Captures structured subscription audit events."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        ...


class EntitlementEngine:
    """Owns the subscription lifecycle for payer identities.

    A payer has one logical subscription row that is extended in place. When
    historical rows exist, the one with the latest ``expires_at`` is
    authoritative.
    """

    def __init__(
        self,
        repository: SubscriptionRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        event_logger: Optional[SubscriptionEventLogger] = None,
        default_duration_days: Optional[int] = None,
    ) -> None:
        if default_duration_days is not None and default_duration_days < 1:
            raise ValueError("default_duration_days must be >= 1")
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._event_logger = event_logger
        self._default_duration_days = default_duration_days

    def duration_for(self, tier: SubscriptionTier) -> int:
        """Period granted by a payment that does not name its own duration."""

        if self._default_duration_days is not None:
            return self._default_duration_days
        return period_for(tier)

    def record_payment(
        self,
        payer_id: str,
        tier: SubscriptionTier,
        payment_reference: Optional[str],
        amount: Optional[int] = None,
        duration_days: Optional[int] = None,
    ) -> Subscription:
        """Create or extend the payer's subscription for a confirmed payment.

        Replaying an already applied ``payment_reference`` returns the record it
        was applied to without changing anything.
        """

        return self.apply_payment(
            payer_id,
            tier,
            payment_reference,
            amount=amount,
            duration_days=duration_days,
        ).subscription

    def apply_payment(
        self,
        payer_id: str,
        tier: SubscriptionTier,
        payment_reference: Optional[str],
        *,
        amount: Optional[int] = None,
        duration_days: Optional[int] = None,
    ) -> PaymentApplication:
        tier = SubscriptionTier(tier)
        reference = _normalize_reference(payment_reference)
        days = self.duration_for(tier) if duration_days is None else duration_days
        paid = price_for(tier) if amount is None else amount
        _validate_payment(days, paid)

        replay = self._find_replay(reference)
        if replay is not None:
            return replay

        if not self._repository.payer_exists(payer_id):
            raise UnknownPayerError(payer_id)

        current = self._repository.find_latest_subscription(payer_id)
        try:
            if current is None:
                subscription = self._create(payer_id, tier, reference, paid, days)
                if subscription is not None:
                    return PaymentApplication(action=PaymentAction.CREATED, subscription=subscription)
                # A concurrent payment created the row first; stack on top of it.
                current = self._repository.find_latest_subscription(payer_id)
                if current is None:
                    raise RuntimeError(f"Subscription for payer {payer_id} vanished during creation")
            subscription = self._extend(current, days, tier, reference, paid)
            return PaymentApplication(action=PaymentAction.EXTENDED, subscription=subscription)
        except DuplicatePaymentError:
            replay = self._find_replay(reference)
            if replay is not None:
                return replay
            logger.error("Payment reference %s rejected by storage but not resolvable", reference)
            raise

    def extend(
        self,
        subscription_id: str,
        additional_days: int,
        tier: SubscriptionTier,
        payment_reference: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> Subscription:
        """Extend a subscription, stacking on remaining time if still active."""

        tier = SubscriptionTier(tier)
        reference = _normalize_reference(payment_reference)
        paid = price_for(tier) if amount is None else amount
        _validate_payment(additional_days, paid)

        replay = self._find_replay(reference)
        if replay is not None:
            return replay.subscription

        current = self._repository.get_subscription(subscription_id)
        if current is None:
            raise NotFoundError(f"Subscription {subscription_id} not found", subscription_id=subscription_id)

        try:
            return self._extend(current, additional_days, tier, reference, paid)
        except DuplicatePaymentError:
            replay = self._find_replay(reference)
            if replay is not None:
                return replay.subscription
            raise

    def get_entitlement(self, payer_id: str, now: datetime) -> Optional[Entitlement]:
        """Return the payer's entitlement at ``now``, or ``None`` if not entitled."""

        now = _as_utc(now)
        subscription = self._repository.find_latest_subscription(payer_id)
        if subscription is None or not subscription.is_active(now):
            return None
        return Entitlement(
            tier=subscription.tier,
            expires_at=subscription.expires_at,
            subscription_id=subscription.id,
        )

    def describe_state(self, payer_id: str, now: datetime) -> EntitlementState:
        now = _as_utc(now)
        subscription = self._repository.find_latest_subscription(payer_id)
        if subscription is None:
            return EntitlementState.NO_SUBSCRIPTION
        if not subscription.is_active(now):
            return EntitlementState.EXPIRED
        if subscription.tier == SubscriptionTier.PRO:
            return EntitlementState.ACTIVE_PRO
        return EntitlementState.ACTIVE_BASIC

    def list_history(self, payer_id: str) -> Sequence[Subscription]:
        """Return every subscription row for the payer, newest first."""

        return sorted(
            self._repository.list_subscriptions(payer_id),
            key=lambda subscription: subscription.created_at,
            reverse=True,
        )

    def list_expiring_within(self, days: int, now: datetime) -> Sequence[Subscription]:
        """Return subscriptions expiring in ``(now, now + days]`` for renewal reminders."""

        if days < 0:
            raise ValueError("days must be >= 0")
        now = _as_utc(now)
        return list(self._repository.list_subscriptions_expiring_between(now, now + timedelta(days=days)))

    def _find_replay(self, reference: Optional[str]) -> Optional[PaymentApplication]:
        if not reference:
            return None
        existing = self._repository.find_subscription_by_payment_reference(reference)
        if existing is None:
            return None
        logger.info(
            "Payment %s already applied to subscription %s; returning existing record",
            reference,
            existing.id,
        )
        self._log_event(
            SubscriptionAuditEventType.PAYMENT_REPLAYED,
            existing,
            {"payment_reference": reference},
        )
        return PaymentApplication(action=PaymentAction.REPLAYED, subscription=existing)

    def _create(
        self,
        payer_id: str,
        tier: SubscriptionTier,
        reference: Optional[str],
        amount: int,
        days: int,
    ) -> Optional[Subscription]:
        now = self._clock()
        subscription = Subscription(
            id=str(uuid4()),
            payer_id=payer_id,
            tier=tier,
            amount_paid=amount,
            payment_reference=reference,
            started_at=now,
            expires_at=now + timedelta(days=days),
            created_at=now,
        )
        stored = self._repository.insert_subscription(subscription)
        if stored is None:
            return None
        logger.info(
            "Created %s subscription %s for payer %s, expires %s",
            stored.tier.value,
            stored.id,
            payer_id,
            stored.expires_at.isoformat(),
        )
        self._log_event(
            SubscriptionAuditEventType.SUBSCRIPTION_CREATED,
            stored,
            _event_metadata(reference, amount, days),
        )
        return stored

    def _extend(
        self,
        current: Subscription,
        days: int,
        tier: SubscriptionTier,
        reference: Optional[str],
        amount: int,
    ) -> Subscription:
        new_tier = SubscriptionTier.highest(current.tier, tier)

        updated = self._repository.update_subscription_expiry_tier_amount(
            current.id,
            now=self._clock(),
            additional_days=days,
            new_tier=new_tier,
            delta_amount=amount,
            payment_reference=reference,
        )
        if updated is None:
            raise NotFoundError(f"Subscription {current.id} not found", subscription_id=current.id)

        logger.info(
            "Extended subscription %s for payer %s to %s (%s)",
            updated.id,
            updated.payer_id,
            updated.expires_at.isoformat(),
            updated.tier.value,
        )
        self._log_event(
            SubscriptionAuditEventType.SUBSCRIPTION_EXTENDED,
            updated,
            _event_metadata(reference, amount, days),
        )
        return updated

    def _log_event(
        self,
        event_type: SubscriptionAuditEventType,
        subscription: Subscription,
        metadata: dict,
    ) -> None:
        if self._event_logger is None:
            return
        self._event_logger.log(
            SubscriptionAuditEvent(
                event_type=event_type,
                subscription_id=subscription.id,
                payer_id=subscription.payer_id,
                metadata=metadata,
                occurred_at=self._clock(),
            )
        )


def _as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC; stored expiries are always timezone-aware."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _normalize_reference(payment_reference: Optional[str]) -> Optional[str]:
    if payment_reference is None:
        return None
    return payment_reference.strip() or None


def _validate_payment(days: int, amount: int) -> None:
    if days < 1:
        raise ValueError("duration must be >= 1 day")
    if amount < 0:
        raise ValueError("amount must be >= 0")


def _event_metadata(reference: Optional[str], amount: int, days: int) -> dict:
    metadata = {"amount": str(amount), "days": str(days)}
    if reference:
        metadata["payment_reference"] = reference
    return metadata


__all__ = [
    "EntitlementEngine",
    "SubscriptionEventLogger",
    "SubscriptionRepository",
]
