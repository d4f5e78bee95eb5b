"""Application wiring for the key vault, entitlement engine and wallet custody."""
from __future__ import annotations

import logging
import os
from functools import lru_cache

from dotenv import load_dotenv

from ..database import configure_database, load_database_config
from ..subscriptions import EntitlementEngine, SubscriptionAuditEvent, SubscriptionEventLogger
from ..subscriptions.repository import PostgresSubscriptionRepository
from ..subscriptions.webhooks import SubscriptionWebhookHandler
from ..vault import KeyVault, load_vault_config
from ..wallets import WalletCustodyService, default_generators
from ..wallets.repository import PostgresWalletRepository

logger = logging.getLogger("custody")


class LoggingSubscriptionEventLogger(SubscriptionEventLogger):
    """Forwards subscription audit events to the application logger."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        logger.info(
            "Subscription event %s subscription=%s payer=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.payer_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def _load_environment() -> None:
    load_dotenv()
    configure_database(load_database_config())


@lru_cache(maxsize=1)
def get_key_vault() -> KeyVault:
    _load_environment()
    return KeyVault(load_vault_config())


@lru_cache(maxsize=1)
def get_entitlement_engine() -> EntitlementEngine:
    _load_environment()
    return EntitlementEngine(
        PostgresSubscriptionRepository(),
        event_logger=LoggingSubscriptionEventLogger(),
    )


@lru_cache(maxsize=1)
def get_wallet_custody_service() -> WalletCustodyService:
    _load_environment()
    return WalletCustodyService(
        PostgresWalletRepository(),
        get_key_vault(),
        default_generators(),
        default_network=os.getenv("BILLING_WALLET_NETWORK", "base"),
    )


@lru_cache(maxsize=1)
def get_subscription_webhook_handler() -> SubscriptionWebhookHandler:
    _load_environment()
    return SubscriptionWebhookHandler(
        get_entitlement_engine(),
        get_wallet_custody_service(),
        os.getenv("SUBSCRIPTION_WEBHOOK_SECRET", ""),
    )


def verify_startup_configuration() -> None:
    """Build the vault eagerly so a missing master secret stops the process at boot."""

    get_key_vault()
    logger.info("Key vault configured")


__all__ = [
    "LoggingSubscriptionEventLogger",
    "get_entitlement_engine",
    "get_key_vault",
    "get_subscription_webhook_handler",
    "get_wallet_custody_service",
    "verify_startup_configuration",
]
