"""Domain models for custodial wallets."""
from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class UserWallet(BaseModel):
    """Billing wallet held on behalf of a user; at most one per user."""

    id: str
    user_id: str
    wallet_address: str
    encrypted_private_key: str = Field(repr=False)
    network: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class RefundWallet(BaseModel):
    """Refund payout wallet for a resource owner; at most one per network."""

    id: str
    resource_owner_id: str
    network: str
    wallet_address: str
    encrypted_private_key: str = Field(repr=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class WalletAddress(BaseModel):
    """Public view of a custodial wallet. Never carries key material."""

    address: str
    network: str
    created_at: datetime

    model_config = ConfigDict(frozen=True)


class ProvisionedWallet(BaseModel):
    """Result of a provisioning call; ``created`` is false when the wallet already existed."""

    address: str
    network: str
    created: bool

    model_config = ConfigDict(frozen=True)
