"""Custody of billing and refund wallets."""
from __future__ import annotations

import logging
import warnings
from typing import List, Mapping, Optional, Protocol, Sequence
from uuid import uuid4

from ..vault import KeyVault
from .keys import KeypairGenerator
from .models import ProvisionedWallet, RefundWallet, UserWallet, WalletAddress

logger = logging.getLogger("wallets")


class WalletNotFoundError(LookupError):
    """No custodial wallet exists for the requested owner."""


class UnsupportedNetworkError(ValueError):
    """No keypair generator is configured for the requested network."""


class WalletRepository(Protocol):
    """Persistence operations required by the custody service.

    ``insert_*`` returns ``None`` when the uniqueness constraint for the owner
    (and network) already holds a wallet.
    """

    def get_user_wallet(self, user_id: str) -> Optional[UserWallet]:
        ...

    def find_user_wallet_by_address(self, address: str) -> Optional[UserWallet]:
        ...

    def insert_user_wallet(self, wallet: UserWallet) -> Optional[UserWallet]:
        ...

    def get_refund_wallet(self, resource_owner_id: str, network: str) -> Optional[RefundWallet]:
        ...

    def list_refund_wallets(self, resource_owner_id: str) -> Sequence[RefundWallet]:
        ...

    def insert_refund_wallet(self, wallet: RefundWallet) -> Optional[RefundWallet]:
        ...

    def delete_refund_wallet(self, resource_owner_id: str, network: str) -> bool:
        ...


class WalletCustodyService:
    """Provisions custodial wallets and guards access to their private keys."""

    def __init__(
        self,
        repository: WalletRepository,
        vault: KeyVault,
        generators: Mapping[str, KeypairGenerator],
        *,
        default_network: str = "base",
    ) -> None:
        if default_network not in generators:
            raise UnsupportedNetworkError(f"No keypair generator for default network {default_network!r}")
        self._repository = repository
        self._vault = vault
        self._generators = dict(generators)
        self._default_network = default_network

    @property
    def supported_networks(self) -> List[str]:
        return sorted(self._generators)

    def provision_user_wallet(self, user_id: str, network: Optional[str] = None) -> ProvisionedWallet:
        """Create the user's billing wallet, or return the existing one."""

        existing = self._repository.get_user_wallet(user_id)
        if existing is not None:
            return ProvisionedWallet(address=existing.wallet_address, network=existing.network, created=False)

        network = network or self._default_network
        keypair = self._generator_for(network).generate()
        wallet = UserWallet(
            id=str(uuid4()),
            user_id=user_id,
            wallet_address=keypair.address,
            encrypted_private_key=self._vault.encrypt(keypair.private_key),
            network=network,
        )
        stored = self._repository.insert_user_wallet(wallet)
        if stored is None:
            winner = self._repository.get_user_wallet(user_id)
            if winner is None:
                raise RuntimeError(f"Failed to persist billing wallet for user {user_id}")
            return ProvisionedWallet(address=winner.wallet_address, network=winner.network, created=False)

        logger.info("Provisioned %s billing wallet %s for user %s", network, stored.wallet_address, user_id)
        return ProvisionedWallet(address=stored.wallet_address, network=stored.network, created=True)

    def get_user_wallet(self, user_id: str) -> Optional[WalletAddress]:
        wallet = self._repository.get_user_wallet(user_id)
        if wallet is None:
            return None
        return WalletAddress(address=wallet.wallet_address, network=wallet.network, created_at=wallet.created_at)

    def decrypt_user_private_key(self, user_id: str) -> str:
        """Return the user's private key for internal signing. Never expose it to clients."""

        wallet = self._repository.get_user_wallet(user_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet not found for user {user_id}")
        return self._vault.decrypt(wallet.encrypted_private_key)

    def resolve_payer(self, payer_address: str) -> Optional[str]:
        """Map a paying billing wallet address to its user, ignoring address case."""

        wallet = self._repository.find_user_wallet_by_address(payer_address)
        return wallet.user_id if wallet else None

    def provision_refund_wallet(self, resource_owner_id: str, network: str) -> ProvisionedWallet:
        existing = self._repository.get_refund_wallet(resource_owner_id, network)
        if existing is not None:
            return ProvisionedWallet(address=existing.wallet_address, network=network, created=False)

        keypair = self._generator_for(network).generate()
        wallet = RefundWallet(
            id=uuid4().hex,
            resource_owner_id=resource_owner_id,
            network=network,
            wallet_address=keypair.address,
            encrypted_private_key=self._vault.encrypt(keypair.private_key),
        )
        stored = self._repository.insert_refund_wallet(wallet)
        if stored is None:
            winner = self._repository.get_refund_wallet(resource_owner_id, network)
            if winner is None:
                raise RuntimeError(f"Failed to persist {network} refund wallet for {resource_owner_id}")
            return ProvisionedWallet(address=winner.wallet_address, network=network, created=False)

        logger.info(
            "Provisioned %s refund wallet %s for resource owner %s",
            network,
            stored.wallet_address,
            resource_owner_id,
        )
        return ProvisionedWallet(address=stored.wallet_address, network=network, created=True)

    def list_refund_wallets(self, resource_owner_id: str) -> List[WalletAddress]:
        wallets = sorted(self._repository.list_refund_wallets(resource_owner_id), key=lambda w: w.network)
        return [
            WalletAddress(address=wallet.wallet_address, network=wallet.network, created_at=wallet.created_at)
            for wallet in wallets
        ]

    def get_refund_wallets_by_facilitator(self, resource_owner_id: str) -> List[WalletAddress]:
        """Deprecated alias of :meth:`list_refund_wallets`."""

        warnings.warn(
            "get_refund_wallets_by_facilitator is deprecated; use list_refund_wallets",
            DeprecationWarning,
            stacklevel=2,
        )
        return self.list_refund_wallets(resource_owner_id)

    def decrypt_refund_private_key(self, resource_owner_id: str, network: str) -> Optional[str]:
        wallet = self._repository.get_refund_wallet(resource_owner_id, network)
        if wallet is None:
            return None
        return self._vault.decrypt(wallet.encrypted_private_key)

    def delete_refund_wallet(self, resource_owner_id: str, network: str) -> bool:
        deleted = self._repository.delete_refund_wallet(resource_owner_id, network)
        if deleted:
            logger.info("Deleted %s refund wallet for resource owner %s", network, resource_owner_id)
        return deleted

    def _generator_for(self, network: str) -> KeypairGenerator:
        try:
            return self._generators[network]
        except KeyError as exc:
            raise UnsupportedNetworkError(f"Unsupported wallet network {network!r}") from exc


__all__ = [
    "UnsupportedNetworkError",
    "WalletCustodyService",
    "WalletNotFoundError",
    "WalletRepository",
]
