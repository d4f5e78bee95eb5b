"""Unit tests for custodial wallet provisioning."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.vault import KeyVault, VaultConfig
from backend.app.wallets import (
    EVM_NETWORKS,
    EvmKeypairGenerator,
    GeneratedKeypair,
    RefundWallet,
    UnsupportedNetworkError,
    UserWallet,
    WalletCustodyService,
    WalletNotFoundError,
    default_generators,
)
from backend.app.wallets.service import WalletRepository


class InMemoryWalletRepository(WalletRepository):
    def __init__(self) -> None:
        self.user_wallets: Dict[str, UserWallet] = {}
        self.refund_wallets: Dict[Tuple[str, str], RefundWallet] = {}

    def get_user_wallet(self, user_id: str) -> Optional[UserWallet]:
        return self.user_wallets.get(user_id)

    def find_user_wallet_by_address(self, address: str) -> Optional[UserWallet]:
        for wallet in self.user_wallets.values():
            if wallet.wallet_address.lower() == address.lower():
                return wallet
        return None

    def insert_user_wallet(self, wallet: UserWallet) -> Optional[UserWallet]:
        if wallet.user_id in self.user_wallets:
            return None
        self.user_wallets[wallet.user_id] = wallet
        return wallet

    def get_refund_wallet(self, resource_owner_id: str, network: str) -> Optional[RefundWallet]:
        return self.refund_wallets.get((resource_owner_id, network))

    def list_refund_wallets(self, resource_owner_id: str) -> Sequence[RefundWallet]:
        return [wallet for (owner, _), wallet in self.refund_wallets.items() if owner == resource_owner_id]

    def insert_refund_wallet(self, wallet: RefundWallet) -> Optional[RefundWallet]:
        key = (wallet.resource_owner_id, wallet.network)
        if key in self.refund_wallets:
            return None
        self.refund_wallets[key] = wallet
        return wallet

    def delete_refund_wallet(self, resource_owner_id: str, network: str) -> bool:
        return self.refund_wallets.pop((resource_owner_id, network), None) is not None


class RacingWalletRepository(InMemoryWalletRepository):
    """Lets a concurrent provisioning call win between the read and the insert."""

    def insert_user_wallet(self, wallet: UserWallet) -> Optional[UserWallet]:
        winner = wallet.model_copy(update={"id": "winner", "wallet_address": "0xWINNER"})
        self.user_wallets[wallet.user_id] = winner
        return None


class FakeKeypairGenerator:
    def __init__(self, prefix: str = "0xA") -> None:
        self.prefix = prefix
        self.generated: List[GeneratedKeypair] = []

    def generate(self) -> GeneratedKeypair:
        index = len(self.generated)
        keypair = GeneratedKeypair(address=f"{self.prefix}{index:039x}", private_key=f"private-key-{index}")
        self.generated.append(keypair)
        return keypair


@pytest.fixture(scope="module")
def vault() -> KeyVault:
    return KeyVault(VaultConfig(master_secret="wallet-test-secret"))


@pytest.fixture
def custody_components(vault):
    repository = InMemoryWalletRepository()
    evm = FakeKeypairGenerator()
    solana = FakeKeypairGenerator(prefix="So1")
    service = WalletCustodyService(
        repository,
        vault,
        {"base": evm, "ethereum": evm, "solana": solana},
        default_network="base",
    )
    return repository, evm, service


def test_provision_user_wallet_encrypts_private_key(custody_components):
    repository, evm, service = custody_components

    result = service.provision_user_wallet("user-1")

    stored = repository.user_wallets["user-1"]
    assert result.created
    assert result.network == "base"
    assert result.address == evm.generated[0].address == stored.wallet_address
    assert stored.encrypted_private_key != "private-key-0"
    assert "private-key-0" not in repr(stored)
    assert service.decrypt_user_private_key("user-1") == "private-key-0"


def test_provision_user_wallet_is_idempotent(custody_components):
    _, evm, service = custody_components
    first = service.provision_user_wallet("user-1", "ethereum")

    second = service.provision_user_wallet("user-1", "base")

    assert not second.created
    assert second.address == first.address
    assert second.network == "ethereum"
    assert len(evm.generated) == 1


def test_provision_user_wallet_returns_concurrent_winner(vault):
    repository = RacingWalletRepository()
    service = WalletCustodyService(repository, vault, {"base": FakeKeypairGenerator()})

    result = service.provision_user_wallet("user-1")

    assert not result.created
    assert result.address == "0xWINNER"


def test_unsupported_network_is_rejected(custody_components):
    repository, _, service = custody_components

    with pytest.raises(UnsupportedNetworkError):
        service.provision_user_wallet("user-1", "dogecoin")

    assert repository.user_wallets == {}


def test_unknown_default_network_is_rejected(vault):
    with pytest.raises(UnsupportedNetworkError):
        WalletCustodyService(InMemoryWalletRepository(), vault, {"base": FakeKeypairGenerator()}, default_network="polygon")


def test_get_user_wallet_exposes_public_view_only(custody_components):
    _, _, service = custody_components
    service.provision_user_wallet("user-1")

    view = service.get_user_wallet("user-1")

    assert view is not None
    assert "encrypted_private_key" not in view.model_dump()
    assert service.get_user_wallet("user-2") is None


def test_decrypt_missing_user_wallet_raises(custody_components):
    _, _, service = custody_components

    with pytest.raises(WalletNotFoundError):
        service.decrypt_user_private_key("nobody")


def test_resolve_payer_ignores_address_case(custody_components):
    _, _, service = custody_components
    address = service.provision_user_wallet("user-1").address

    assert service.resolve_payer(address.upper().replace("0X", "0x")) == "user-1"
    assert service.resolve_payer("0xdoesnotexist") is None


def test_refund_wallets_are_per_network(custody_components):
    repository, _, service = custody_components

    base = service.provision_refund_wallet("owner-1", "base")
    solana = service.provision_refund_wallet("owner-1", "solana")
    again = service.provision_refund_wallet("owner-1", "base")

    assert base.created and solana.created
    assert not again.created
    assert again.address == base.address
    assert solana.address.startswith("So1")
    assert len(repository.refund_wallets) == 2
    assert [wallet.network for wallet in service.list_refund_wallets("owner-1")] == ["base", "solana"]
    assert service.decrypt_refund_private_key("owner-1", "solana") == "private-key-0"
    assert service.decrypt_refund_private_key("owner-1", "ethereum") is None


def test_deprecated_refund_listing_warns(custody_components):
    _, _, service = custody_components
    service.provision_refund_wallet("owner-1", "base")

    with pytest.warns(DeprecationWarning):
        wallets = service.get_refund_wallets_by_facilitator("owner-1")

    assert wallets == service.list_refund_wallets("owner-1")


def test_delete_refund_wallet(custody_components):
    _, _, service = custody_components
    service.provision_refund_wallet("owner-1", "base")

    assert service.delete_refund_wallet("owner-1", "base")
    assert not service.delete_refund_wallet("owner-1", "base")
    assert service.list_refund_wallets("owner-1") == []


def test_supported_networks_are_sorted(custody_components):
    _, _, service = custody_components

    assert service.supported_networks == ["base", "ethereum", "solana"]


def test_evm_generator_derives_checksummed_address():
    generator = EvmKeypairGenerator()

    keypair = generator.generate()

    assert keypair.address.startswith("0x") and len(keypair.address) == 42
    assert keypair.private_key.startswith("0x") and len(keypair.private_key) == 66
    assert EvmKeypairGenerator.address_for(keypair.private_key) == keypair.address
    assert keypair.private_key not in repr(keypair)


def test_evm_address_for_known_key():
    private_key = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

    assert EvmKeypairGenerator.address_for(private_key) == "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


def test_default_generators_cover_evm_networks():
    generators = default_generators()

    assert set(generators) == set(EVM_NETWORKS)
