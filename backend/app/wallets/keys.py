"""Keypair generation for custodial wallets."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol

from eth_account import Account

EVM_NETWORKS = ("base", "base-sepolia", "ethereum", "arbitrum")


@dataclass(frozen=True)
class GeneratedKeypair:
    address: str
    private_key: str = field(repr=False)


class KeypairGenerator(Protocol):
    """Creates a fresh keypair for one network family."""

    def generate(self) -> GeneratedKeypair:
        ...


class EvmKeypairGenerator:
    """Generates secp256k1 accounts with checksummed addresses."""

    def generate(self) -> GeneratedKeypair:
        account = Account.create()
        return GeneratedKeypair(address=account.address, private_key="0x" + bytes(account.key).hex())

    @staticmethod
    def address_for(private_key: str) -> str:
        return Account.from_key(private_key).address


def default_generators() -> Dict[str, KeypairGenerator]:
    """Return the generators available without extra chain SDKs."""

    evm = EvmKeypairGenerator()
    return {network: evm for network in EVM_NETWORKS}
