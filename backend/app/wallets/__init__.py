"""Custodial wallet domain package."""

from .keys import EVM_NETWORKS, EvmKeypairGenerator, GeneratedKeypair, KeypairGenerator, default_generators
from .models import ProvisionedWallet, RefundWallet, UserWallet, WalletAddress
from .service import UnsupportedNetworkError, WalletCustodyService, WalletNotFoundError, WalletRepository

__all__ = [
    "EVM_NETWORKS",
    "EvmKeypairGenerator",
    "GeneratedKeypair",
    "KeypairGenerator",
    "default_generators",
    "ProvisionedWallet",
    "RefundWallet",
    "UserWallet",
    "WalletAddress",
    "UnsupportedNetworkError",
    "WalletCustodyService",
    "WalletNotFoundError",
    "WalletRepository",
]
