"""Custodial wallet registry."""

from kmsgate.wallets.registry import Wallet, WalletRegistry

__all__ = ["Wallet", "WalletRegistry"]
