"""Wallet registry: standalone wallets, seed groups and HD derivation."""

from .models import (
    DerivedWallet,
    LoadReport,
    Portfolio,
    PortfolioEntry,
    SeedGroup,
    SeedGroupRecord,
    SeedGroupView,
    StandaloneRecord,
    StandaloneWallet,
    Wallet,
    WalletListing,
    WalletOptions,
    WalletView,
)
from .registry import WalletRegistry, seed_id, wallet_id

__all__ = [
    "WalletRegistry",
    "WalletOptions",
    "StandaloneWallet",
    "DerivedWallet",
    "Wallet",
    "SeedGroup",
    "WalletView",
    "SeedGroupView",
    "WalletListing",
    "LoadReport",
    "StandaloneRecord",
    "SeedGroupRecord",
    "Portfolio",
    "PortfolioEntry",
    "wallet_id",
    "seed_id",
]
