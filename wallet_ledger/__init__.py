"""
Merchant Coin Wallet Ledger

This module provides:
- One wallet per user holding merchant-specific coin balances
- Award, redeem and expire flows that never drive a balance negative
- Loyalty tiers derived from balance
- An append-only transaction journal with a bounded recent view
- Idempotent, optimistically-locked mutations
"""

from .models import (
    TransactionType,
    Tier,
    CoinConfig,
    CoinRates,
    MerchantCoinBalance,
    Transaction,
    Wallet,
)
from .service import WalletService
from .tiers import calculate_tier

__all__ = [
    "TransactionType",
    "Tier",
    "CoinConfig",
    "CoinRates",
    "MerchantCoinBalance",
    "Transaction",
    "Wallet",
    "WalletService",
    "calculate_tier",
]
