"""
Balance engine: validates a single coin mutation and computes the new balance.

Pure functions only. Validation failures come back as ``BalanceFailure``
values so callers decide how to report them; nothing here touches storage.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional, Union

from .models import CoinRates, MerchantCoinBalance, Tier, TransactionType
from .tiers import calculate_tier


CENTS = Decimal("0.01")


class FailureReason(str, Enum):
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BELOW_MINIMUM_REDEMPTION = "below_minimum_redemption"


@dataclass(frozen=True)
class BalanceFailure:
    reason: FailureReason
    message: str


@dataclass(frozen=True)
class BalanceChange:
    coin: MerchantCoinBalance
    transaction_type: TransactionType
    amount: int
    balance_before: int
    tier_before: Tier

    @property
    def balance_after(self) -> int:
        return self.coin.balance

    @property
    def tier_changed(self) -> bool:
        return self.coin.tier != self.tier_before


BalanceOutcome = Union[BalanceChange, BalanceFailure]


def validate_amount(amount: int) -> Optional[BalanceFailure]:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return BalanceFailure(
            FailureReason.INVALID_AMOUNT,
            f"Amount must be a positive whole number of coins, got {amount!r}",
        )
    return None


def with_rates(coin: MerchantCoinBalance, rates: Optional[CoinRates]) -> MerchantCoinBalance:
    """Return the coin with transaction-time rates applied, if any were supplied."""
    if rates is None:
        return coin
    return coin.model_copy(update={
        "earn_rate": rates.earn_rate,
        "redemption_rate": rates.redemption_rate,
        "minimum_redemption": rates.minimum_redemption,
    })


def apply_transaction(
    coin: MerchantCoinBalance,
    transaction_type: TransactionType,
    amount: int,
    rates: Optional[CoinRates] = None,
) -> BalanceOutcome:
    failure = validate_amount(amount)
    if failure:
        return failure

    coin = with_rates(coin, rates)

    if transaction_type.is_credit:
        new_balance = coin.balance + amount
    else:
        if amount > coin.balance:
            return BalanceFailure(
                FailureReason.INSUFFICIENT_BALANCE,
                f"Insufficient {coin.coin_name} balance: requested {amount}, available {coin.balance}",
            )
        if transaction_type == TransactionType.REDEEMED and amount < coin.minimum_redemption:
            return BalanceFailure(
                FailureReason.BELOW_MINIMUM_REDEMPTION,
                f"Minimum redemption is {coin.minimum_redemption} coins",
            )
        new_balance = coin.balance - amount

    updated = coin.model_copy(update={
        "balance": new_balance,
        "tier": calculate_tier(new_balance),
    })
    return BalanceChange(
        coin=updated,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=coin.balance,
        tier_before=coin.tier,
    )


def calculate_total_value(coins: Iterable[MerchantCoinBalance]) -> Decimal:
    total = sum(
        (Decimal(coin.balance) / coin.redemption_rate for coin in coins),
        Decimal("0"),
    )
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)
