import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import Settings, get_settings
from .engine import (
    BalanceFailure,
    FailureReason,
    apply_transaction,
    calculate_total_value,
    validate_amount,
)
from .exceptions import (
    BelowMinimumRedemptionError,
    ConcurrentModificationConflictError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    MerchantCoinNotFoundError,
    StorageUnavailableError,
    WalletLedgerError,
)
from .journal import build_transaction, prepend_recent
from .models import (
    CoinConfig,
    CoinRates,
    MerchantCoinBalance,
    Tier,
    Transaction,
    TransactionHistoryResponse,
    TransactionType,
    Wallet,
    WalletStats,
)
from .storage import InMemoryStorage, StorageTimeoutError, VersionConflictError

logger = logging.getLogger(__name__)

FAILURE_ERRORS: dict[FailureReason, type[WalletLedgerError]] = {
    FailureReason.INVALID_AMOUNT: InvalidAmountError,
    FailureReason.INSUFFICIENT_BALANCE: InsufficientBalanceError,
    FailureReason.BELOW_MINIMUM_REDEMPTION: BelowMinimumRedemptionError,
}

# A mutation receives the current wallet and returns the updated coin plus
# the transaction to journal (None when nothing balance-affecting happened).
Mutation = Callable[[Wallet], tuple[MerchantCoinBalance, Optional[Transaction]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WalletService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(
            timeout_seconds=self.settings.ledger.storage_timeout_seconds
        )

    def get_or_create_wallet(self, user_id: str) -> Wallet:
        record = self.storage.load_wallet(user_id)
        if record is None:
            now = _now()
            wallet = Wallet(user_id=user_id, created_at=now, updated_at=now)
            record = self._storage_call(self.storage.insert_wallet, wallet.model_dump())
        return Wallet.model_validate(record)

    def add_merchant_coin(
        self,
        user_id: str,
        merchant_id: str,
        config: CoinConfig,
        initial_balance: int = 0,
        idempotency_key: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Register a merchant coin in the wallet, or refresh an existing one.

        Display metadata and rates are copied from ``config``. A positive
        ``initial_balance`` is credited and journaled as an ``awarded``
        transaction, which is returned; otherwise nothing is journaled and
        the result is None.
        """
        if initial_balance:
            self._raise_if_invalid(initial_balance)

        def mutate(wallet: Wallet) -> tuple[MerchantCoinBalance, Optional[Transaction]]:
            coin = self._snapshot_config(wallet.merchant_coins.get(merchant_id), merchant_id, config)
            if not initial_balance:
                return coin, None
            outcome = apply_transaction(coin, TransactionType.AWARDED, initial_balance)
            if isinstance(outcome, BalanceFailure):
                raise FAILURE_ERRORS[outcome.reason](outcome.message)
            transaction = build_transaction(
                outcome,
                description=f"Initial {config.coin_name} balance",
                timestamp=_now(),
                idempotency_key=idempotency_key,
            )
            return outcome.coin, transaction

        fingerprint = (TransactionType.AWARDED, merchant_id, initial_balance)
        return self._run_mutation(user_id, "add_merchant_coin", idempotency_key, fingerprint, mutate)

    def award_coins(
        self,
        user_id: str,
        merchant_id: str,
        amount: int,
        description: str,
        metadata: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
        rates: Optional[CoinRates] = None,
    ) -> Transaction:
        return self._apply_coin_mutation(
            user_id, merchant_id, TransactionType.EARNED, amount, description,
            metadata=metadata, idempotency_key=idempotency_key, rates=rates,
        )

    def redeem_coins(
        self,
        user_id: str,
        merchant_id: str,
        amount: int,
        description: str,
        idempotency_key: Optional[str] = None,
        rates: Optional[CoinRates] = None,
    ) -> Transaction:
        return self._apply_coin_mutation(
            user_id, merchant_id, TransactionType.REDEEMED, amount, description,
            idempotency_key=idempotency_key, rates=rates,
        )

    def expire_coins(
        self,
        user_id: str,
        merchant_id: str,
        amount: int,
        description: str = "Coins expired",
        idempotency_key: Optional[str] = None,
    ) -> Transaction:
        return self._apply_coin_mutation(
            user_id, merchant_id, TransactionType.EXPIRED, amount, description,
            idempotency_key=idempotency_key,
        )

    def get_coin_balance(self, user_id: str, merchant_id: str) -> int:
        record = self.storage.load_wallet(user_id)
        if record is None:
            return 0
        wallet = Wallet.model_validate(record)
        coin = wallet.merchant_coins.get(merchant_id)
        return coin.balance if coin else 0

    def get_transactions(self, user_id: str, limit: Optional[int] = None) -> list[Transaction]:
        limit = self.settings.ledger.default_page_size if limit is None else limit
        if limit < 0:
            raise ValueError("limit must not be negative")
        return [Transaction(**tx) for tx in self.storage.list_transactions(user_id, limit)]

    def get_transaction_history(
        self, user_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> TransactionHistoryResponse:
        limit = self.settings.ledger.default_page_size if limit is None else limit
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must not be negative")
        page = [Transaction(**tx) for tx in self.storage.list_transactions(user_id, limit, offset)]
        return TransactionHistoryResponse(
            user_id=user_id,
            transactions=page,
            total_count=self.storage.count_transactions(user_id),
            limit=limit,
            offset=offset,
        )

    def get_wallet_stats(self, user_id: str) -> WalletStats:
        wallet = self.get_or_create_wallet(user_id)
        history = [Transaction(**tx) for tx in self.storage.list_transactions(user_id)]
        return WalletStats(
            user_id=user_id,
            total_coins=sum(coin.balance for coin in wallet.merchant_coins.values()),
            total_value=wallet.total_value,
            total_merchants=len(wallet.merchant_coins),
            total_earned=wallet.total_coins_earned,
            total_redeemed=wallet.total_coins_redeemed,
            total_expired=sum(tx.amount for tx in history if tx.type == TransactionType.EXPIRED),
            recent_transactions=wallet.transactions[:10],
        )

    def _apply_coin_mutation(
        self,
        user_id: str,
        merchant_id: str,
        transaction_type: TransactionType,
        amount: int,
        description: str,
        metadata: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
        rates: Optional[CoinRates] = None,
    ) -> Transaction:
        self._raise_if_invalid(amount)

        def mutate(wallet: Wallet) -> tuple[MerchantCoinBalance, Optional[Transaction]]:
            coin = wallet.merchant_coins.get(merchant_id)
            if coin is None:
                raise MerchantCoinNotFoundError(f"Merchant coin {merchant_id} not found in wallet {user_id}")
            outcome = apply_transaction(coin, transaction_type, amount, rates)
            if isinstance(outcome, BalanceFailure):
                raise FAILURE_ERRORS[outcome.reason](outcome.message)
            transaction = build_transaction(
                outcome,
                description=description,
                timestamp=_now(),
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
            return outcome.coin, transaction

        fingerprint = (transaction_type, merchant_id, amount)
        return self._run_mutation(user_id, transaction_type.value, idempotency_key, fingerprint, mutate)

    def _run_mutation(
        self,
        user_id: str,
        operation: str,
        idempotency_key: Optional[str],
        fingerprint: tuple,
        mutate: Mutation,
    ) -> Optional[Transaction]:
        attempts = self.settings.ledger.max_commit_retries
        for attempt in range(1, attempts + 1):
            # Snapshot first so a key committed after the lookup fails the version check.
            wallet = self.get_or_create_wallet(user_id)
            if idempotency_key:
                previous = self._find_previous(user_id, idempotency_key, fingerprint)
                if previous:
                    return previous

            coin, transaction = mutate(wallet)
            updated = self._with_derived_fields(wallet, coin, transaction)

            try:
                self._storage_call(
                    self.storage.commit_wallet,
                    updated.model_dump(),
                    wallet.version,
                    [transaction.model_dump()] if transaction else [],
                )
            except VersionConflictError:
                logger.warning(
                    "Wallet %s changed during %s (attempt %d/%d), retrying",
                    user_id, operation, attempt, attempts,
                )
                continue

            if transaction:
                logger.info(
                    "Committed %s of %d %s for %s, balance now %d",
                    transaction.type.value, transaction.amount, coin.merchant_id,
                    user_id, transaction.balance_after,
                )
            return transaction

        raise ConcurrentModificationConflictError(
            f"Wallet {user_id} kept changing during {operation}; gave up after {attempts} attempts"
        )

    def _find_previous(self, user_id: str, idempotency_key: str, fingerprint: tuple) -> Optional[Transaction]:
        record = self.storage.find_by_idempotency_key(user_id, idempotency_key)
        if record is None:
            return None
        previous = Transaction(**record)
        if (previous.type, previous.merchant_id, previous.amount) != fingerprint:
            raise IdempotencyConflictError(
                f"Idempotency key {idempotency_key} was already used for a different request"
            )
        logger.debug("Idempotent replay of %s for %s", idempotency_key, user_id)
        return previous

    def _with_derived_fields(
        self, wallet: Wallet, coin: MerchantCoinBalance, transaction: Optional[Transaction]
    ) -> Wallet:
        coins = {**wallet.merchant_coins, coin.merchant_id: coin}
        earned = wallet.total_coins_earned
        redeemed = wallet.total_coins_redeemed
        recent = wallet.transactions
        if transaction:
            if transaction.type.is_credit:
                earned += transaction.amount
            elif transaction.type == TransactionType.REDEEMED:
                redeemed += transaction.amount
            recent = prepend_recent(recent, transaction, self.settings.ledger.recent_transactions_limit)
        return wallet.model_copy(update={
            "merchant_coins": coins,
            "transactions": recent,
            "total_value": calculate_total_value(coins.values()),
            "total_coins_earned": earned,
            "total_coins_redeemed": redeemed,
            "updated_at": _now(),
        })

    @staticmethod
    def _snapshot_config(
        existing: Optional[MerchantCoinBalance], merchant_id: str, config: CoinConfig
    ) -> MerchantCoinBalance:
        snapshot = {
            "merchant_name": config.merchant_name,
            "coin_name": config.coin_name,
            "coin_symbol": config.coin_symbol,
            "brand_color": config.brand_color,
            "logo_url": config.logo_url,
            "earn_rate": config.earn_rate,
            "redemption_rate": config.redemption_rate,
            "minimum_redemption": config.minimum_redemption,
        }
        if existing:
            return existing.model_copy(update=snapshot)
        return MerchantCoinBalance(
            merchant_id=merchant_id,
            balance=0,
            tier=Tier.BRONZE,
            added_at=_now(),
            **snapshot,
        )

    @staticmethod
    def _raise_if_invalid(amount: int) -> None:
        failure = validate_amount(amount)
        if failure:
            raise InvalidAmountError(failure.message)

    def _storage_call(self, func, *args):
        try:
            return func(*args)
        except StorageTimeoutError as e:
            logger.warning("Storage timed out: %s", e)
            raise StorageUnavailableError(str(e)) from e
