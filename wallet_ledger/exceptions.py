"""Wallet ledger exceptions."""


class WalletLedgerError(Exception):
    """Base class for wallet ledger errors."""

    retryable = False


class InvalidAmountError(WalletLedgerError):
    """Raised when an award, redemption or expiry amount is not a positive integer."""


class MerchantCoinNotFoundError(WalletLedgerError):
    """Raised when the wallet holds no balance for the requested merchant."""


class InsufficientBalanceError(WalletLedgerError):
    pass


class BelowMinimumRedemptionError(WalletLedgerError):
    pass


class IdempotencyConflictError(WalletLedgerError):
    """Raised when an idempotency key is reused for a different request."""


class ConcurrentModificationConflictError(WalletLedgerError):
    """Raised once optimistic retries are exhausted for a wallet mutation."""

    retryable = True


class StorageUnavailableError(WalletLedgerError):
    """Raised when storage did not answer within the configured timeout."""

    retryable = True


class JournalMismatchError(WalletLedgerError):
    """Raised when replaying a journal does not reproduce its recorded balances."""
