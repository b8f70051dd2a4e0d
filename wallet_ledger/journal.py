from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from uuid import uuid4

from .engine import BalanceChange
from .exceptions import JournalMismatchError
from .models import Transaction, TransactionType


def new_transaction_id() -> str:
    return f"tx_{uuid4().hex}"


def build_transaction(
    change: BalanceChange,
    *,
    description: str,
    timestamp: datetime,
    metadata: Optional[dict] = None,
    idempotency_key: Optional[str] = None,
) -> Transaction:
    return Transaction(
        id=new_transaction_id(),
        type=change.transaction_type,
        merchant_id=change.coin.merchant_id,
        merchant_name=change.coin.merchant_name,
        amount=change.amount,
        balance_after=change.balance_after,
        description=description,
        timestamp=timestamp,
        idempotency_key=idempotency_key,
        metadata=metadata,
    )


def prepend_recent(recent: list[Transaction], transaction: Transaction, limit: int) -> list[Transaction]:
    """Newest-first recent view, truncated to ``limit`` entries."""
    return [transaction, *recent][:limit]


@dataclass
class ReplayState:
    balances: dict[str, int] = field(default_factory=dict)
    total_earned: int = 0
    total_redeemed: int = 0
    total_expired: int = 0


def replay(transactions: Iterable[Transaction]) -> ReplayState:
    """
    Rebuild balances and counters from a newest-first journal.

    Every entry is checked against its own ``balance_after`` snapshot so a
    gap or reordering in the journal surfaces as a JournalMismatchError.
    """
    state = ReplayState()
    for tx in reversed(list(transactions)):
        balance = state.balances.get(tx.merchant_id, 0) + tx.signed_amount
        if balance != tx.balance_after:
            raise JournalMismatchError(
                f"Journal mismatch at {tx.id}: replayed {balance}, recorded {tx.balance_after}"
            )
        state.balances[tx.merchant_id] = balance

        if tx.type.is_credit:
            state.total_earned += tx.amount
        elif tx.type == TransactionType.REDEEMED:
            state.total_redeemed += tx.amount
        else:
            state.total_expired += tx.amount
    return state
