"""
In-memory wallet storage with optimistic concurrency.

Committed wallet records are never mutated in place: a commit swaps in a new
record with ``version + 1``, so readers can take a snapshot without locking.
Writers go through ``commit_wallet``, which only succeeds if the caller's
``expected_version`` still matches the stored one.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class VersionConflictError(StorageError):
    pass


class StorageTimeoutError(StorageError):
    pass


class InMemoryStorage:
    def __init__(self, timeout_seconds: float = 2.0):
        self.timeout_seconds = timeout_seconds
        self.wallets: dict[str, dict] = {}
        # Append-only audit journal per user, oldest first.
        self.journal: dict[str, list[dict]] = {}
        self.idempotency_index: dict[tuple[str, str], dict] = {}
        self._write_lock = threading.Lock()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._write_lock.acquire(timeout=self.timeout_seconds):
            raise StorageTimeoutError(f"Storage write lock not acquired within {self.timeout_seconds}s")
        try:
            yield
        finally:
            self._write_lock.release()

    def load_wallet(self, user_id: str) -> Optional[dict]:
        record = self.wallets.get(user_id)
        return copy.deepcopy(record) if record is not None else None

    def insert_wallet(self, record: dict) -> dict:
        """Store a new wallet, or return the existing one if another writer got there first."""
        user_id = record["user_id"]
        with self._locked():
            existing = self.wallets.get(user_id)
            if existing is not None:
                return copy.deepcopy(existing)
            stored = copy.deepcopy(record)
            stored["version"] = 1
            self.wallets[user_id] = stored
            self.journal.setdefault(user_id, [])
            logger.debug("Created wallet record for %s", user_id)
            return copy.deepcopy(stored)

    def commit_wallet(self, record: dict, expected_version: int, new_transactions: list[dict]) -> dict:
        user_id = record["user_id"]
        with self._locked():
            current = self.wallets.get(user_id)
            current_version = current["version"] if current is not None else None
            if current_version != expected_version:
                raise VersionConflictError(
                    f"Wallet {user_id} is at version {current_version}, expected {expected_version}"
                )
            for tx in new_transactions:
                key = tx.get("idempotency_key")
                if key and (user_id, key) in self.idempotency_index:
                    raise VersionConflictError(f"Idempotency key {key} already committed for {user_id}")

            stored = copy.deepcopy(record)
            stored["version"] = expected_version + 1
            self.wallets[user_id] = stored

            entries = self.journal.setdefault(user_id, [])
            for tx in new_transactions:
                entry = copy.deepcopy(tx)
                entries.append(entry)
                if entry.get("idempotency_key"):
                    self.idempotency_index[(user_id, entry["idempotency_key"])] = entry
            return copy.deepcopy(stored)

    def find_by_idempotency_key(self, user_id: str, idempotency_key: str) -> Optional[dict]:
        entry = self.idempotency_index.get((user_id, idempotency_key))
        return copy.deepcopy(entry) if entry is not None else None

    def count_transactions(self, user_id: str) -> int:
        return len(self.journal.get(user_id, []))

    def list_transactions(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> list[dict]:
        """Newest-first page of the audit journal."""
        newest_first = self.journal.get(user_id, [])[::-1]
        end = None if limit is None else offset + limit
        return copy.deepcopy(newest_first[offset:end])
