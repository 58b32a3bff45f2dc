"""Per-user transaction history and the global used-nonce set."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, Set

from web3 import Web3

from .chain import Receipt
from .config import PolicyConfig
from .constants import DAY, HOUR, MAX_HISTORY_PER_USER, MINUTE
from .intents import Intent

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
UNCONFIRMED = "unconfirmed"


@dataclass
class TransactionRecord:
    timestamp: float
    type: str
    tx_hash: Optional[str] = None
    gas_spent: Decimal = Decimal(0)
    status: str = CONFIRMED
    nonce: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "type": self.type,
            "txHash": self.tx_hash,
            "gasSpent": str(self.gas_spent),
            "status": self.status,
        }


class PolicyStore(Protocol):
    """Storage backing the ledger. Users are passed already normalised."""

    def transactions(self, user: str) -> List[TransactionRecord]:
        ...

    def append(self, user: str, record: TransactionRecord, *, max_history: int) -> None:
        ...

    def replace(self, user: str, record: TransactionRecord) -> bool:
        ...

    def remove(self, user: str, record_id: str) -> bool:
        ...

    def has_nonce(self, nonce: int) -> bool:
        ...

    def add_nonce(self, nonce: int) -> None:
        ...

    def discard_nonce(self, nonce: int) -> None:
        ...


class InMemoryPolicyStore:
    """Process-local store. Not shared across workers and lost on restart."""

    def __init__(self) -> None:
        self._transactions: Dict[str, List[TransactionRecord]] = {}
        self._first_seen: Dict[str, float] = {}
        self._nonces: Set[int] = set()

    def transactions(self, user: str) -> List[TransactionRecord]:
        return list(self._transactions.get(user, ()))

    def append(self, user: str, record: TransactionRecord, *, max_history: int) -> None:
        history = self._transactions.setdefault(user, [])
        self._first_seen.setdefault(user, record.timestamp)
        history.append(record)
        if len(history) > max_history:
            del history[: len(history) - max_history]

    def replace(self, user: str, record: TransactionRecord) -> bool:
        history = self._transactions.get(user, [])
        for index, existing in enumerate(history):
            if existing.id == record.id:
                history[index] = record
                return True
        return False

    def remove(self, user: str, record_id: str) -> bool:
        history = self._transactions.get(user, [])
        for index, existing in enumerate(history):
            if existing.id == record_id:
                del history[index]
                return True
        return False

    def has_nonce(self, nonce: int) -> bool:
        return nonce in self._nonces

    def add_nonce(self, nonce: int) -> None:
        self._nonces.add(nonce)

    def discard_nonce(self, nonce: int) -> None:
        self._nonces.discard(nonce)


def _key(user: str) -> str:
    return user.strip().lower()


def gas_cost(receipt: Receipt) -> Decimal:
    """Native-currency cost of a mined transaction."""
    return Decimal(Web3.from_wei(receipt.gas_used * receipt.effective_gas_price, "ether"))


class PolicyLedger:
    """Source of truth for rate and spend queries.

    ``atomic(user)`` guards the validate-then-commit sequence: a per-user lock
    followed by the global nonce lock, always in that order. Per-user locks are
    kept for the life of the ledger, like the in-memory history they guard.
    """

    def __init__(
        self,
        policy: PolicyConfig,
        store: Optional[PolicyStore] = None,
        *,
        clock: Callable[[], float] = time.time,
        max_history: int = MAX_HISTORY_PER_USER,
    ) -> None:
        self.policy = policy
        self._store: PolicyStore = store if store is not None else InMemoryPolicyStore()
        self._clock = clock
        self._max_history = max_history
        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._nonce_lock = asyncio.Lock()

    def now(self) -> float:
        return self._clock()

    @contextlib.asynccontextmanager
    async def atomic(self, user: Optional[str]) -> AsyncIterator[None]:
        async with contextlib.AsyncExitStack() as stack:
            if user:
                lock = self._user_locks.setdefault(_key(user), asyncio.Lock())
                await stack.enter_async_context(lock)
            await stack.enter_async_context(self._nonce_lock)
            yield

    # -- nonces --------------------------------------------------------------

    def has_nonce(self, nonce: int) -> bool:
        return self._store.has_nonce(nonce)

    def track_nonce(self, nonce: int) -> None:
        self._store.add_nonce(nonce)

    def release_nonce(self, nonce: int) -> None:
        logger.info("releasing nonce=%s", nonce)
        self._store.discard_nonce(nonce)

    # -- history -------------------------------------------------------------

    def transactions(self, user: Optional[str]) -> List[TransactionRecord]:
        if not user:
            return []
        return self._store.transactions(_key(user))

    def reserve(self, user: str, intent: Intent) -> TransactionRecord:
        """Hold a rate-limit slot for an intent that is about to be broadcast."""
        record = TransactionRecord(
            timestamp=self.now(), type=intent.type, status=PENDING, nonce=intent.nonce
        )
        self._store.append(_key(user), record, max_history=self._max_history)
        return record

    def release(self, user: str, reservation: TransactionRecord) -> None:
        self._store.remove(_key(user), reservation.id)

    def mark_unconfirmed(
        self,
        user: str,
        reservation: TransactionRecord,
        tx_hash: str,
        gas_spent: Decimal = Decimal(0),
    ) -> TransactionRecord:
        """Keep a broadcast transaction whose receipt never arrived.

        The record keeps counting against the rate windows and is charged
        ``gas_spent`` in the spend windows, since it may still be mined.
        """
        key = _key(user)
        record = replace(reservation, tx_hash=tx_hash, gas_spent=gas_spent, status=UNCONFIRMED)
        if not self._store.replace(key, record):
            self._store.append(key, record, max_history=self._max_history)
        logger.warning("transaction left unconfirmed hash=%s user=%s", tx_hash, key)
        return record

    def record_transaction(
        self,
        user: Optional[str],
        intent: Intent,
        receipt: Receipt,
        reservation: Optional[TransactionRecord] = None,
    ) -> Optional[TransactionRecord]:
        if not user:
            return None
        key = _key(user)
        spent = gas_cost(receipt)
        if reservation is not None:
            confirmed = replace(
                reservation, tx_hash=receipt.tx_hash, gas_spent=spent, status=CONFIRMED
            )
            if self._store.replace(key, confirmed):
                return confirmed
        record = TransactionRecord(
            timestamp=self.now(),
            type=intent.type,
            tx_hash=receipt.tx_hash,
            gas_spent=spent,
            nonce=intent.nonce,
        )
        self._store.append(key, record, max_history=self._max_history)
        return record

    # -- window queries ------------------------------------------------------

    def count_within(self, user: Optional[str], window: float, now: Optional[float] = None) -> int:
        now = self.now() if now is None else now
        return sum(1 for t in self.transactions(user) if now - t.timestamp < window)

    def spent_within(
        self, user: Optional[str], window: float, now: Optional[float] = None
    ) -> Decimal:
        now = self.now() if now is None else now
        return sum(
            (t.gas_spent for t in self.transactions(user) if now - t.timestamp < window),
            Decimal(0),
        )

    def get_remaining_spend(self, user: Optional[str]) -> Dict[str, Decimal]:
        now = self.now()
        return {
            "hourly": self.policy.max_spend_per_hour - self.spent_within(user, HOUR, now),
            "daily": self.policy.max_spend_per_day - self.spent_within(user, DAY, now),
        }

    def get_remaining_tx(self, user: Optional[str]) -> Dict[str, int]:
        now = self.now()
        return {
            "perMinute": self.policy.max_tx_per_minute - self.count_within(user, MINUTE, now),
            "perHour": self.policy.max_tx_per_hour - self.count_within(user, HOUR, now),
            "perDay": self.policy.max_tx_per_day - self.count_within(user, DAY, now),
        }
