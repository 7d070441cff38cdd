# app/x402/receipts.py
"""
Short-lived store of settled payment signatures.

A receipt is recorded after a transaction is confirmed on-chain and stays
"used" for a fixed TTL (5 minutes by default). It backs replay detection in
the payment pipeline and the receipt lookup endpoint.

Expiry is lazy: stale entries are dropped when looked up, and every insert
purges all expired entries. There is no background timer.

The store is process-local and guarded by a lock, so it is safe to share
between concurrent requests. One instance is created with the application and
handed to request handlers; the clock is injectable for tests.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_TTL_SECONDS = 300  # 5 minutes


@dataclass(frozen=True)
class SettlementRecord:
    """A settled payment, keyed by its transaction signature."""
    signature: str
    payer: str
    amount: int
    resource_path: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "payer": self.payer,
            "amount": self.amount,
            "resource": self.resource_path,
            "timestamp": self.created_at,
            "expiresAt": self.expires_at,
        }


class ReceiptStore:
    """
    In-memory TTL store of settlement records.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RECEIPT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the receipt store.

        Args:
            ttl_seconds: How long a receipt stays live after it is stored.
            clock: Returns the current time in seconds.
        """
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._receipts: Dict[str, SettlementRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def store(self, signature: str, payer: str, amount: int, resource_path: str) -> SettlementRecord:
        """
        Record a settled payment and purge expired receipts.

        Storing a signature that is already present replaces the old record
        with the new values and a fresh TTL.

        Returns:
            The stored SettlementRecord
        """
        now = self._clock()
        record = SettlementRecord(
            signature=signature,
            payer=payer,
            amount=amount,
            resource_path=resource_path,
            created_at=now,
            expires_at=now + self._ttl_seconds,
        )

        with self._lock:
            previous = self._receipts.get(signature)
            if previous is not None and not previous.is_expired(now):
                logger.warning(f"x402: Replacing live receipt for signature {signature}")
            self._receipts[signature] = record
            self._purge_expired(now)

        return record

    def is_used(self, signature: str) -> bool:
        """Check whether a live receipt exists for a signature."""
        return self.get(signature) is not None

    def get(self, signature: str) -> Optional[SettlementRecord]:
        """
        Get the live receipt for a signature.

        Returns:
            The SettlementRecord, or None if unknown or expired
        """
        now = self._clock()
        with self._lock:
            record = self._receipts.get(signature)
            if record is None:
                return None
            if record.is_expired(now):
                del self._receipts[signature]
                return None
            return record

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for record in self._receipts.values() if not record.is_expired(now))

    def clear(self) -> None:
        """Drop all receipts."""
        with self._lock:
            self._receipts.clear()

    def _purge_expired(self, now: float) -> None:
        # Caller holds the lock
        expired = [sig for sig, record in self._receipts.items() if record.is_expired(now)]
        for sig in expired:
            del self._receipts[sig]

        if expired:
            logger.debug(f"Purged {len(expired)} expired receipts")
