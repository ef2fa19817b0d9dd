# app/x402/replay.py
"""
Consumed-receipt tracking for the x402 gateway.

A signed receipt stays cryptographically valid forever, so without this store
one payment could unlock the protected endpoint any number of times. Each
receipt's transaction hash is claimed on first use and remembered for the
retention window, which is never shorter than the offer validity window.

Storage is in-memory and per-process.
"""
import logging
import threading
import time
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 60


class ConsumedReceiptStore:
    """
    In-memory set of consumed transaction hashes with expiry.

    Thread-safe for concurrent access.
    """

    def __init__(self, retention_seconds: int = 86400):
        """
        Initialize the store.

        Args:
            retention_seconds: How long a consumed hash is remembered.
        """
        self._retention_seconds = retention_seconds
        self._consumed: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_cleanup = time.time()

    @property
    def retention_seconds(self) -> int:
        return self._retention_seconds

    @staticmethod
    def _key(tx_hash: str) -> str:
        return tx_hash.lower()

    def claim(self, tx_hash: str, now: Optional[float] = None) -> bool:
        """
        Atomically mark a transaction hash as consumed.

        Returns:
            True if the hash was unused and is now claimed, False if it was
            already consumed within the retention window.
        """
        now = time.time() if now is None else now
        key = self._key(tx_hash)

        with self._lock:
            self._maybe_cleanup(now)
            consumed_at = self._consumed.get(key)
            if consumed_at is not None and now - consumed_at < self._retention_seconds:
                logger.warning(f"x402: Receipt for {key} already consumed")
                return False
            self._consumed[key] = now
            return True

    def release(self, tx_hash: str) -> None:
        """Forget a claim, e.g. when the paid action did not complete."""
        with self._lock:
            if self._consumed.pop(self._key(tx_hash), None) is not None:
                logger.info(f"x402: Released receipt claim for {self._key(tx_hash)}")

    def is_consumed(self, tx_hash: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        with self._lock:
            consumed_at = self._consumed.get(self._key(tx_hash))
            return consumed_at is not None and now - consumed_at < self._retention_seconds

    def _maybe_cleanup(self, now: float) -> None:
        """Drop expired entries. Caller must hold the lock."""
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        cutoff = now - self._retention_seconds
        expired = [k for k, ts in self._consumed.items() if ts <= cutoff]
        for key in expired:
            del self._consumed[key]
        if expired:
            logger.debug(f"x402: Cleaned up {len(expired)} expired receipt claims")
        self._last_cleanup = now

    def reset(self) -> None:
        """Clear all claims (useful for testing)."""
        with self._lock:
            self._consumed.clear()
            self._last_cleanup = time.time()

    def __len__(self) -> int:
        with self._lock:
            return len(self._consumed)
