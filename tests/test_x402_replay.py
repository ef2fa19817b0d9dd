# tests/test_x402_replay.py
"""
Unit tests for consumed-receipt tracking.
"""
import threading

from app.x402.replay import ConsumedReceiptStore, CLEANUP_INTERVAL_SECONDS

TX_A = "0x" + "aa" * 32
TX_B = "0x" + "bb" * 32


class TestClaim:
    """Test claim semantics."""

    def setup_method(self):
        self.store = ConsumedReceiptStore(retention_seconds=600)

    def test_first_claim_succeeds(self):
        assert self.store.claim(TX_A) is True
        assert self.store.is_consumed(TX_A) is True

    def test_second_claim_fails(self):
        self.store.claim(TX_A)
        assert self.store.claim(TX_A) is False

    def test_claims_are_per_transaction(self):
        assert self.store.claim(TX_A) is True
        assert self.store.claim(TX_B) is True

    def test_hash_case_is_ignored(self):
        self.store.claim(TX_A)
        assert self.store.claim(TX_A.upper().replace("0X", "0x")) is False

    def test_claim_expires_after_retention(self):
        self.store.claim(TX_A, now=1000.0)

        assert self.store.claim(TX_A, now=1000.0 + 599) is False
        assert self.store.claim(TX_A, now=1000.0 + 600) is True

    def test_release_allows_reuse(self):
        self.store.claim(TX_A)
        self.store.release(TX_A)

        assert self.store.is_consumed(TX_A) is False
        assert self.store.claim(TX_A) is True

    def test_release_unknown_is_noop(self):
        self.store.release(TX_B)
        assert len(self.store) == 0

    def test_reset(self):
        self.store.claim(TX_A)
        self.store.claim(TX_B)
        self.store.reset()

        assert len(self.store) == 0


class TestCleanup:
    """Expired entries are dropped periodically."""

    def test_expired_entries_removed(self):
        store = ConsumedReceiptStore(retention_seconds=10)
        store.reset()
        start = store._last_cleanup

        store.claim(TX_A, now=start + 1)
        store.claim(TX_B, now=start + CLEANUP_INTERVAL_SECONDS + 5)

        assert len(store) == 1
        assert store.is_consumed(TX_B, now=start + CLEANUP_INTERVAL_SECONDS + 5) is True


class TestConcurrentClaims:
    """Only one of many concurrent claims for the same receipt wins."""

    def test_single_winner(self):
        store = ConsumedReceiptStore(retention_seconds=600)
        results = []
        lock = threading.Lock()

        def worker():
            ok = store.claim(TX_A)
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 19
