"""
Bounded replay cache for payment signatures.

SECURITY: a payment signature unlocks at most one gated call. Entries are
only ever removed by capacity eviction (oldest first), never by age, so the
replay window is bounded by capacity rather than wall-clock time.
"""
import logging
import threading
from collections import OrderedDict
from agent_casino.config import REPLAY_CACHE_SIZE
from agent_casino.database.models import PaymentProof

logger = logging.getLogger(__name__)


class ReplayCache:
    """Thread-safe FIFO set of consumed payment signatures."""

    def __init__(self, capacity: int = REPLAY_CACHE_SIZE):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[str, PaymentProof]" = OrderedDict()
        self._lock = threading.Lock()

    def claim(self, proof: PaymentProof) -> bool:
        """Atomically consume a signature.

        Returns:
            True if this is the first use, False if it was already consumed
        """
        with self._lock:
            if proof.signature in self._entries:
                return False

            self._entries[proof.signature] = proof
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"[REPLAY] Evicted {evicted[:16]}... (capacity {self.capacity})")
            return True

    def __contains__(self, signature: str) -> bool:
        with self._lock:
            return signature in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
