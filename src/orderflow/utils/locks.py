"""Per-key mutual exclusion for shared counters.

Inventory records and coupon usage counters are the only state contended
across orders. Each key gets its own lock so that unrelated keys never wait
on each other; there is no global lock.

``checkout_locks`` serializes checkout attempts that share an idempotency
key or a cart, and is always taken before any other lock.
"""

import threading
from contextlib import contextmanager


class KeyedLocks:
    """A lazily populated registry of ``threading.Lock`` objects, one per key."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict = {}

    def _lock_for(self, key) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key):
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


inventory_locks = KeyedLocks("inventory")
coupon_locks = KeyedLocks("coupon")
payment_locks = KeyedLocks("payment")
order_locks = KeyedLocks("order")
checkout_locks = KeyedLocks("checkout")
