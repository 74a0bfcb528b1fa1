"""
Per-product mutual exclusion.

Lock order is always product lock first, then the store's write lock
(opened by store.atomic()). Components that receive an already-open
unit of work assume the caller holds the product lock.
"""
import threading
from contextlib import contextmanager
from typing import Dict


class ProductLocks:
    """Registry of re-entrant locks, one per product id, created on demand."""

    def __init__(self):
        self._locks: Dict[int, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, product_id: int) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[product_id] = lock
            return lock

    @contextmanager
    def hold(self, product_id: int):
        with self.lock_for(product_id):
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


@contextmanager
def locked_unit_of_work(store, locks: ProductLocks, product_id: int, uow=None):
    """
    Product lock + fresh unit of work, or the caller's unit of work as is.

    Usage:
        >>> with locked_unit_of_work(store, locks, product_id) as uow:
        ...     uow.lots.update(lot)
    """
    if uow is not None:
        yield uow
        return
    with locks.hold(product_id):
        with store.atomic() as fresh:
            yield fresh
