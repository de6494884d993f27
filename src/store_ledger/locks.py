"""Per-product exclusive locks for ledger writes.

Every stock-affecting operation holds the locks of the products it touches
from the stock read until its sale or expense rows are written. Locks are
taken in sorted id order so two operations over overlapping product sets
cannot deadlock, and every wait is bounded.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from . import log
from .constants import DEFAULT_LOCK_TIMEOUT_SECONDS
from .exceptions import ContentionError


class ProductLockManager:
    """Registry of one ``threading.Lock`` per product id."""

    def __init__(self, timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        if timeout <= 0:
            raise ValueError("Lock timeout must be greater than zero")
        self.timeout = timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, product_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[product_id] = lock
            return lock

    def __contains__(self, product_id: object) -> bool:
        with self._registry_lock:
            return product_id in self._locks

    def forget(self, product_id: str) -> None:
        """Drop the lock of a deleted product from the registry.

        Holders of the old lock object still release it normally.
        """

        with self._registry_lock:
            self._locks.pop(product_id, None)

    def is_locked(self, product_id: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(product_id)
        return lock is not None and lock.locked()

    @contextmanager
    def hold(self, product_ids: Iterable[str], timeout: Optional[float] = None) -> Iterator[List[str]]:
        """Hold the locks for ``product_ids`` for the duration of the block.

        The timeout is a budget for acquiring the whole set, not each lock.

        Yields:
            list[str]: The de-duplicated, sorted ids that are now locked.

        Raises:
            ContentionError: If the set cannot be locked within the timeout.
                Locks taken before the failure are released first.
        """

        ordered = sorted(set(product_ids))
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        acquired: List[threading.Lock] = []
        try:
            for product_id in ordered:
                remaining = max(0.0, deadline - time.monotonic())
                lock = self._lock_for(product_id)
                if not lock.acquire(timeout=remaining):
                    log.warning(
                        "Timed out after %.2fs waiting for product lock '%s'",
                        budget,
                        product_id,
                    )
                    raise ContentionError(
                        f"Product '{product_id}' is busy with another operation"
                    )
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()


__all__ = ["ProductLockManager"]
