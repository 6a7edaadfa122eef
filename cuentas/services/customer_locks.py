"""Process-local mutual exclusion keyed by customer id.

Ledger mutations for one customer run one at a time; different customers
never wait on each other. Multi-customer sections take their locks in
ascending id order so two of them cannot deadlock.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from threading import Lock
from typing import Dict, Iterable, Iterator

_registry_lock = Lock()
_locks: Dict[int, Lock] = {}


def _lock_for(customer_id: int) -> Lock:
    with _registry_lock:
        lock = _locks.get(customer_id)
        if lock is None:
            lock = _locks[customer_id] = Lock()
        return lock


@contextmanager
def customer_lock(customer_id: int) -> Iterator[None]:
    with _lock_for(customer_id):
        yield


@contextmanager
def customer_locks(customer_ids: Iterable[int]) -> Iterator[None]:
    with ExitStack() as stack:
        for cid in sorted(set(customer_ids)):
            stack.enter_context(customer_lock(cid))
        yield
