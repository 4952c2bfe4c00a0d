"""Per-item locks so sync and reconnection never interleave on one item.

Every CLI command runs in its own process, so a thread lock alone only
serializes work inside one invocation. When a store is given, the registry
also takes a lease row in the ledger database, which every process opening
the same file sees.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, Optional

from ..errors import SyncInProgressError

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ..db.protocols import LedgerStore


class ItemLockRegistry:
    """Hands out one re-entrant lock per item id."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        store: Optional[LedgerStore] = None,
        lease_seconds: float = 900.0,
        poll_interval: float = 0.05,
    ):
        """Initialize the registry.

        Args:
            timeout_seconds: How long ``hold`` waits before giving up.
            store: Ledger store holding lease rows. Without one, locks only
                cover threads of this process.
            lease_seconds: Lifetime of a lease, after which a crashed holder's
                row may be taken over.
            poll_interval: Delay between attempts on a lease held elsewhere.
        """
        self._timeout = timeout_seconds
        self._store = store
        self._lease_seconds = lease_seconds
        self._poll_interval = poll_interval
        self._owner = f"{os.getpid()}-{uuid.uuid4().hex[:12]}"
        self._locks: dict[str, threading.RLock] = {}
        self._depth: dict[str, int] = {}
        self._guard = threading.Lock()

    @property
    def owner(self) -> str:
        """Lease owner name written by this registry."""
        return self._owner

    def _lock_for(self, item_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(item_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[item_id] = lock
            return lock

    def _take_lease(self, item_id: str, deadline: float) -> bool:
        while True:
            now = time.time()
            if self._store.acquire_item_lock(item_id, self._owner, now, now + self._lease_seconds):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self._poll_interval)

    @contextmanager
    def hold(self, item_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the item's lock for the duration of the block.

        Nested holds on the same registry and thread only take the lease once.

        Raises:
            SyncInProgressError: If the lock is not acquired within the timeout.
        """
        lock = self._lock_for(item_id)
        wait = self._timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        if not lock.acquire(timeout=wait):
            raise SyncInProgressError(f"Item {item_id} is busy (waited {wait:.0f}s)")
        try:
            outermost = self._depth.get(item_id, 0) == 0
            if outermost and self._store is not None:
                if not self._take_lease(item_id, deadline):
                    raise SyncInProgressError(
                        f"Item {item_id} is busy in another process (waited {wait:.0f}s)"
                    )
            self._depth[item_id] = self._depth.get(item_id, 0) + 1
            logger.debug("Acquired lock for item %s", item_id)
            try:
                yield
            finally:
                self._depth[item_id] -= 1
                if self._depth[item_id] == 0:
                    del self._depth[item_id]
                    if self._store is not None:
                        self._store.release_item_lock(item_id, self._owner)
        finally:
            lock.release()
