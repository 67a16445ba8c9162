"""
Per-group mutual exclusion for create and rollback.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from .exceptions import ValidationError


logger = logging.getLogger(__name__)


class GroupBusy(ValidationError):
    """Another operation holds the group lock."""

    def __init__(self, group_id: str):
        super().__init__(f"Another snapshot operation is running for group {group_id}")
        self.group_id = group_id


class GroupLockRegistry:
    """
    Hands out one re-entrant lock per group id.

    Re-entrant so a rollback can create its automatic checkpoint through
    the creator while still holding the group lock. Only serializes callers
    inside this process.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds to wait for a busy group (None waits forever)
        """
        self.timeout = timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, group_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[group_id] = lock
            return lock

    @contextmanager
    def hold(self, group_id: str) -> Iterator[None]:
        """Hold the lock for a group for the duration of the block."""
        lock = self._lock_for(group_id)
        if self.timeout is None:
            acquired = lock.acquire()
        else:
            acquired = lock.acquire(timeout=self.timeout)
        if not acquired:
            logger.warning(f"Timed out waiting for group lock: {group_id}")
            raise GroupBusy(group_id)
        try:
            yield
        finally:
            lock.release()
