import logging
import threading
from contextlib import contextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class KeyedLockManager:
    """
    Hands out one re-entrant lock per key so work on the same import session
    is serialised while different sessions proceed independently.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._global_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def get_lock(self, key: str) -> threading.RLock:
        """Get or create the lock for ``key``."""
        with self._global_lock:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    def discard(self, key: str) -> None:
        """Forget the lock for ``key`` once the keyed resource is gone."""
        with self._global_lock:
            self._locks.pop(key, None)

    @contextmanager
    def acquire(self, key: str):
        """Context manager to acquire and release the lock for ``key``."""
        lock = self.get_lock(key)
        logger.debug("Attempting to acquire lock for '%s'", key)
        lock.acquire()
        logger.debug("Acquired lock for '%s'", key)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released lock for '%s'", key)
