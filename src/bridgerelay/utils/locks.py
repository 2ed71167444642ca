"""Concurrency control utilities.

Provides per-key asyncio locks: the registry locks per owner so that
concurrent requests never mint two addresses, and the bridge executor
locks per deposit address so that its transactions keep nonce order.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

from bridgerelay.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class KeyedLocks:
    """A registry of asyncio locks, one per key.

    A key's lock is dropped once no holder or waiter uses it, so the
    registry stays as small as the set of keys in use.

    Example:
        locks = KeyedLocks("owner")
        async with locks.hold(owner_id, operation="get_or_create"):
            ...
    """

    def __init__(self, name: str = "key"):
        self.name = name
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        """Get or create the lock for a key.

        No await between lookup and insert, so this is atomic on the event loop.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(
        self,
        key: Hashable,
        timeout: Optional[float] = None,
        operation: str = "operation",
    ) -> AsyncIterator[None]:
        """Acquire the lock for a key, optionally within a timeout.

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        lock = self.get(key)
        self._users[key] = self._users.get(key, 0) + 1

        try:
            try:
                if timeout:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                else:
                    await lock.acquire()
            except asyncio.TimeoutError:
                logger.warning(
                    f"Lock timeout for {self.name} {key} after {timeout}s: {operation}"
                )
                raise LockTimeoutError(
                    f"Could not acquire lock for {self.name} {key} within {timeout}s"
                )

            logger.debug(f"Lock acquired for {self.name} {key}: {operation}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Lock released for {self.name} {key}: {operation}")
        finally:
            self._release_user(key)

    def _release_user(self, key: Hashable) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining > 0:
            self._users[key] = remaining
            return
        self._users.pop(key, None)
        self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        """Drop all locks (useful for testing)."""
        self._locks.clear()
        self._users.clear()
