"""Per-key critical sections for room types and payments."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)


class KeyedLocks:
    """
    A table of asyncio locks indexed by key.

    Callers for the same key run one at a time; callers for different keys
    never wait on each other. Entries are dropped once no task holds or waits
    on them, so the table only grows with the number of keys in flight.
    """

    def __init__(self, name: str):
        self.name = name
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: Any) -> AsyncIterator[None]:
        """Enter the critical section for ``key``."""
        key = str(key)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1

        try:
            if lock.locked():
                logger.debug(
                    "Waiting for keyed lock",
                    extra={"lock": self.name, "key": key}
                )
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: Any) -> bool:
        lock = self._locks.get(str(key))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Lock order is always payment -> room type.
room_type_locks = KeyedLocks("room_type")
payment_locks = KeyedLocks("payment")
