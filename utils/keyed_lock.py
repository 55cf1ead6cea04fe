import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    One asyncio.Lock per key (order id), created on demand.

    Different keys never contend. An entry is dropped as soon as nobody
    holds or waits for it, so the map only ever contains orders that are
    being worked on right now.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncGenerator[None, None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
