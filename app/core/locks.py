import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Tuple

class KeyedLock:
    """
    One ``asyncio.Lock`` per key, created on demand and dropped once nobody
    holds or waits on it. Serializes read-then-write sections on a single
    queue within this process; row locks cover other processes.
    """

    def __init__(self):
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)

queue_locks = KeyedLock()
