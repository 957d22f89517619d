"""Per-resource mutual exclusion.

WHAT:
    An asyncio lock per (shop, resource type, resource id). A webhook and a
    manual sync for the same product run one after the other; syncs of
    different resources still run concurrently.

WHY:
    The sync pipeline is fetch (await) then write (no await). Two syncs of
    the same resource could both fetch, and the one holding the older
    snapshot might write last. Holding the lock across fetch+write makes the
    later sync always observe and write the newer state.

    Locks are refcounted and dropped once nobody holds or waits on them, so
    the registry does not grow with the catalog.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

LockKey = Tuple[str, str, str]


class ResourceLockRegistry:
    """Registry of per-resource asyncio locks (one per event loop)."""

    def __init__(self):
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._refcounts: Dict[LockKey, int] = {}

    @asynccontextmanager
    async def hold(self, shop: str, resource_type: str, resource_id: str) -> AsyncIterator[None]:
        key = (shop, resource_type, resource_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]

    def active_count(self) -> int:
        """Number of resources currently locked or awaited."""
        return len(self._locks)


# Process-wide default used by the sync services
resource_locks = ResourceLockRegistry()
