"""
CrossIsolateLock - advisory refresh lock shared through the store.

Built on the store's conditional set: of several isolates racing for the
same key, exactly one sees True. The lock is never released explicitly; it
expires with its TTL, so a refresher that crashes cannot wedge the resource.
"""

import asyncio

from loguru import logger

from edgecache.services.errors import StoreUnavailableError
from edgecache.store.base import AbstractStore

LOCK_SENTINEL = "1"


class CrossIsolateLock:
    """
    Best-effort mutual exclusion across processes that share no memory.

    If the store cannot be reached the lock degrades open: duplicate work is
    preferred over no work.

    Usage:
        lock = CrossIsolateLock(store, wait_seconds=3.0)

        if await lock.try_acquire("aviation:intl:lock", ttl_seconds=30):
            await refresh()
        else:
            await lock.wait()
            ...  # re-read what the holder wrote
    """

    def __init__(
        self,
        store: AbstractStore,
        wait_seconds: float = 3.0,
        debug: bool = False,
    ):
        self._store = store
        self._wait_seconds = wait_seconds
        self._debug = debug

    @property
    def wait_seconds(self) -> float:
        return self._wait_seconds

    async def try_acquire(self, lock_key: str, ttl_seconds: int) -> bool:
        """True if this caller now holds lock_key for ttl_seconds."""
        try:
            acquired = await self._store.set_if_absent(
                lock_key, LOCK_SENTINEL, ttl_seconds
            )
        except StoreUnavailableError as e:
            logger.warning(f"Lock store unavailable for {lock_key}, proceeding: {e}")
            return True

        if acquired:
            self._log(f"ACQUIRED: {lock_key} (TTL: {ttl_seconds}s)")
        else:
            self._log(f"HELD ELSEWHERE: {lock_key}")
        return acquired

    async def wait(self, seconds: float | None = None) -> None:
        """Fixed, bounded wait for the holder to publish its result."""
        await asyncio.sleep(self._wait_seconds if seconds is None else seconds)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CrossIsolateLock] {message}")
