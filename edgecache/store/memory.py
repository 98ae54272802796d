"""
In-process store used for single-instance deployments and tests.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from edgecache.services.errors import StoreUnavailableError
from edgecache.store.base import AbstractStore


@dataclass
class _StoredValue:
    value: str
    expires_at: float


class InMemoryStore(AbstractStore):
    """
    Dict-backed AbstractStore with TTL expiry.

    Usage:
        store = InMemoryStore()
        await store.set("key", "value", ttl_seconds=60)

        # Tests can drive time and simulate outages
        store = InMemoryStore(clock=fake_clock)
        store.available = False
    """

    def __init__(self, clock: Callable[[], float] = time.time, debug: bool = False):
        self._data: dict[str, _StoredValue] = {}
        self._clock = clock
        self._lock = asyncio.Lock()
        self._debug = debug
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("In-memory store marked unavailable")

    def _live(self, key: str) -> _StoredValue | None:
        stored = self._data.get(key)
        if stored is None:
            return None
        if self._clock() >= stored.expires_at:
            del self._data[key]
            return None
        return stored

    async def get(self, key: str) -> str | None:
        self._check_available()
        stored = self._live(key)
        return stored.value if stored else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check_available()
        self._data[key] = _StoredValue(value, self._clock() + ttl_seconds)
        self._log(f"SET: {key} (TTL: {ttl_seconds}s)")

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check_available()
        async with self._lock:
            if self._live(key) is not None:
                self._log(f"SETNX REJECTED: {key}")
                return False
            self._data[key] = _StoredValue(value, self._clock() + ttl_seconds)
            self._log(f"SETNX: {key} (TTL: {ttl_seconds}s)")
            return True

    def keys(self) -> list[str]:
        """Keys currently live in the store."""
        return [k for k in list(self._data) if self._live(k) is not None]

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[InMemoryStore] {message}")
