"""
Abstract shared key-value store interface.
"""

from abc import ABC, abstractmethod


class AbstractStore(ABC):
    """
    Interface to the key-value store shared by every isolate.

    Values are opaque strings with a per-key TTL. Implementations raise
    StoreUnavailableError when the store cannot be reached; callers are
    expected to catch it and degrade.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for key, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key, replacing any previous value."""
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically store value only if key is absent. True if stored."""
        ...

    async def get_many(self, keys: list[str]) -> dict[str, str]:
        """Return the present keys among `keys`. Missing keys are omitted."""
        found: dict[str, str] = {}
        for key in keys:
            value = await self.get(key)
            if value is not None:
                found[key] = value
        return found

    async def close(self) -> None:
        """Release any held connections."""
        return None
