"""
Shared key-value store collaborators.

Provides:
- AbstractStore: get / set / set_if_absent with per-key TTL
- InMemoryStore: single-process store (tests, no shared store configured)
- UpstashStore: Upstash Redis REST store shared across isolates
"""

from edgecache.settings import Settings, global_settings
from edgecache.store.base import AbstractStore
from edgecache.store.memory import InMemoryStore
from edgecache.store.upstash import UpstashStore, build_key_prefix


def create_store(settings: Settings | None = None) -> AbstractStore:
    """Build the shared store, or an in-process one if none is configured."""
    settings = settings or global_settings
    if settings.store_configured:
        return UpstashStore.from_settings(settings)
    return InMemoryStore()


__all__ = [
    "AbstractStore",
    "InMemoryStore",
    "UpstashStore",
    "build_key_prefix",
    "create_store",
]
