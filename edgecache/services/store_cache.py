"""
StoreJsonCache - single-key JSON cache in the shared store.

A fetcher returning None is remembered as a sentinel for a short negative
TTL, so a resource that is legitimately empty (or whose upstream is down) is
not re-fetched on every request by every isolate. Concurrent local misses for
the same key share one fetch.
"""

import json
from typing import Any, Awaitable, Callable, Literal

from loguru import logger

from edgecache.services.errors import StoreUnavailableError
from edgecache.services.singleflight import SingleflightGroup
from edgecache.settings import Settings, global_settings
from edgecache.store.base import AbstractStore

NEG_SENTINEL = "__WM_NEG__"

StoreSource = Literal["cache", "fresh"]


class StoreJsonCache:
    """
    Usage:
        cache = StoreJsonCache(store)

        data, source = await cache.fetch(
            "aviation:delays:faa:v1", 1800, fetch_faa_delays
        )
    """

    def __init__(
        self,
        store: AbstractStore,
        group: SingleflightGroup | None = None,
        negative_ttl_seconds: int | None = None,
        debug: bool | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or global_settings
        if debug is None:
            debug = settings.cache_debug
        self._store = store
        self._group = group if group is not None else SingleflightGroup(debug=debug)
        self._negative_ttl_seconds = (
            settings.store_negative_ttl_seconds
            if negative_ttl_seconds is None
            else negative_ttl_seconds
        )
        self._debug = debug

    async def get(self, key: str) -> Any | None:
        """Parsed value at key; None when missing, negative or unreadable."""
        try:
            raw = await self._store.get(key)
        except StoreUnavailableError as e:
            logger.warning(f"Store unavailable reading {key}: {e}")
            return None
        return self._decode(key, raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Best-effort write; store failures are logged, not raised."""
        try:
            await self._store.set(key, json.dumps(value), ttl_seconds)
        except StoreUnavailableError as e:
            logger.warning(f"Store unavailable writing {key}: {e}")

    async def fetch(
        self,
        key: str,
        ttl_seconds: int,
        fetcher: Callable[[], Awaitable[Any | None]],
        negative_ttl_seconds: int | None = None,
    ) -> tuple[Any | None, StoreSource]:
        """
        Cached value for key, calling fetcher on a miss.

        Returns:
            (data, source) where source is "cache" for store hits (negative
            hits included, with data None) and "fresh" when fetcher ran here
            or in a local call this one joined.
        """
        try:
            raw = await self._store.get(key)
        except StoreUnavailableError as e:
            logger.warning(f"Store unavailable reading {key}, fetching: {e}")
            raw = None

        if raw is not None:
            if self._is_negative(raw):
                self._log(f"NEG HIT: {key}")
                return None, "cache"
            value = self._decode(key, raw)
            if value is not None:
                self._log(f"HIT: {key}")
                return value, "cache"

        neg_ttl = (
            self._negative_ttl_seconds
            if negative_ttl_seconds is None
            else negative_ttl_seconds
        )

        async def load() -> Any | None:
            result = await fetcher()
            if result is not None:
                await self.set(key, result, ttl_seconds)
            else:
                await self._set_raw(key, json.dumps(NEG_SENTINEL), neg_ttl)
            return result

        data = await self._group.do(key, load)
        return data, "fresh"

    async def fetch_many(self, keys: list[str]) -> dict[str, Any]:
        """Batch read. Missing, negative and malformed keys are omitted."""
        try:
            raw_values = await self._store.get_many(keys)
        except StoreUnavailableError as e:
            logger.warning(f"Store unavailable for batch read: {e}")
            return {}

        found: dict[str, Any] = {}
        for key, raw in raw_values.items():
            if self._is_negative(raw):
                continue
            value = self._decode(key, raw)
            if value is not None:
                found[key] = value
        return found

    async def _set_raw(self, key: str, raw: str, ttl_seconds: int) -> None:
        try:
            await self._store.set(key, raw, ttl_seconds)
        except StoreUnavailableError as e:
            logger.warning(f"Store unavailable writing {key}: {e}")

    @staticmethod
    def _is_negative(raw: str) -> bool:
        return raw == json.dumps(NEG_SENTINEL)

    @staticmethod
    def _decode(key: str, raw: str | None) -> Any | None:
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding malformed value at {key}")
            return None
        return None if value == NEG_SENTINEL else value

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[StoreJsonCache] {message}")
