"""
ResourceCoordinator - process-wide cache coordination for expensive resources.

Request flow:
1. Local OutcomeAwareCache
2. SingleflightGroup, so one local caller does the work below
3. TieredPersistentCache (fresh tier answers immediately)
4. CrossIsolateLock: the winner refreshes through the FallbackChain and
   writes every tier; losers wait, re-read, then degrade
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from edgecache.resources import ResourceConfig
from edgecache.services.cache import OutcomeAwareCache, TTLPolicy
from edgecache.services.errors import NoDataAvailableError
from edgecache.services.fallback import FallbackChain
from edgecache.services.lock import CrossIsolateLock
from edgecache.services.singleflight import SingleflightGroup
from edgecache.services.tiered import CacheTier, TieredPersistentCache, TieredValue
from edgecache.settings import Settings, global_settings
from edgecache.store.base import AbstractStore


class Snapshot(BaseModel):
    """Envelope persisted in every tier."""

    value: Any
    provider: str
    degraded: bool = False
    refreshed_at: datetime


class ServedSource(str, Enum):
    """Which path answered a coordinated request."""

    CACHE = "cache"  # Local process memory
    STORE = "store"  # Fresh tier written by some isolate
    UPSTREAM = "upstream"  # This isolate refreshed it
    DEDUP = "dedup"  # Joined a local caller's in-flight resolve
    STALE = "stale"  # Stale or backup tier
    DEGRADED = "degraded"  # Lock follower's local fallback, not persisted


@dataclass
class ServedResponse:
    """A resource value plus the metadata consumers need to judge it."""

    value: Any
    source: ServedSource
    tier: CacheTier | None = None
    provider: str | None = None
    degraded: bool = False
    refreshed_at: datetime | None = None

    @property
    def cached(self) -> bool:
        return self.source != ServedSource.UPSTREAM

    @property
    def is_stale(self) -> bool:
        return self.tier in (CacheTier.STALE, CacheTier.BACKUP)

    def to_metadata(self) -> dict[str, Any]:
        return {
            "cached": self.cached,
            "stale": self.is_stale,
            "source": self.source.value,
            "tier": self.tier.value if self.tier else None,
            "provider": self.provider,
            "degraded": self.degraded,
            "refreshed_at": (
                self.refreshed_at.isoformat() if self.refreshed_at else None
            ),
        }


class ResourceCoordinator:
    """
    One instance per process, shared by every resource.

    Usage:
        coordinator = ResourceCoordinator(create_store())

        served = await coordinator.get(registry.get("theater-posture"), chain)
        return {"posture": served.value, **served.to_metadata()}
    """

    def __init__(
        self,
        store: AbstractStore,
        cache: OutcomeAwareCache | None = None,
        group: SingleflightGroup | None = None,
        lock: CrossIsolateLock | None = None,
        settings: Settings | None = None,
        debug: bool | None = None,
    ):
        settings = settings or global_settings
        if debug is None:
            debug = settings.cache_debug
        self._store = store
        self._debug = debug
        if cache is None:
            cache = OutcomeAwareCache(max_size=settings.cache_max_entries, debug=debug)
        self.cache = cache
        self.group = group if group is not None else SingleflightGroup(debug=debug)
        if lock is None:
            lock = CrossIsolateLock(
                store, wait_seconds=settings.lock_wait_seconds, debug=debug
            )
        self.lock = lock
        self._tiered: dict[tuple[str, str], TieredPersistentCache] = {}
        self._chains: dict[str, FallbackChain] = {}

    def tiered_for(self, resource: ResourceConfig) -> TieredPersistentCache:
        """Tiered cache for a resource, one per (name, version)."""
        cache_key = (resource.name, resource.version)
        if cache_key not in self._tiered:
            self._tiered[cache_key] = TieredPersistentCache(
                self._store, resource.version, resource.tiers, debug=self._debug
            )
        return self._tiered[cache_key]

    async def get(
        self,
        resource: ResourceConfig,
        chain: FallbackChain,
        key: str | None = None,
    ) -> ServedResponse:
        """
        Serve a resource, refreshing it at most once across isolates where
        the store allows.

        Args:
            resource: Policy for the resource
            chain: Sources to refresh from, in priority order
            key: Request fingerprint for parameterized resources
                 (defaults to the resource name)

        Raises:
            NoDataAvailableError: nothing cached anywhere and every source failed
        """
        self._chains[chain.name] = chain
        resource_key = key or resource.name
        local_key = f"{resource_key}:{resource.version}"

        entry = self.cache.get(local_key)
        if entry is not None:
            return replace(entry.payload, source=ServedSource.CACHE)

        try:
            served, shared = await self.group.execute(
                local_key,
                lambda: self._resolve(resource, chain, resource_key, local_key),
            )
        except NoDataAvailableError:
            stale = self.cache.peek(local_key)
            if stale is None:
                raise
            logger.warning(f"Refresh of '{resource_key}' failed, serving local copy")
            return replace(stale.payload, source=ServedSource.STALE)

        if shared and served.source == ServedSource.UPSTREAM:
            return replace(served, source=ServedSource.DEDUP)
        return served

    async def _resolve(
        self,
        resource: ResourceConfig,
        chain: FallbackChain,
        resource_key: str,
        local_key: str,
    ) -> ServedResponse:
        tiered = self.tiered_for(resource)

        found = self._served_from_tier(
            await tiered.read_best_available(resource_key), ServedSource.STORE
        )
        if found is not None and found.tier == CacheTier.FRESH:
            return self._remember(resource, local_key, found)

        lock_key = resource.lock_key(resource_key)
        if await self.lock.try_acquire(lock_key, resource.lock_ttl_seconds):
            served = await self._refresh(resource, chain, tiered, resource_key, found)
            return self._remember(resource, local_key, served)

        logger.info(
            f"Refresh of '{resource_key}' held by another isolate, "
            f"waiting {resource.lock_wait_seconds}s"
        )
        await self.lock.wait(resource.lock_wait_seconds)

        refreshed = self._served_from_tier(
            await tiered.read(resource_key, CacheTier.FRESH), ServedSource.STORE
        )
        if refreshed is not None:
            return self._remember(resource, local_key, refreshed)
        if found is not None:
            return self._remember(resource, local_key, found)

        logger.warning(f"No refreshed '{resource_key}' after wait, degrading locally")
        try:
            result = await asyncio.wait_for(
                chain.run_degraded(), resource.upstream_timeout_seconds
            )
        except Exception as e:
            raise NoDataAvailableError(
                f"Degraded fallback for '{resource_key}' failed: {type(e).__name__}: {e}",
                service_id=chain.name,
            ) from e
        served = ServedResponse(
            value=result.value,
            source=ServedSource.DEGRADED,
            provider=result.provider,
            degraded=True,
            refreshed_at=datetime.now(),
        )
        return self._remember(resource, local_key, served)

    async def _refresh(
        self,
        resource: ResourceConfig,
        chain: FallbackChain,
        tiered: TieredPersistentCache,
        resource_key: str,
        found: ServedResponse | None,
    ) -> ServedResponse:
        """Lock holder: run the chain and persist what it produced."""
        timeout = resource.upstream_timeout_seconds
        try:
            result = await asyncio.wait_for(chain.run(), timeout)
        except (NoDataAvailableError, asyncio.TimeoutError) as e:
            if found is not None:
                logger.warning(
                    f"Refresh of '{resource_key}' failed ({type(e).__name__}), "
                    f"serving {found.tier.value} tier"
                )
                return found
            if isinstance(e, NoDataAvailableError):
                raise
            raise NoDataAvailableError(
                f"Refresh of '{resource_key}' timed out after {timeout}s",
                service_id=chain.name,
            ) from e

        snapshot = Snapshot(
            value=result.value,
            provider=result.provider,
            degraded=result.degraded,
            refreshed_at=datetime.now(),
        )
        if result.degraded:
            # Simulated data must not overwrite real stale/backup snapshots
            await tiered.write_tier(resource_key, CacheTier.FRESH, snapshot)
        else:
            await tiered.write_all(resource_key, snapshot)

        return ServedResponse(
            value=result.value,
            source=ServedSource.UPSTREAM,
            tier=CacheTier.FRESH,
            provider=result.provider,
            degraded=result.degraded,
            refreshed_at=snapshot.refreshed_at,
        )

    def _served_from_tier(
        self, found: TieredValue | None, source: ServedSource
    ) -> ServedResponse | None:
        if found is None:
            return None
        try:
            snapshot = Snapshot.model_validate(found.value)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable {found.tier.value} snapshot: {e}")
            return None
        return ServedResponse(
            value=snapshot.value,
            source=source if found.is_fresh else ServedSource.STALE,
            tier=found.tier,
            provider=snapshot.provider,
            degraded=snapshot.degraded,
            refreshed_at=snapshot.refreshed_at,
        )

    def _remember(
        self, resource: ResourceConfig, local_key: str, served: ServedResponse
    ) -> ServedResponse:
        """Keep served in local memory; anything less than fresh only briefly."""
        policy = resource.ttl_policy
        if served.tier != CacheTier.FRESH or served.degraded:
            policy = TTLPolicy(
                success_ttl=policy.failure_ttl, failure_ttl=policy.failure_ttl
            )
        self.cache.record(local_key, served, 200, policy)
        return served

    def get_health_status(self) -> dict[str, Any]:
        return {
            "cache": self.cache.get_stats().to_dict(),
            "singleflight": self.group.get_stats().to_dict(),
            "chains": {name: c.get_status() for name, c in self._chains.items()},
        }

    async def close(self) -> None:
        await self.group.cancel_all()
        await self._store.close()
