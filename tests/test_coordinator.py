"""
Tests for the coordinated local -> tiered -> lock -> fallback flow.
"""

import asyncio
from datetime import datetime

import pytest

from edgecache.coordinator import ResourceCoordinator, ServedSource, Snapshot
from edgecache.resources import ResourceConfig
from edgecache.services.cache import OutcomeAwareCache
from edgecache.services.errors import NoDataAvailableError
from edgecache.services.fallback import FallbackChain, FallbackSource
from edgecache.services.tiered import CacheTier, TierTTLs
from edgecache.settings import Settings


class CountingSource:
    def __init__(self, value=None, error: Exception | None = None, delay: float = 0.0):
        self.value = value if value is not None else ["real"]
        self.error = error
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


def make_chain(primary: CountingSource, simulation: CountingSource | None = None):
    sources = [FallbackSource("primary", primary)]
    if simulation is not None:
        sources.append(
            FallbackSource("simulation", simulation, degraded=True, min_records=0)
        )
    return FallbackChain("posture", sources)


@pytest.fixture
def resource() -> ResourceConfig:
    return ResourceConfig(
        name="posture",
        version="v1",
        tiers=TierTTLs(fresh=60, stale=3600, backup=7200),
        lock_wait_seconds=0.01,
    )


@pytest.mark.asyncio
async def test_lock_winner_refreshes_and_persists(store, resource):
    primary = CountingSource(["carrier group"])
    coordinator = ResourceCoordinator(store)

    served = await coordinator.get(resource, make_chain(primary))

    assert served.value == ["carrier group"]
    assert served.source == ServedSource.UPSTREAM
    assert served.tier == CacheTier.FRESH
    assert served.provider == "primary"
    assert served.cached is False
    for tier in CacheTier:
        assert await store.get(f"posture:{tier.value}:v1") is not None


@pytest.mark.asyncio
async def test_second_call_served_from_local_memory(store, resource):
    primary = CountingSource()
    coordinator = ResourceCoordinator(store)

    await coordinator.get(resource, make_chain(primary))
    served = await coordinator.get(resource, make_chain(primary))

    assert served.source == ServedSource.CACHE
    assert served.to_metadata()["cached"] is True
    assert primary.calls == 1


@pytest.mark.asyncio
async def test_other_isolate_reads_fresh_tier(store, resource):
    primary = CountingSource()
    await ResourceCoordinator(store).get(resource, make_chain(primary))

    other = ResourceCoordinator(store)
    served = await other.get(resource, make_chain(primary))

    assert served.source == ServedSource.STORE
    assert served.tier == CacheTier.FRESH
    assert primary.calls == 1


@pytest.mark.asyncio
async def test_concurrent_local_callers_refresh_once(store, resource):
    primary = CountingSource(delay=0.05)
    coordinator = ResourceCoordinator(store)
    chain = make_chain(primary)

    results = await asyncio.wait_for(
        asyncio.gather(*(coordinator.get(resource, chain) for _ in range(5))), 5
    )

    assert primary.calls == 1
    assert all(r.value == ["real"] for r in results)
    sources = [r.source for r in results]
    assert sources.count(ServedSource.UPSTREAM) == 1
    assert sources.count(ServedSource.DEDUP) == 4
    assert sum(not r.cached for r in results) == 1


@pytest.mark.asyncio
async def test_lock_follower_degrades_when_nothing_appears(store, resource):
    await store.set(resource.lock_key(), "1", 30)
    primary = CountingSource()
    simulation = CountingSource(["simulated"])

    served = await ResourceCoordinator(store).get(
        resource, make_chain(primary, simulation)
    )

    assert served.source == ServedSource.DEGRADED
    assert served.degraded is True
    assert served.provider == "simulation"
    assert primary.calls == 0
    assert simulation.calls == 1
    # Follower results are never persisted
    assert await store.get("posture:fresh:v1") is None


@pytest.mark.asyncio
async def test_lock_follower_picks_up_holder_write(store):
    resource = ResourceConfig(name="posture", version="v1", lock_wait_seconds=0.2)
    await store.set(resource.lock_key(), "1", 30)
    coordinator = ResourceCoordinator(store)
    primary = CountingSource()

    async def holder():
        await asyncio.sleep(0.05)
        snapshot = Snapshot(
            value=["from holder"], provider="primary", refreshed_at=datetime.now()
        )
        await coordinator.tiered_for(resource).write_all("posture", snapshot)

    served, _ = await asyncio.gather(
        coordinator.get(resource, make_chain(primary)), holder()
    )

    assert served.source == ServedSource.STORE
    assert served.value == ["from holder"]
    assert primary.calls == 0


@pytest.mark.asyncio
async def test_stale_tier_served_when_refresh_fails(store, clock, resource):
    await ResourceCoordinator(store).get(resource, make_chain(CountingSource(["old"])))
    clock.advance(61)

    failing = CountingSource(error=ConnectionError("refused"))
    served = await ResourceCoordinator(store).get(resource, make_chain(failing))

    assert failing.calls == 1
    assert served.value == ["old"]
    assert served.source == ServedSource.STALE
    assert served.tier == CacheTier.STALE
    assert served.is_stale is True


@pytest.mark.asyncio
async def test_no_data_anywhere_raises(store, resource):
    failing = CountingSource(error=ConnectionError("refused"))

    with pytest.raises(NoDataAvailableError):
        await ResourceCoordinator(store).get(resource, make_chain(failing))


@pytest.mark.asyncio
async def test_degraded_refresh_only_written_to_fresh_tier(store, resource):
    failing = CountingSource(error=ConnectionError("refused"))
    simulation = CountingSource(["simulated"])

    served = await ResourceCoordinator(store).get(
        resource, make_chain(failing, simulation)
    )

    assert served.source == ServedSource.UPSTREAM
    assert served.degraded is True
    assert await store.get("posture:fresh:v1") is not None
    assert await store.get("posture:stale:v1") is None
    assert await store.get("posture:backup:v1") is None


@pytest.mark.asyncio
async def test_store_outage_still_serves_upstream(store, resource):
    store.available = False
    primary = CountingSource(["live"])

    served = await ResourceCoordinator(store).get(resource, make_chain(primary))

    assert served.source == ServedSource.UPSTREAM
    assert served.value == ["live"]


@pytest.mark.asyncio
async def test_keyed_variants_are_independent(store, resource):
    primary = CountingSource()
    coordinator = ResourceCoordinator(store)
    chain = make_chain(primary)

    await coordinator.get(resource, chain, key="posture:eu")
    await coordinator.get(resource, chain, key="posture:asia")

    assert primary.calls == 2
    assert await store.get("posture:eu:fresh:v1") is not None


@pytest.mark.asyncio
async def test_health_status_lists_chains(store, resource):
    coordinator = ResourceCoordinator(store)
    await coordinator.get(resource, make_chain(CountingSource()))

    status = coordinator.get_health_status()

    assert "posture" in status["chains"]
    assert status["singleflight"]["total_calls"] == 1


class HangingSource:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(3600)


@pytest.mark.asyncio
async def test_hanging_source_is_bounded_by_upstream_timeout(store):
    resource = ResourceConfig(
        name="posture", version="v1", upstream_timeout_seconds=0.1
    )
    coordinator = ResourceCoordinator(store)
    chain = FallbackChain("posture", [FallbackSource("primary", HangingSource())])

    with pytest.raises(NoDataAvailableError):
        await asyncio.wait_for(coordinator.get(resource, chain), 2)
    assert coordinator.group.get_in_flight_count() == 0


@pytest.mark.asyncio
async def test_hanging_refresh_serves_stale_tier(store, clock):
    resource = ResourceConfig(
        name="posture",
        version="v1",
        tiers=TierTTLs(fresh=60, stale=3600, backup=7200),
        upstream_timeout_seconds=0.1,
    )
    await ResourceCoordinator(store).get(resource, make_chain(CountingSource(["old"])))
    clock.advance(61)

    chain = FallbackChain("posture", [FallbackSource("primary", HangingSource())])
    served = await asyncio.wait_for(ResourceCoordinator(store).get(resource, chain), 2)

    assert served.value == ["old"]
    assert served.source == ServedSource.STALE


@pytest.mark.asyncio
async def test_hanging_degraded_source_is_bounded(store):
    resource = ResourceConfig(
        name="posture", version="v1", lock_wait_seconds=0.01, upstream_timeout_seconds=0.1
    )
    await store.set(resource.lock_key(), "1", 30)
    simulation = HangingSource()

    with pytest.raises(NoDataAvailableError):
        await asyncio.wait_for(
            ResourceCoordinator(store).get(resource, make_chain(CountingSource(), simulation)),
            2,
        )
    assert simulation.calls == 1


@pytest.mark.asyncio
async def test_injected_empty_cache_is_kept(store, resource):
    cache = OutcomeAwareCache(max_size=7)
    coordinator = ResourceCoordinator(store, cache=cache)

    assert coordinator.cache is cache
    await coordinator.get(resource, make_chain(CountingSource()))
    assert len(cache) == 1


def test_debug_defaults_from_settings(store):
    settings = Settings.model_validate({"CACHE_DEBUG": "true"})

    assert ResourceCoordinator(store, settings=settings)._debug is True
    assert ResourceCoordinator(store, settings=settings, debug=False)._debug is False
