"""
Service layer infrastructure - resilience patterns for volatile upstreams.

Provides:
- OutcomeAwareCache: Local cache with success and negative TTLs, FIFO bounded
- SingleflightGroup: Collapses concurrent identical calls
- ResilientFetcher: Cache + singleflight + timeout + stale-on-error
- TieredPersistentCache: Fresh / stale / backup copies in the shared store
- CrossIsolateLock: Conditional-set refresh lock across isolates
- FallbackChain: Ordered sources with per-source health
- StoreJsonCache: Shared-store JSON cache with negative sentinel
"""

from edgecache.services.errors import (
    ServiceError,
    UpstreamTransportError,
    RequestTimeoutError,
    UpstreamStatusError,
    StoreUnavailableError,
    NoDataAvailableError,
    SourceUnhealthyError,
    ConfigError,
)
from edgecache.services.cache import CacheEntry, CacheStats, OutcomeAwareCache, TTLPolicy
from edgecache.services.singleflight import SingleflightGroup
from edgecache.services.fetcher import (
    FetchResult,
    FetchSource,
    ResilientFetcher,
    UpstreamResponse,
)
from edgecache.services.http import close_http_client, get_http_client, http_upstream
from edgecache.services.tiered import (
    CacheTier,
    TieredPersistentCache,
    TieredValue,
    TierTTLs,
)
from edgecache.services.lock import CrossIsolateLock
from edgecache.services.health import HealthState, SourceHealth, SourceHealthRegistry
from edgecache.services.fallback import (
    BatchOutcome,
    ChainResult,
    FallbackChain,
    FallbackSource,
    SourceResult,
    run_batch,
)
from edgecache.services.store_cache import StoreJsonCache

__all__ = [
    # Errors
    "ServiceError",
    "UpstreamTransportError",
    "RequestTimeoutError",
    "UpstreamStatusError",
    "StoreUnavailableError",
    "NoDataAvailableError",
    "SourceUnhealthyError",
    "ConfigError",
    # Local cache
    "CacheEntry",
    "CacheStats",
    "OutcomeAwareCache",
    "TTLPolicy",
    # Singleflight
    "SingleflightGroup",
    # Fetcher
    "FetchResult",
    "FetchSource",
    "ResilientFetcher",
    "UpstreamResponse",
    "http_upstream",
    "get_http_client",
    "close_http_client",
    # Shared store tiers and lock
    "CacheTier",
    "TieredPersistentCache",
    "TieredValue",
    "TierTTLs",
    "CrossIsolateLock",
    "StoreJsonCache",
    # Fallback
    "HealthState",
    "SourceHealth",
    "SourceHealthRegistry",
    "BatchOutcome",
    "ChainResult",
    "FallbackChain",
    "FallbackSource",
    "SourceResult",
    "run_batch",
]
