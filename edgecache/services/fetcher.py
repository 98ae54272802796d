"""
ResilientFetcher - fetch-with-cache for a single logical request.

Combines:
- OutcomeAwareCache for success and negative caching
- SingleflightGroup for concurrent request collapsing
- Explicit upstream timeout and stale-on-error fallback
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from edgecache.services.cache import (
    CacheEntry,
    OutcomeAwareCache,
    TTLPolicy,
    is_success,
)
from edgecache.services.errors import (
    NoDataAvailableError,
    RequestTimeoutError,
    UpstreamStatusError,
    UpstreamTransportError,
)
from edgecache.services.singleflight import SingleflightGroup


@dataclass(frozen=True)
class UpstreamResponse:
    """What an upstream call produced: any HTTP status plus its payload."""

    status_code: int
    payload: Any = None


UpstreamFn = Callable[[], Awaitable[Union[UpstreamResponse, tuple[int, Any]]]]


class FetchSource(str, Enum):
    """Which path answered a fetch."""

    CACHE = "cache"  # Fresh local entry
    UPSTREAM = "upstream"  # This caller's own upstream call
    DEDUP = "dedup"  # Joined another caller's in-flight upstream call
    STALE = "stale"  # Upstream failed, previous entry served


_CACHE_HEADERS = {
    FetchSource.CACHE: "HIT",
    FetchSource.UPSTREAM: "MISS",
    FetchSource.DEDUP: "DEDUP",
    FetchSource.STALE: "STALE",
}


@dataclass
class FetchResult:
    """Result from a fetch, tagged with where it came from."""

    payload: Any
    status_code: int
    source: FetchSource
    fingerprint: str

    @property
    def cached(self) -> bool:
        return self.source in (FetchSource.CACHE, FetchSource.STALE)

    @property
    def is_stale(self) -> bool:
        return self.source == FetchSource.STALE

    def cache_header(self) -> str:
        """Value for an X-Cache response header."""
        return _CACHE_HEADERS[self.source]

    def to_metadata(self) -> dict[str, Any]:
        return {
            "cached": self.cached,
            "stale": self.is_stale,
            "source": self.source.value,
            "status": self.status_code,
        }


class ResilientFetcher:
    """
    Process-local fetch-with-cache.

    Only transport failures and timeouts fall back to stale data. An upstream
    that answers with a non-2xx status is a normal outcome: it is returned and
    cached under the short failure TTL so a struggling upstream is not
    retried by every request.

    Usage:
        fetcher = ResilientFetcher(service_id="rss")

        result = await fetcher.fetch(
            fingerprint=request_fingerprint(feed_url, "v1"),
            upstream_fn=http_upstream(feed_url, parse="text"),
        )
        headers["X-Cache"] = result.cache_header()
    """

    def __init__(
        self,
        cache: OutcomeAwareCache | None = None,
        group: SingleflightGroup | None = None,
        timeout: float = 15.0,
        service_id: str = "upstream",
        debug: bool = False,
    ):
        # An empty cache is falsy (__len__), so test against None
        self.cache = cache if cache is not None else OutcomeAwareCache(debug=debug)
        self.group = group if group is not None else SingleflightGroup(debug=debug)
        self._timeout = timeout
        self._service_id = service_id

    async def fetch(
        self,
        fingerprint: str,
        upstream_fn: UpstreamFn,
        ttl_policy: TTLPolicy | None = None,
        timeout: float | None = None,
    ) -> FetchResult:
        """
        Return the outcome for fingerprint, calling upstream at most once
        across concurrent callers.

        Raises:
            NoDataAvailableError: upstream failed and nothing was ever cached
        """
        entry = self.cache.get(fingerprint)
        if entry is not None:
            return self._result(fingerprint, entry, FetchSource.CACHE)

        req_timeout = self._timeout if timeout is None else timeout

        async def call_upstream() -> CacheEntry:
            response = await self._call(upstream_fn, req_timeout)
            if not is_success(response.status_code):
                logger.warning(
                    f"Upstream {self._service_id} returned {response.status_code} "
                    f"for {fingerprint[:50]}, caching negatively"
                )
            return self.cache.record(
                fingerprint, response.payload, response.status_code, ttl_policy
            )

        try:
            entry, shared = await self.group.execute(fingerprint, call_upstream)
        except UpstreamTransportError as e:
            stale = self.cache.peek(fingerprint)
            if stale is not None:
                logger.warning(
                    f"Request to {self._service_id} failed, returning stale data: {e}"
                )
                return self._result(fingerprint, stale, FetchSource.STALE)
            raise NoDataAvailableError(
                f"No cached data for {fingerprint[:50]} and upstream failed: {e}",
                service_id=self._service_id,
            ) from e

        source = FetchSource.DEDUP if shared else FetchSource.UPSTREAM
        return self._result(fingerprint, entry, source)

    async def _call(self, upstream_fn: UpstreamFn, timeout: float) -> UpstreamResponse:
        """Run the upstream call, normalizing every failure to a transport error."""
        try:
            response = await asyncio.wait_for(upstream_fn(), timeout)

        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(self._service_id, timeout) from e

        except UpstreamStatusError as e:
            return UpstreamResponse(e.status_code, e.body)

        except UpstreamTransportError:
            raise

        except Exception as e:
            raise UpstreamTransportError(
                f"{type(e).__name__}: {e}", service_id=self._service_id
            ) from e

        if isinstance(response, tuple):
            status_code, payload = response
            return UpstreamResponse(status_code, payload)
        return response

    @staticmethod
    def _result(fingerprint: str, entry: CacheEntry, source: FetchSource) -> FetchResult:
        return FetchResult(
            payload=entry.payload,
            status_code=entry.status_code,
            source=source,
            fingerprint=fingerprint,
        )

    def get_health_status(self) -> dict[str, Any]:
        return {
            "service_id": self._service_id,
            "cache": self.cache.get_stats().to_dict(),
            "singleflight": self.group.get_stats().to_dict(),
        }

    async def close(self) -> None:
        await self.group.cancel_all()
