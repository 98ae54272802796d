"""
FallbackChain - ordered fallback across independent upstream sources.

A source falls through not only when it raises, but also when its result
fails a health check: too many failed sub-queries, or no usable records
although the call nominally succeeded. The source that finally answered is
reported so consumers can tell primary data from degraded data.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

from loguru import logger

from edgecache.services.errors import NoDataAvailableError, SourceUnhealthyError
from edgecache.services.health import SourceHealthRegistry

T = TypeVar("T")
R = TypeVar("R")

# Batches smaller than this are never judged unhealthy by failure ratio
MIN_BATCH_FOR_HEALTH = 5


@dataclass
class SourceResult:
    """What a source returned, with optional sub-query counts."""

    records: Any
    succeeded: int = 0
    failed: int = 0
    healthy: bool | None = None  # Explicit verdict from the source, if any

    @property
    def record_count(self) -> int:
        if self.records is None:
            return 0
        try:
            return len(self.records)
        except TypeError:
            return 1

    @property
    def failure_ratio(self) -> float:
        total = self.succeeded + self.failed
        if total == 0:
            return 0.0
        return self.failed / total


@dataclass
class BatchOutcome:
    """Result of fanning a query out over many items."""

    records: list[Any] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    attempted: int = 0
    deadline_hit: bool = False

    @property
    def healthy(self) -> bool:
        return self.attempted < MIN_BATCH_FOR_HEALTH or self.failed <= self.succeeded

    def to_source_result(self) -> SourceResult:
        return SourceResult(
            records=self.records,
            succeeded=self.succeeded,
            failed=self.failed,
            healthy=self.healthy,
        )


async def run_batch(
    items: Sequence[T],
    query: Callable[[T], Awaitable[R | None]],
    concurrency: int = 10,
    deadline_seconds: float = 50.0,
    clock: Callable[[], float] = time.monotonic,
) -> BatchOutcome:
    """
    Run query over items in chunks of `concurrency`.

    A query that returns None succeeded without producing a record; one that
    raises counts as failed. No new chunk starts once the deadline passes.
    """
    outcome = BatchOutcome()
    deadline = clock() + deadline_seconds

    for start in range(0, len(items), concurrency):
        if clock() >= deadline:
            outcome.deadline_hit = True
            logger.warning(
                f"Batch deadline hit after {outcome.attempted}/{len(items)} items"
            )
            break

        chunk = items[start : start + concurrency]
        results = await asyncio.gather(
            *(query(item) for item in chunk), return_exceptions=True
        )
        for result in results:
            outcome.attempted += 1
            if isinstance(result, Exception):
                outcome.failed += 1
            else:
                outcome.succeeded += 1
                if result is not None:
                    outcome.records.append(result)

    if not outcome.healthy:
        logger.warning(
            f"Systemic batch failure: {outcome.failed}/{outcome.attempted} failed"
        )
    return outcome


@dataclass
class FallbackSource:
    """
    One source in a chain.

    `fetch` may return a SourceResult or bare records. A degraded source
    (simulation, estimates) is flagged so responses can say so.
    """

    name: str
    fetch: Callable[[], Awaitable[Any]]
    min_records: int = 1
    max_failure_ratio: float = 0.5
    degraded: bool = False
    timeout: float | None = None

    def unhealthy_reason(self, result: SourceResult) -> str | None:
        """Why result should not be served, or None if it is usable."""
        if result.healthy is False:
            return f"reported unhealthy ({result.failed} failed, {result.succeeded} ok)"
        if (
            result.succeeded + result.failed >= MIN_BATCH_FOR_HEALTH
            and result.failure_ratio > self.max_failure_ratio
        ):
            return f"{result.failure_ratio:.0%} of sub-queries failed"
        if result.record_count < self.min_records:
            return f"{result.record_count} usable records"
        return None


@dataclass
class SourceAttempt:
    source: str
    ok: bool
    reason: str = ""


@dataclass
class ChainResult:
    """Value produced by the chain and the source that produced it."""

    value: Any
    provider: str
    degraded: bool = False
    attempts: list[SourceAttempt] = field(default_factory=list)


class FallbackChain:
    """
    Try sources in priority order until one yields a healthy result.

    Usage:
        chain = FallbackChain(
            "aviation-intl",
            [
                FallbackSource("aviationstack", fetch_aviationstack),
                FallbackSource("simulation", simulate, degraded=True, min_records=0),
            ],
        )
        result = await chain.run()
        response["provider"] = result.provider
    """

    def __init__(
        self,
        name: str,
        sources: Iterable[FallbackSource],
        health: SourceHealthRegistry | None = None,
        timeout: float | None = None,
    ):
        self.name = name
        self.sources = list(sources)
        if not self.sources:
            raise ValueError(f"FallbackChain '{name}' needs at least one source")
        self._health = health if health is not None else SourceHealthRegistry()
        self._timeout = timeout

    @property
    def health(self) -> SourceHealthRegistry:
        return self._health

    async def run(self) -> ChainResult:
        """
        Raises:
            NoDataAvailableError: every source failed, was unhealthy or skipped
        """
        attempts: list[SourceAttempt] = []

        for source in self.sources:
            health = self._health.get(self._health_key(source))
            if not health.try_begin():
                logger.info(f"[{self.name}] Skipping unhealthy source '{source.name}'")
                attempts.append(SourceAttempt(source.name, False, "skipped: unhealthy"))
                continue

            reason: str | None = None
            try:
                result = await self._attempt(source)
            except SourceUnhealthyError as e:
                reason = str(e)
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"

            if reason is not None:
                logger.warning(f"[{self.name}] Source '{source.name}' failed: {reason}")
                health.record_failure(reason)
                attempts.append(SourceAttempt(source.name, False, reason))
                continue

            health.record_success()
            attempts.append(SourceAttempt(source.name, True))
            if source.degraded:
                logger.warning(f"[{self.name}] Serving degraded source '{source.name}'")
            return ChainResult(
                value=result.records,
                provider=source.name,
                degraded=source.degraded,
                attempts=attempts,
            )

        summary = "; ".join(f"{a.source}: {a.reason}" for a in attempts)
        raise NoDataAvailableError(
            f"All sources failed for '{self.name}' ({summary})", service_id=self.name
        )

    async def run_degraded(self) -> ChainResult:
        """Run only the last (weakest) source, bypassing health tracking."""
        source = self.sources[-1]
        result = await self._attempt(source)
        return ChainResult(
            value=result.records,
            provider=source.name,
            degraded=True,
            attempts=[SourceAttempt(source.name, True)],
        )

    async def _attempt(self, source: FallbackSource) -> SourceResult:
        timeout = self._timeout if source.timeout is None else source.timeout
        call = source.fetch()
        raw = await (asyncio.wait_for(call, timeout) if timeout is not None else call)

        result = raw if isinstance(raw, SourceResult) else SourceResult(records=raw)
        reason = source.unhealthy_reason(result)
        if reason:
            raise SourceUnhealthyError(reason, service_id=source.name)
        return result

    def _health_key(self, source: FallbackSource) -> str:
        return f"{self.name}:{source.name}"

    def get_status(self) -> dict[str, Any]:
        return {
            "chain": self.name,
            "sources": [s.name for s in self.sources],
            "health": self._health.get_all_status(),
        }
