"""
SingleflightGroup - Collapses concurrent identical calls into one execution.

When multiple callers in the same process request the same key while a call
for it is in flight, only one call is made. Every caller observes the same
result, or the same exception.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class SingleflightGroup:
    """
    Per-process in-flight call deduplication.

    The in-flight entry is removed by the shared task itself, synchronously,
    before the task settles. A caller arriving after that point starts a new
    call; a caller arriving earlier joins the pending one. Nobody can attach
    to an entry that will never settle.

    Usage:
        group = SingleflightGroup()

        async def load(url: str):
            return await group.do(url, lambda: http_client.get(url))

        # Leader/follower aware variant
        value, shared = await group.execute(url, lambda: http_client.get(url))
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self._stats = SingleflightStats()

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn once for all concurrent callers of key and return its result."""
        result, _ = await self.execute(key, fn)
        return result

    async def execute(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
    ) -> tuple[T, bool]:
        """
        Like do(), also reporting whether this caller joined another's call.

        Returns:
            (result, shared) where shared is False for the caller that
            actually ran fn.
        """
        task = self._in_flight.get(key)
        shared = task is not None

        if task is None:
            self._stats.total += 1
            self._log(f"NEW: {key[:50]}")
            task = asyncio.create_task(self._run(key, fn))
            task.add_done_callback(_consume_exception)
            self._in_flight[key] = task
        else:
            self._stats.deduplicated += 1
            self._log(f"DEDUP: {key[:50]}")

        # shield: a cancelled waiter must not cancel the call others share
        result = await asyncio.shield(task)
        return result, shared

    async def _run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]
            self._log(f"DONE: {key[:50]}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def get_in_flight_count(self) -> int:
        """Get number of in-flight calls."""
        return len(self._in_flight)

    async def cancel_all(self) -> int:
        """Cancel all in-flight calls."""
        tasks = list(self._in_flight.values())
        self._in_flight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            self._log(f"CANCEL_ALL: {len(tasks)} calls cancelled")
        return len(tasks)

    def get_stats(self) -> "SingleflightStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Singleflight] {message}")


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Waiters re-raise the exception; this only silences "never retrieved"
    # when every waiter was cancelled first.
    if not task.cancelled():
        task.exception()


class SingleflightStats:
    """Statistics for call deduplication."""

    def __init__(self):
        self.total: int = 0  # Calls actually executed
        self.deduplicated: int = 0  # Callers that joined an in-flight call
        self.in_flight: int = 0  # Current in-flight calls

    @property
    def dedup_rate(self) -> float:
        """Calculate deduplication rate."""
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_calls": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
