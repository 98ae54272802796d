"""
Pytest configuration and fixtures.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

import pytest

from edgecache.services.errors import UpstreamTransportError
from edgecache.services.fetcher import UpstreamResponse
from edgecache.store.memory import InMemoryStore


class FakeClock:
    """Manually advanced clock usable as both a datetime and a float source."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def time(self) -> float:
        return self._now.timestamp()

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


class CountingUpstream:
    """Upstream stand-in that counts calls and can be reconfigured between them."""

    def __init__(
        self,
        status_code: int = 200,
        payload: Any = "ok",
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.status_code = status_code
        self.payload = payload
        self.delay = delay
        self.error = error
        self.calls = 0

    async def __call__(self) -> UpstreamResponse:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return UpstreamResponse(self.status_code, self.payload)

    def fail_with_transport_error(self) -> None:
        self.error = UpstreamTransportError("connection reset", service_id="test")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock.time)


@pytest.fixture
def upstream() -> CountingUpstream:
    return CountingUpstream()
