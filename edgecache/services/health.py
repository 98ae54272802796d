"""
SourceHealth - per-source health signal for the fallback chain.

States:
- HEALTHY: Source is tried normally
- UNHEALTHY: Source failed repeatedly and is skipped
- PROBING: Cooldown elapsed, a single attempt is let through

Transitions:
- HEALTHY → UNHEALTHY: When failure_threshold consecutive failures are reached
- UNHEALTHY → PROBING: After cooldown expires
- PROBING → HEALTHY: On a healthy result
- PROBING → UNHEALTHY: On a failed or unhealthy result
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger


class HealthState(str, Enum):
    """Source health states."""

    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    PROBING = "PROBING"


@dataclass
class SourceHealthConfig:
    """Configuration for source health tracking."""

    failure_threshold: int = 3  # Consecutive failures before skipping
    cooldown: timedelta = timedelta(seconds=60)  # Time before probing again


class SourceHealth:
    """
    Health tracker for a single fallback source.

    Usage:
        health = SourceHealth("aviationstack")

        if health.try_begin():
            result = await source.fetch()
            health.record_success()  # or record_failure("reason")
    """

    def __init__(
        self,
        source_name: str,
        config: SourceHealthConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.source_name = source_name
        self.config = config or SourceHealthConfig()
        self._clock = clock

        self._state = HealthState.HEALTHY
        self._failure_count = 0
        self._last_failure_reason: str | None = None
        self._unhealthy_since: datetime | None = None
        self._probe_in_progress = False

    @property
    def state(self) -> HealthState:
        """Get current state, checking for the cooldown transition."""
        if self._state == HealthState.UNHEALTHY and self._unhealthy_since:
            if self._clock() >= self._unhealthy_since + self.config.cooldown:
                self._state = HealthState.PROBING
                self._probe_in_progress = False
                logger.info(f"Source '{self.source_name}' cooldown over, probing")
        return self._state

    def try_begin(self) -> bool:
        """Check if an attempt is allowed, claiming the probe slot if probing."""
        current = self.state
        if current == HealthState.HEALTHY:
            return True
        if current == HealthState.PROBING and not self._probe_in_progress:
            self._probe_in_progress = True
            return True
        return False

    def record_success(self) -> None:
        """Record a healthy result."""
        if self._state != HealthState.HEALTHY:
            logger.info(f"Source '{self.source_name}' recovered")
        self._state = HealthState.HEALTHY
        self._failure_count = 0
        self._unhealthy_since = None
        self._probe_in_progress = False

    def record_failure(self, reason: str = "") -> None:
        """Record a failed or unhealthy result."""
        self._failure_count += 1
        self._last_failure_reason = reason or None
        self._probe_in_progress = False

        if self._state == HealthState.PROBING or (
            self._state == HealthState.HEALTHY
            and self._failure_count >= self.config.failure_threshold
        ):
            self._mark_unhealthy()

    def _mark_unhealthy(self) -> None:
        self._state = HealthState.UNHEALTHY
        self._unhealthy_since = self._clock()
        logger.warning(
            f"Source '{self.source_name}' marked UNHEALTHY after "
            f"{self._failure_count} failures ({self._last_failure_reason})"
        )

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "source": self.source_name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure_reason": self._last_failure_reason,
            "unhealthy_since": (
                self._unhealthy_since.isoformat() if self._unhealthy_since else None
            ),
        }


class SourceHealthRegistry:
    """Health trackers for every source, created on first use."""

    def __init__(
        self,
        default_config: SourceHealthConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._sources: dict[str, SourceHealth] = {}
        self._default_config = default_config or SourceHealthConfig()
        self._clock = clock

    def get(self, source_name: str) -> SourceHealth:
        """Get or create the tracker for a source."""
        if source_name not in self._sources:
            self._sources[source_name] = SourceHealth(
                source_name, self._default_config, self._clock
            )
        return self._sources[source_name]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {name: h.get_status() for name, h in self._sources.items()}

    def get_unhealthy(self) -> list[str]:
        """Sources currently being skipped."""
        return [
            name
            for name, h in self._sources.items()
            if h.state == HealthState.UNHEALTHY
        ]
