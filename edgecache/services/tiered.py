"""
TieredPersistentCache - fresh / stale / backup copies in the shared store.

Every successful refresh writes the same value under three keys with
increasing TTLs. During a long upstream outage, reads walk down the tiers and
serve increasingly old snapshots instead of failing once one TTL lapses.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, model_validator

from edgecache.services.errors import ConfigError, StoreUnavailableError
from edgecache.store.base import AbstractStore


class CacheTier(str, Enum):
    """Persistence tiers, in read order."""

    FRESH = "fresh"
    STALE = "stale"
    BACKUP = "backup"


class TierTTLs(BaseModel):
    """TTL per tier, in seconds."""

    fresh: int = Field(default=300, gt=0)  # Normal refresh cadence
    stale: int = Field(default=86400, gt=0)  # A day of outage
    backup: int = Field(default=604800, gt=0)  # A week of outage

    @model_validator(mode="after")
    def _check_order(self) -> "TierTTLs":
        if not self.fresh < self.stale < self.backup:
            raise ValueError(
                f"tier TTLs must increase: fresh={self.fresh} "
                f"stale={self.stale} backup={self.backup}"
            )
        return self

    def for_tier(self, tier: CacheTier) -> int:
        return getattr(self, tier.value)


@dataclass
class TieredValue:
    """A value read from the store and the tier that served it."""

    value: Any
    tier: CacheTier

    @property
    def is_fresh(self) -> bool:
        return self.tier == CacheTier.FRESH


def _encode(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


class TieredPersistentCache:
    """
    Three-tier cache over an AbstractStore.

    Usage:
        tiered = TieredPersistentCache(store, version="v4")

        await tiered.write_all("theater-posture", posture)

        found = await tiered.read_best_available("theater-posture")
        if found:
            response["stale"] = not found.is_fresh
    """

    def __init__(
        self,
        store: AbstractStore,
        version: str,
        ttls: TierTTLs | None = None,
        debug: bool = False,
    ):
        if not version:
            raise ConfigError("TieredPersistentCache requires a schema version")
        self._store = store
        self._version = version
        self._ttls = ttls or TierTTLs()
        self._debug = debug

    @property
    def version(self) -> str:
        return self._version

    @property
    def ttls(self) -> TierTTLs:
        return self._ttls

    def key_for(self, resource: str, tier: CacheTier) -> str:
        """Store key for one tier of a resource, e.g. 'risk-scores:stale:v4'."""
        return f"{resource}:{tier.value}:{self._version}"

    async def write_all(self, resource: str, value: Any) -> int:
        """
        Write value to every tier in parallel.

        A failed write to one tier does not stop the others. Returns the
        number of tiers written.
        """
        raw = json.dumps(value, default=_encode)
        tiers = list(CacheTier)
        results = await asyncio.gather(
            *(
                self._store.set(
                    self.key_for(resource, tier), raw, self._ttls.for_tier(tier)
                )
                for tier in tiers
            ),
            return_exceptions=True,
        )

        written = 0
        for tier, result in zip(tiers, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Failed to write {tier.value} tier for '{resource}': {result}"
                )
            else:
                written += 1

        self._log(f"WRITE: {resource} ({written}/{len(tiers)} tiers)")
        return written

    async def write_tier(self, resource: str, tier: CacheTier, value: Any) -> bool:
        """Write value to a single tier. Returns False if the store failed."""
        key = self.key_for(resource, tier)
        try:
            await self._store.set(
                key, json.dumps(value, default=_encode), self._ttls.for_tier(tier)
            )
        except StoreUnavailableError as e:
            logger.warning(f"Failed to write {key}: {e}")
            return False
        self._log(f"WRITE: {key}")
        return True

    async def read(self, resource: str, tier: CacheTier) -> TieredValue | None:
        """Read a single tier. Store failures and bad payloads read as absent."""
        key = self.key_for(resource, tier)
        try:
            raw = await self._store.get(key)
        except StoreUnavailableError as e:
            logger.warning(f"Store unavailable reading {key}: {e}")
            return None

        if raw is None:
            return None

        try:
            value = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding malformed cache value at {key}: {e}")
            return None
        return TieredValue(value=value, tier=tier)

    async def read_best_available(self, resource: str) -> TieredValue | None:
        """Read fresh, then stale, then backup; report the tier that answered."""
        for tier in CacheTier:
            found = await self.read(resource, tier)
            if found is not None:
                if tier == CacheTier.FRESH:
                    self._log(f"FRESH HIT: {resource}")
                else:
                    logger.warning(f"Serving {tier.value} tier for '{resource}'")
                return found

        self._log(f"MISS: {resource}")
        return None

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TieredCache] {message}")
