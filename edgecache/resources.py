"""
Resource policies - per-resource versions, TTLs and lock settings.
"""

from datetime import timedelta
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from edgecache.services.cache import TTLPolicy
from edgecache.services.errors import ConfigError
from edgecache.services.tiered import TierTTLs
from edgecache.settings import Settings, global_settings


class ResourceConfig(BaseModel):
    """Cache policy for one logical resource."""

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)  # Bump to retire every stored key
    description: str = ""
    tiers: TierTTLs = Field(default_factory=TierTTLs)
    success_ttl_seconds: int = Field(default=300, gt=0)
    negative_ttl_seconds: int = Field(default=60, gt=0)
    upstream_timeout_seconds: float = Field(default=15.0, gt=0)
    lock_ttl_seconds: int = Field(default=30, gt=0)
    lock_wait_seconds: float = Field(default=3.0, ge=0)

    @model_validator(mode="after")
    def _check_lock(self) -> "ResourceConfig":
        if self.lock_ttl_seconds <= self.lock_wait_seconds:
            raise ValueError(
                f"lock_ttl_seconds ({self.lock_ttl_seconds}) must exceed "
                f"lock_wait_seconds ({self.lock_wait_seconds})"
            )
        return self

    def lock_key(self, resource_key: str | None = None) -> str:
        """Store key of the refresh lock for this resource (or one keyed variant)."""
        return f"{resource_key or self.name}:lock:{self.version}"

    @property
    def ttl_policy(self) -> TTLPolicy:
        return TTLPolicy(
            success_ttl=timedelta(seconds=self.success_ttl_seconds),
            failure_ttl=timedelta(seconds=self.negative_ttl_seconds),
        )

    @classmethod
    def from_settings(
        cls,
        name: str,
        version: str,
        settings: Settings | None = None,
        **overrides: Any,
    ) -> "ResourceConfig":
        """Resource config whose unset fields come from process settings."""
        settings = settings or global_settings
        values: dict[str, Any] = {
            "name": name,
            "version": version,
            "tiers": {
                "fresh": settings.tier_fresh_ttl_seconds,
                "stale": settings.tier_stale_ttl_seconds,
                "backup": settings.tier_backup_ttl_seconds,
            },
            "success_ttl_seconds": settings.cache_success_ttl_seconds,
            "negative_ttl_seconds": settings.cache_negative_ttl_seconds,
            "upstream_timeout_seconds": settings.upstream_timeout_seconds,
            "lock_ttl_seconds": settings.lock_ttl_seconds,
            "lock_wait_seconds": settings.lock_wait_seconds,
        }
        values.update(overrides)
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"Invalid resource config '{name}': {e}") from e


class ResourcesFile(BaseModel):
    """Top-level layout of the resources YAML file."""

    version: str = "1.0"
    defaults: dict[str, Any] = Field(default_factory=dict)
    resources: list[dict[str, Any]] = Field(default_factory=list)


class ResourceRegistry:
    """
    Registry of resource policies loaded from YAML.

    Usage:
        registry = ResourceRegistry()
        config = registry.get("theater-posture")
    """

    def __init__(
        self,
        config_path: str | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or global_settings
        self.config_path = Path(config_path or self._settings.resources_config_path)
        self._resources: dict[str, ResourceConfig] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load YAML resource policies. Invalid entries are skipped."""
        import yaml

        self._resources.clear()
        if not self.config_path.exists():
            logger.warning(
                f"Resource config not found: {self.config_path}, no resources loaded"
            )
            return

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = ResourcesFile(**(yaml.safe_load(f) or {}))
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error(f"Failed to load resource config {self.config_path}: {e}")
            return

        for entry in data.resources:
            merged = {**data.defaults, **entry}
            name = merged.pop("name", "")
            version = merged.pop("version", "")
            try:
                self.register(
                    ResourceConfig.from_settings(
                        name, version, self._settings, **merged
                    )
                )
            except ConfigError as e:
                logger.error(f"Skipping resource '{name}': {e}")

        logger.info(
            f"Loaded {len(self._resources)} resources from {self.config_path}"
        )

    def register(self, config: ResourceConfig) -> None:
        self._resources[config.name] = config
        logger.debug(f"Registered resource: {config.name} ({config.version})")

    def get(self, name: str) -> ResourceConfig:
        try:
            return self._resources[name]
        except KeyError:
            raise ConfigError(f"Unknown resource '{name}'") from None

    def names(self) -> list[str]:
        return sorted(self._resources)

    def reload(self) -> None:
        """Reload resource policies from disk."""
        logger.info("Reloading resource configuration...")
        self._load_config()

    def get_status(self) -> dict[str, Any]:
        return {
            "config_path": str(self.config_path),
            "resources": {
                name: {
                    "version": cfg.version,
                    "tiers": cfg.tiers.model_dump(),
                    "lock_ttl_seconds": cfg.lock_ttl_seconds,
                }
                for name, cfg in sorted(self._resources.items())
            },
        }
