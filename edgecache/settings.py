import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Shared store (Upstash REST)
    upstash_redis_rest_url: str = Field(default="", alias="UPSTASH_REDIS_REST_URL")
    upstash_redis_rest_token: str = Field(
        default="", alias="UPSTASH_REDIS_REST_TOKEN"
    )
    store_timeout_seconds: float = Field(default=3.0, alias="STORE_TIMEOUT_SECONDS")
    store_negative_ttl_seconds: int = Field(
        default=120, alias="STORE_NEGATIVE_TTL_SECONDS"
    )

    # Deployment (used for store key prefixing)
    deploy_env: str | None = Field(default=None, alias="DEPLOY_ENV")
    deploy_commit_sha: str | None = Field(default=None, alias="DEPLOY_COMMIT_SHA")

    # Local outcome cache
    cache_max_entries: int = Field(default=200, alias="CACHE_MAX_ENTRIES")
    cache_success_ttl_seconds: int = Field(
        default=300, alias="CACHE_SUCCESS_TTL_SECONDS"
    )
    cache_negative_ttl_seconds: int = Field(
        default=60, alias="CACHE_NEGATIVE_TTL_SECONDS"
    )
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Upstream calls
    upstream_timeout_seconds: float = Field(
        default=15.0, alias="UPSTREAM_TIMEOUT_SECONDS"
    )

    # Tiered persistence
    tier_fresh_ttl_seconds: int = Field(default=300, alias="TIER_FRESH_TTL_SECONDS")
    tier_stale_ttl_seconds: int = Field(
        default=86400, alias="TIER_STALE_TTL_SECONDS"
    )
    tier_backup_ttl_seconds: int = Field(
        default=604800, alias="TIER_BACKUP_TTL_SECONDS"
    )

    # Cross-isolate lock
    lock_ttl_seconds: int = Field(default=30, alias="LOCK_TTL_SECONDS")
    lock_wait_seconds: float = Field(default=3.0, alias="LOCK_WAIT_SECONDS")

    # Resource policies
    resources_config_path: str = Field(
        default=str(Path(__file__).parent / "resources.yaml"),
        alias="RESOURCES_CONFIG_PATH",
    )

    @property
    def store_configured(self) -> bool:
        return bool(self.upstash_redis_rest_url and self.upstash_redis_rest_token)


global_settings = Settings.model_validate(dict(os.environ))
