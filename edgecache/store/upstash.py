"""
UpstashStore - AbstractStore over the Upstash Redis REST API.

Every command is a single JSON-array POST, so SET ... EX is atomic and
SET ... NX gives the conditional set the cross-isolate lock relies on.
"""

from typing import Any

import httpx
from loguru import logger

from edgecache.services.errors import StoreUnavailableError
from edgecache.settings import Settings, global_settings
from edgecache.store.base import AbstractStore


def build_key_prefix(env: str | None, commit_sha: str | None) -> str:
    """
    Prefix that keeps non-production deployments out of production keys.

    Production (or an unset env) shares the bare keyspace; previews and dev
    builds get "{env}:{sha[:8]}:".
    """
    if not env or env == "production":
        return ""
    sha = (commit_sha or "")[:8] or "dev"
    return f"{env}:{sha}:"


class UpstashStore(AbstractStore):
    """
    Shared store backed by Upstash REST.

    Usage:
        store = UpstashStore.from_settings()
        await store.set("summary:v3:abc", payload, ttl_seconds=86400)
    """

    def __init__(
        self,
        url: str,
        token: str,
        key_prefix: str = "",
        timeout: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = url.rstrip("/")
        self._key_prefix = key_prefix
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"Authorization": f"Bearer {token}"},
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "UpstashStore":
        settings = settings or global_settings
        return cls(
            url=settings.upstash_redis_rest_url,
            token=settings.upstash_redis_rest_token,
            key_prefix=build_key_prefix(
                settings.deploy_env, settings.deploy_commit_sha
            ),
            timeout=settings.store_timeout_seconds,
        )

    def prefixed(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> str | None:
        data = await self._command(["GET", self.prefixed(key)])
        return data.get("result")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._command(["SET", self.prefixed(key), value, "EX", str(ttl_seconds)])

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        data = await self._command(
            ["SET", self.prefixed(key), value, "EX", str(ttl_seconds), "NX"]
        )
        # NX answers "OK" when set, null when the key already exists
        return data.get("result") == "OK"

    async def get_many(self, keys: list[str]) -> dict[str, str]:
        if not keys:
            return {}
        results = await self._post(
            "/pipeline", [["GET", self.prefixed(k)] for k in keys]
        )
        if not isinstance(results, list):
            raise StoreUnavailableError("Malformed pipeline response from store")

        found: dict[str, str] = {}
        for key, item in zip(keys, results):
            value = item.get("result") if isinstance(item, dict) else None
            if value is not None:
                found[key] = value
        return found

    async def _command(self, command: list[str]) -> dict[str, Any]:
        data = await self._post("", command)
        if not isinstance(data, dict):
            raise StoreUnavailableError("Malformed response from store")
        if "error" in data:
            raise StoreUnavailableError(f"Store error: {data['error']}")
        return data

    async def _post(self, path: str, body: Any) -> Any:
        try:
            response = await self._client.post(f"{self._url}{path}", json=body)
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            logger.warning(f"Store request timed out after {self._timeout}s")
            raise StoreUnavailableError(
                f"Store timed out after {self._timeout}s"
            ) from e

        except httpx.HTTPStatusError as e:
            raise StoreUnavailableError(
                f"Store HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e

        except (httpx.RequestError, ValueError) as e:
            raise StoreUnavailableError(f"Store request failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("UpstashStore closed")
