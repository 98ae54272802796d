"""
httpx-backed upstream functions for ResilientFetcher.
"""

from typing import Any, Literal

import httpx
from loguru import logger

from edgecache.services.errors import RequestTimeoutError, UpstreamTransportError
from edgecache.services.fetcher import UpstreamResponse

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Shared client (lazy initialization)
_http_client: httpx.AsyncClient | None = None


def get_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Get or create the process-wide HTTP client."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            max_redirects=3,
            headers={"User-Agent": DEFAULT_USER_AGENT},
        )
    return _http_client


async def close_http_client() -> None:
    """Close the process-wide HTTP client."""
    global _http_client
    if _http_client:
        await _http_client.aclose()
        _http_client = None


def http_upstream(
    url: str,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    method: str = "GET",
    json_data: dict[str, Any] | None = None,
    parse: Literal["json", "text", "bytes"] = "json",
    timeout: float | None = None,
    service_id: str = "upstream",
    client: httpx.AsyncClient | None = None,
):
    """
    Build an upstream function that performs one HTTP request.

    Every HTTP status is returned as an UpstreamResponse so the caller can
    cache non-2xx outcomes; only transport problems raise.

    Usage:
        result = await fetcher.fetch(fp, http_upstream(feed_url, parse="text"))
    """

    async def call() -> UpstreamResponse:
        http = client or get_http_client()
        try:
            response = await http.request(
                method=method,
                url=url,
                params=params,
                headers=headers,
                json=json_data,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                service_id, timeout or http.timeout.read or 0.0
            ) from e

        except httpx.RequestError as e:
            raise UpstreamTransportError(
                f"{type(e).__name__}: {e}", service_id=service_id
            ) from e

        if not response.is_success:
            logger.warning(f"[{service_id}] HTTP {response.status_code} for {url}")
            return UpstreamResponse(response.status_code, response.text[:500])

        return UpstreamResponse(response.status_code, _parse_body(response, parse))

    return call


def _parse_body(response: httpx.Response, parse: str) -> Any:
    if parse == "bytes":
        return response.content
    if parse == "text":
        return response.text
    try:
        return response.json()
    except ValueError:
        return response.text
