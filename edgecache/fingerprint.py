"""
Deterministic cache keys for logical requests.

Keys must agree across isolates, so nothing here may depend on process
state: no builtin hash(), no time, no randomness.
"""

import hashlib
import re
from typing import Any, Iterable

_WHITESPACE = re.compile(r"\s+")


def hash_string(text: str, length: int = 16) -> str:
    """Stable short hex digest of text."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()[:length]


def normalize_item(item: str) -> str:
    """Collapse whitespace so cosmetic differences share a key."""
    return _WHITESPACE.sub(" ", item).strip()


def fingerprint(
    namespace: str,
    version: str,
    items: Iterable[str] = (),
    mode: str = "",
    variant: str = "",
    context: str = "",
    max_items: int | None = None,
) -> str:
    """
    Build a cache key from normalized request inputs.

    Items are normalized, truncated to `max_items` in request order and then
    sorted, so the same set of inputs yields the same key regardless of the
    order the client sent them in. `version` is embedded verbatim; bumping it
    retires every key built with the old value.

    Example:
        >>> fingerprint("summary", "v3", ["b", "a"], mode="brief", variant="full")
        'summary:v3:full:...'
    """
    if not version:
        raise ValueError("fingerprint requires a non-empty version tag")

    normalized = [normalize_item(i) for i in items if i and i.strip()]
    if max_items is not None:
        normalized = normalized[:max_items]
    joined = "|".join(sorted(normalized))

    key = f"{namespace}:{version}:{variant or 'default'}:{hash_string(f'{mode}:{joined}')}"
    if context:
        key += f":g{hash_string(context, 6)}"
    return key


def request_fingerprint(
    url: str,
    version: str,
    params: dict[str, Any] | None = None,
) -> str:
    """Cache key for a URL plus query params (param order insensitive)."""
    if params:
        sorted_params = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        full_key = f"{url}?{sorted_params}"
    else:
        full_key = url

    # Hash long keys
    if len(full_key) > 200:
        full_key = hash_string(full_key)

    return f"req:{version}:{full_key}"
