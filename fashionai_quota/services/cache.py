"""
Response Cache - in-memory key/value store with per-entry TTL.

Expired entries are purged lazily when their key is read; there is no
background sweep, so memory is reclaimed on access only. Suitable for a
process-lifetime cache of AI responses, not for a high-churn keyspace.
"""

import hashlib
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fashionai_quota.observability import get_logger, metrics

logger = get_logger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.split()).casefold()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def make_cache_key(namespace: str, **params: Any) -> str:
    """
    Derive a cache key from normalized request parameters.

    Strings are whitespace-collapsed and case-folded and keys are sorted, so
    "Blue  Jeans" and "blue jeans" share an entry. The parameters are hashed;
    raw prompts never become dictionary keys.
    """
    payload = json.dumps(_normalize(params), sort_keys=True, default=str)
    digest = hashlib.sha256(payload.encode()).hexdigest()
    return f"{namespace}:{digest}"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Key/value cache with absolute per-entry expiry.

    Usage:
        cache = TTLCache()
        key = make_cache_key("chat", message=message)
        reply = cache.get(key)
        if reply is None:
            reply = await generate_reply(message)
            cache.set(key, reply, ttl_ms=60_000)
    """

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock or _monotonic_ms
        self._entries: dict[str, CacheEntry] = {}

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Store value until now + ttl_ms, replacing any existing entry."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for key, or default if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            metrics.record_cache_lookup(hit=False)
            return default

        if self._clock() >= entry.expires_at:
            del self._entries[key]
            metrics.record_cache_lookup(hit=False)
            return default

        metrics.record_cache_lookup(hit=True)
        return entry.value

    def clear(self) -> None:
        """Remove every entry."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("response_cache_cleared", entries=count)

    def size(self) -> int:
        """Number of stored entries, including expired ones not yet read."""
        return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: str) -> bool:
        return key in self._entries
