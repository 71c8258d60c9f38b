"""LRU cache wrapper over diskcache.

Storage, least-recently-used eviction, expiry and hit/miss accounting are
delegated to diskcache. This module only builds cache keys and applies the
per-cache TTL from configuration.

Named caches:
- ai: generated AI content
- user: per-user state (A/B assignments, preferences)
- suggestions: prompt suggestion batches
"""

from __future__ import annotations

import base64
import json
import threading
from pathlib import Path
from typing import Any

import diskcache
import structlog

from smartpromptiq.config.app_config import load_app_config

logger = structlog.get_logger(__name__)

KNOWN_CACHES = ("ai", "user", "suggestions")

_MISSING = object()


def make_cache_key(namespace: str, payload: Any) -> str:
    """Build a deterministic cache key.

    The payload is serialized to compact JSON with sorted keys and then
    base64-encoded, so equal payloads always map to the same key.

    Args:
        namespace: Key prefix, e.g. "prompt"
        payload: Any JSON-serializable value

    Returns:
        Key of the form "{namespace}:{base64}"
    """
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return f"{namespace}:{encoded}"


class LRUCache:
    """A named LRU cache with a default TTL."""

    def __init__(
        self,
        name: str,
        ttl: int,
        directory: str | Path | None = None,
        size_limit: int = 64 * 1024**2,
    ):
        self.name = name
        self.ttl = ttl
        self._cache = diskcache.Cache(
            directory=str(directory) if directory is not None else None,
            size_limit=size_limit,
            eviction_policy="least-recently-used",
        )
        self._cache.stats(enable=True)
        logger.debug(
            "cache_initialized",
            cache=name,
            ttl=ttl,
            directory=self._cache.directory,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or default when missing or expired."""
        value = self._cache.get(key, default=_MISSING)
        if value is _MISSING:
            return default
        return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value; ttl overrides the cache default (seconds)."""
        expire = self.ttl if ttl is None else ttl
        self._cache.set(key, value, expire=expire if expire > 0 else None)

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        return bool(self._cache.delete(key))

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        removed = self._cache.clear()
        logger.info("cache_cleared", cache=self.name, removed=removed)
        return removed

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        """Hit/miss statistics for this cache."""
        hits, misses = self._cache.stats(enable=True)
        total = hits + misses
        return {
            "name": self.name,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / total, 4) if total else 0.0,
            "size": len(self._cache),
            "ttl": self.ttl,
        }

    def close(self) -> None:
        self._cache.close()


# Process-wide named caches
_caches: dict[str, LRUCache] = {}
_caches_lock = threading.Lock()


def get_cache(name: str) -> LRUCache:
    """Get (or lazily create) a named cache.

    Raises:
        KeyError: If the name is not a known cache
    """
    if name not in KNOWN_CACHES:
        raise KeyError(f"Unknown cache: {name}")

    with _caches_lock:
        cache = _caches.get(name)
        if cache is None:
            config = load_app_config().cache
            directory = Path(config.directory) / name if config.directory else None
            cache = LRUCache(
                name=name,
                ttl=config.ttl_for(name),
                directory=directory,
                size_limit=config.size_limit,
            )
            _caches[name] = cache
        return cache


def all_cache_stats() -> list[dict[str, Any]]:
    """Stats for every known cache."""
    return [get_cache(name).stats() for name in KNOWN_CACHES]


def reset_caches() -> None:
    """Clear and drop all named caches (for testing)."""
    with _caches_lock:
        for cache in _caches.values():
            cache.clear()
            cache.close()
        _caches.clear()
