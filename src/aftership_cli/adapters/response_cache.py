"""Namespaced TTL response cache (diskcache).

Why on disk:
- The CLI is single-shot; an in-memory dict would never see a second call.
  A per-namespace `diskcache` directory lets consecutive invocations share
  entries until their TTL expires.

Keys are plain strings built by `create_cache_key`, so whole families of
entries can be dropped with a regex (`invalidate_pattern`).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, TypeVar
from urllib.parse import quote

import diskcache

from aftership_cli.core.domain.models import CacheStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class TTL:
    """Common TTLs, in seconds."""

    FIVE_MINUTES = 5 * 60
    FIFTEEN_MINUTES = 15 * 60
    HOUR = 60 * 60
    DAY = 24 * 60 * 60


def create_cache_key(prefix: str, params: Mapping[str, Any] | None = None) -> str:
    """Deterministic key from an operation tag and its parameters.

    `None` values are dropped and the rest sorted by name. Values are
    percent-encoded, so `&` and `=` never appear inside one:
    `create_cache_key("trackings", {"slug": "ups", "limit": 5})` ->
    `"trackings:limit=5&slug=ups"`.
    """

    items = sorted((k, v) for k, v in (params or {}).items() if v is not None)
    if not items:
        return prefix
    return prefix + ":" + "&".join(f"{k}={quote(_format_value(v), safe='')}" for k, v in items)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ResponseCache:
    """Key/value store with TTL expiry, regex invalidation and hit statistics."""

    def __init__(
        self,
        *,
        namespace: str,
        directory: Path,
        default_ttl: int = TTL.FIVE_MINUTES,
        enabled: bool = True,
    ) -> None:
        self.namespace = namespace
        self.default_ttl = default_ttl
        self._enabled = enabled
        self._directory = Path(directory) / namespace
        self._cache = diskcache.Cache(str(self._directory))
        self._cache.stats(enable=True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def get(self, key: str) -> Any | None:
        if not self._enabled:
            return None
        return self._cache.get(key)

    def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        if not self._enabled:
            return
        self._cache.set(key, value, expire=ttl or self.default_ttl)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        *,
        ttl: int | None = None,
        bypass: bool = False,
    ) -> T:
        """Cache-aside read: return the cached value or fetch and store it.

        With `bypass` (or a disabled cache) nothing is read or written.
        """

        if bypass or not self._enabled:
            return await fetch()

        cached = self._cache.get(key, default=_MISSING)
        if cached is not _MISSING:
            logger.debug("Cache hit: %s", key)
            return cached  # type: ignore[return-value]

        logger.debug("Cache miss: %s", key)
        value = await fetch()
        self._cache.set(key, value, expire=ttl or self.default_ttl)
        return value

    def invalidate(self, key: str) -> bool:
        removed = bool(self._cache.delete(key))
        if removed:
            logger.debug("Invalidated %s", key)
        return removed

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Drop every key matching `pattern` (searched, not anchored)."""

        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        removed = 0
        for key in list(self._cache.iterkeys()):
            if isinstance(key, str) and regex.search(key) and self._cache.delete(key):
                removed += 1
        logger.debug("Invalidated %d entries matching %s", removed, regex.pattern)
        return removed

    def clear(self) -> int:
        return self._cache.clear()

    def stats(self) -> CacheStats:
        self._cache.expire()
        hits, misses = self._cache.stats()
        total = hits + misses
        return CacheStats(
            namespace=self.namespace,
            enabled=self._enabled,
            directory=str(self._directory),
            entries=len(self._cache),
            hits=hits,
            misses=misses,
            hit_rate=round(hits / total, 4) if total else 0.0,
            size_bytes=self._cache.volume(),
        )

    def close(self) -> None:
        self._cache.close()
